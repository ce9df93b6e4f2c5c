"""Embedding adapter: truncation, validation and L2 normalization."""

import logging

import numpy as np

from ..errors import EmbeddingError
from ..llm import EmbeddingService, SentenceTransformerEmbedding

logger = logging.getLogger(__name__)


class EmbeddingAdapter:
    """Wraps an embedding collaborator so every vector has the same shape and unit length."""

    def __init__(self, service: EmbeddingService, dimension: int = 384, max_chars: int = 8192):
        self.service = service
        self.dimension = dimension
        self.max_chars = max_chars

    def embed(self, text: str) -> list[float]:
        """Embed ``text`` (truncated to ``max_chars``) as a normalized vector.

        Raises:
            EmbeddingError: if the collaborator fails or returns the wrong shape.
        """
        try:
            raw = self.service.embed(text[: self.max_chars])
        except Exception as e:
            raise EmbeddingError("Failed to generate embedding", e) from e

        vector = np.asarray(raw, dtype=np.float64).reshape(-1)
        if vector.shape[0] != self.dimension:
            raise EmbeddingError(f"Expected {self.dimension} dimensions, got {vector.shape[0]}")
        if not np.all(np.isfinite(vector)):
            raise EmbeddingError("Embedding contains non-finite values")
        return normalize(vector).tolist()


def normalize(vector: np.ndarray) -> np.ndarray:
    """L2-normalize; zero vectors are returned unchanged."""
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


def embedder_from_config(config: dict, service: EmbeddingService | None = None) -> EmbeddingAdapter | None:
    """Build the adapter, or None when embeddings are disabled and no service is injected."""
    emb_cfg = config.get("embeddings", {})
    if service is None:
        if not emb_cfg.get("enabled", True):
            return None
        service = SentenceTransformerEmbedding(config.get("embedding_model", "sentence-transformers/all-MiniLM-L6-v2"))
    return EmbeddingAdapter(
        service,
        dimension=emb_cfg.get("dimension", 384),
        max_chars=emb_cfg.get("max_chars", 8192),
    )
