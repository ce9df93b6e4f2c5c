"""Abstract base class for vector indexes and factory function."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from .metadata import MetadataStore

logger = logging.getLogger(__name__)


@dataclass
class VectorMatch:
    """One nearest-neighbour hit. Higher score is more similar."""
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorIndex(ABC):
    """Common interface for chunk-embedding backends.

    Metadata carried with every entry: documentId, chunkIndex, title, path, type.
    """

    # True when calls touch only local state and may run on the event loop thread
    in_process = False

    @abstractmethod
    def upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        """Insert or replace the vector stored under ``id``."""

    @abstractmethod
    def query(
        self,
        vector: list[float],
        top_k: int = 10,
        filter: dict[str, Any] | None = None,
        offset: int = 0,
    ) -> list[VectorMatch]:
        """Nearest neighbours of ``vector``, best first.

        ``filter`` may hold ``{"types": [...]}`` to restrict document types.
        """

    @abstractmethod
    def delete_many(self, ids: list[str]) -> None:
        """Remove the given ids. Unknown ids are ignored."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored vectors."""

    def close(self) -> None:
        """Release any resources held by the backend."""


def cosine_similarity(a: list[float] | np.ndarray, b: list[float] | np.ndarray) -> float:
    """Cosine of the angle between two vectors; 0.0 when either has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[0]} != {vb.shape[0]}")
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0 or nb == 0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def filter_types(filter: dict[str, Any] | None) -> list[str]:
    if not filter:
        return []
    return [getattr(t, "value", t) for t in filter.get("types") or []]


def get_vector_index(config: dict[str, Any], store: "MetadataStore") -> VectorIndex:
    """Factory: return the right vector index based on config."""
    backend = config.get("vector_backend", "memory")

    if backend == "memory":
        from .memory import InMemoryVectorIndex
        return InMemoryVectorIndex(store)
    elif backend == "chromadb":
        from .chromadb import ChromaVectorIndex
        chroma_cfg = config.get("chroma", {})
        return ChromaVectorIndex(
            chroma_path=config.get("chroma_path"),
            host=chroma_cfg.get("host"),
            port=chroma_cfg.get("port", 8000),
            collection=chroma_cfg.get("collection", "documents"),
        )
    else:
        raise ValueError(f"Unknown vector_backend: {backend}")
