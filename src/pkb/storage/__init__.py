"""Storage layer: SQLite metadata store and vector index backends."""

from .base import VectorIndex, VectorMatch, cosine_similarity, get_vector_index
from .metadata import MetadataStore

__all__ = ["MetadataStore", "VectorIndex", "VectorMatch", "cosine_similarity", "get_vector_index"]
