"""In-process brute-force vector index backed by the metadata store."""

from typing import Any

import numpy as np

from .base import VectorIndex, VectorMatch, cosine_similarity, filter_types
from .metadata import MetadataStore


class InMemoryVectorIndex(VectorIndex):
    """Scores every embedded chunk in the store against the query vector.

    Vectors live in the ``document_chunks.embedding`` column, so they are
    dropped together with the chunk rows they belong to.
    """

    in_process = True

    def __init__(self, store: MetadataStore):
        self.store = store

    def upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        if not self.store.set_chunk_embedding(id, vector):
            raise KeyError(f"No chunk with id {id}")

    def query(
        self,
        vector: list[float],
        top_k: int = 10,
        filter: dict[str, Any] | None = None,
        offset: int = 0,
    ) -> list[VectorMatch]:
        types = filter_types(filter)
        query_vec = np.asarray(vector, dtype=np.float32)
        scored = []
        for entry in self.store.iter_embedded_chunks(types or None):
            if entry["embedding"].shape != query_vec.shape:
                continue
            scored.append(
                VectorMatch(
                    id=entry["id"],
                    score=cosine_similarity(query_vec, entry["embedding"]),
                    metadata=entry["metadata"],
                )
            )
        # Stable sort keeps storage order for ties
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[offset : offset + top_k]

    def delete_many(self, ids: list[str]) -> None:
        self.store.clear_chunk_embeddings(ids)

    def count(self) -> int:
        return self.store.stats()["embedded_chunks"]
