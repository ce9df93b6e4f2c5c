"""ChromaDB vector index backend (local persistent or remote HTTP)."""

import logging
from pathlib import Path
from typing import Any

import chromadb

from .base import VectorIndex, VectorMatch, filter_types

logger = logging.getLogger(__name__)


class ChromaVectorIndex(VectorIndex):
    """ChromaDB-backed vector index using cosine distance."""

    def __init__(
        self,
        chroma_path: str | None = None,
        *,
        host: str | None = None,
        port: int = 8000,
        collection: str = "documents",
    ):
        if host:
            self.client = chromadb.HttpClient(host=host, port=port)
            logger.info("Using remote ChromaDB at %s:%s", host, port)
        else:
            if not chroma_path:
                raise ValueError("chroma_path is required for a local ChromaDB index")
            self.chroma_path = Path(chroma_path)
            self.chroma_path.mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(path=str(self.chroma_path))
        self.collection_name = collection
        self.collection = self.get_or_create_collection(collection)

    def get_or_create_collection(self, name: str = "documents") -> chromadb.Collection:
        return self.client.get_or_create_collection(
            name=name,
            metadata={"hnsw:space": "cosine"},
        )

    def upsert(self, id: str, vector: list[float], metadata: dict[str, Any]) -> None:
        clean = {k: v for k, v in metadata.items() if v is not None}
        self.collection.upsert(ids=[id], embeddings=[list(vector)], metadatas=[clean])

    def query(
        self,
        vector: list[float],
        top_k: int = 10,
        filter: dict[str, Any] | None = None,
        offset: int = 0,
    ) -> list[VectorMatch]:
        n_results = offset + top_k
        if n_results <= 0 or self.collection.count() == 0:
            return []
        types = filter_types(filter)
        where = None
        if len(types) == 1:
            where = {"type": types[0]}
        elif types:
            where = {"type": {"$in": types}}

        result = self.collection.query(
            query_embeddings=[list(vector)],
            n_results=n_results,
            where=where,
            include=["metadatas", "distances"],
        )
        ids = result["ids"][0]
        metadatas = (result.get("metadatas") or [[None] * len(ids)])[0]
        distances = result["distances"][0]
        matches = [
            VectorMatch(id=i, score=1.0 - float(d), metadata=dict(m or {}))
            for i, m, d in zip(ids, metadatas, distances)
        ]
        return matches[offset:]

    def delete_many(self, ids: list[str]) -> None:
        if ids:
            self.collection.delete(ids=ids)

    def count(self) -> int:
        return self.collection.count()
