"""Knowledge base service: the public entry point wiring every component together."""

import logging
from pathlib import Path
from typing import Any

from .config import load_config
from .embeddings.embedder import EmbeddingAdapter, embedder_from_config
from .errors import KnowledgeBaseError
from .indexer import IndexingOrchestrator
from .llm import CompletionService, EmbeddingService, completion_from_config
from .models import (
    DirectoryOptions,
    Document,
    IndexingProgress,
    IndexOptions,
    KnowledgeGraph,
    SearchOptions,
    SearchResult,
)
from .query.graph import build_knowledge_graph
from .query.search import SearchCoordinator
from .storage.base import VectorIndex, get_vector_index
from .storage.metadata import MetadataStore

logger = logging.getLogger(__name__)


class KnowledgeBaseService:
    """Indexes local documents and answers search and graph queries over them.

    Collaborators default to what the config describes; tests and embedders of
    this library inject their own.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        embedding_service: EmbeddingService | None = None,
        completion_service: CompletionService | None = None,
        vector_index: VectorIndex | None = None,
    ):
        self.config = config if config is not None else load_config()
        self._embedding_service = embedding_service
        self._completion_service = completion_service
        self._vector_index = vector_index

        self.store: MetadataStore | None = None
        self.vector_index: VectorIndex | None = None
        self.embedder: EmbeddingAdapter | None = None
        self.indexer: IndexingOrchestrator | None = None
        self.searcher: SearchCoordinator | None = None

    # -- lifecycle -------------------------------------------------------

    def open(self) -> "KnowledgeBaseService":
        if self.store is not None:
            return self

        store = MetadataStore(self.config["db_path"]).open()
        try:
            self.vector_index = self._vector_index or get_vector_index(self.config, store)
            self.embedder = embedder_from_config(self.config, self._embedding_service)
            completion = self._completion_service or completion_from_config(self.config)
        except Exception:
            store.close()
            raise

        self.store = store
        self.indexer = IndexingOrchestrator(
            store,
            vector_index=self.vector_index,
            embedder=self.embedder,
            completion=completion,
            config=self.config,
        )
        self.searcher = SearchCoordinator(
            store,
            vector_index=self.vector_index,
            embedder=self.embedder,
            snippet_length=self.config.get("search", {}).get("snippet_length", 200),
        )
        logger.debug("Knowledge base opened at %s", self.config["db_path"])
        return self

    def close(self) -> None:
        if self.indexer is not None:
            self.indexer.stop_all_watching()
        if self.vector_index is not None:
            self.vector_index.close()
        if self.store is not None:
            self.store.close()
        self.store = self.vector_index = self.embedder = self.indexer = self.searcher = None

    def __enter__(self) -> "KnowledgeBaseService":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> None:
        if self.store is None:
            raise KnowledgeBaseError("Knowledge base is not open")

    # -- indexing --------------------------------------------------------

    async def index_document(self, file_path: str | Path, options: IndexOptions | None = None) -> str:
        self._require_open()
        return await self.indexer.index_document(file_path, options)

    async def index_directory(self, dir_path: str | Path, options: DirectoryOptions | None = None) -> IndexingProgress:
        self._require_open()
        return await self.indexer.index_directory(dir_path, options)

    async def watch_directory(self, dir_path: str | Path, options: DirectoryOptions | None = None) -> None:
        self._require_open()
        await self.indexer.watch_directory(dir_path, options)

    def stop_watching(self, dir_path: str | Path) -> bool:
        self._require_open()
        return self.indexer.stop_watching(dir_path)

    def stop_all_watching(self) -> None:
        self._require_open()
        self.indexer.stop_all_watching()

    def get_indexing_progress(self) -> IndexingProgress:
        self._require_open()
        return self.indexer.get_progress()

    def pause_indexing(self) -> bool:
        self._require_open()
        return self.indexer.pause()

    def resume_indexing(self) -> bool:
        self._require_open()
        return self.indexer.resume()

    # -- retrieval -------------------------------------------------------

    def search_documents(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        self._require_open()
        return self.searcher.search(query, options)

    def get_document(self, document_id: str) -> Document | None:
        self._require_open()
        return self.store.get_document(document_id)

    def get_document_content(self, document_id: str) -> str:
        """Chunk text joined by blank lines; empty for an unknown id."""
        self._require_open()
        return self.store.get_document_content(document_id)

    async def delete_document(self, document_id: str) -> bool:
        self._require_open()
        return await self.indexer.delete_document(document_id)

    def get_knowledge_graph(
        self,
        *,
        document_id: str | None = None,
        concept_id: str | None = None,
        depth: int = 2,
        min_weight: float = 0.5,
        max_nodes: int = 100,
    ) -> KnowledgeGraph:
        self._require_open()
        return build_knowledge_graph(
            self.store,
            document_id=document_id,
            concept_id=concept_id,
            depth=depth,
            min_weight=min_weight,
            max_nodes=max_nodes,
        )

    def get_similar_documents(self, document_id: str, limit: int = 5) -> list[SearchResult]:
        self._require_open()
        return self.searcher.similar(document_id, limit)

    def stats(self) -> dict[str, int]:
        self._require_open()
        counts = self.store.stats()
        if self.vector_index is not None and not self.vector_index.in_process:
            counts["vectors"] = self.vector_index.count()
        return counts
