"""Asynchronous indexing pipeline: extract, enrich, chunk, embed, store, link concepts."""

import asyncio
import dataclasses
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from .config import DEFAULT_CONFIG
from .embeddings.embedder import EmbeddingAdapter
from .enrichment.concepts import ConceptExtractor, GraphBuilder
from .enrichment.enricher import Enricher
from .errors import DatabaseError, EmbeddingError, KnowledgeBaseError
from .ingest.chunker import build_chunks
from .ingest.extractor import detect_type, extract
from .llm import CompletionService
from .models import (
    Chunk,
    DirectoryOptions,
    Document,
    IndexingProgress,
    IndexingStatus,
    IndexOptions,
    document_id_for_path,
)
from .storage.base import VectorIndex
from .storage.metadata import MetadataStore
from .watcher import WatchRegistry

logger = logging.getLogger(__name__)


def collect_files(root: Path, options: DirectoryOptions) -> list[Path]:
    """Candidate files under ``root``: sorted, hidden entries skipped, filtered and capped."""
    pattern = root.rglob("*") if options.recursive else root.glob("*")
    files = []
    for path in sorted(pattern):
        if any(part.startswith(".") for part in path.relative_to(root).parts):
            continue
        if not path.is_file():
            continue
        if options.file_types and detect_type(path) not in options.file_types:
            continue
        files.append(path)
        if options.max_files and len(files) >= options.max_files:
            break
    return files


class IndexingOrchestrator:
    """Drives documents through the pipeline and tracks directory-run progress.

    Blocking work (parsing, model calls, remote vector calls) runs in worker
    threads. Store writes happen on the event loop thread, one transaction per
    unit, never spanning a model call.
    """

    def __init__(
        self,
        store: MetadataStore,
        *,
        vector_index: VectorIndex | None = None,
        embedder: EmbeddingAdapter | None = None,
        completion: CompletionService | None = None,
        config: dict[str, Any] | None = None,
    ):
        self.store = store
        self.vector_index = vector_index
        self.embedder = embedder
        self.config = config or DEFAULT_CONFIG

        chunk_cfg = self.config.get("chunking", {})
        self.chunk_size = chunk_cfg.get("chunk_size", 1000)
        self.overlap_words = chunk_cfg.get("overlap_words", 200)
        idx_cfg = self.config.get("indexing", {})
        self.max_concurrent = max(1, idx_cfg.get("max_concurrent_processing", 5))
        enr_cfg = self.config.get("enrichment", {})
        slice_chars = enr_cfg.get("slice_chars", 10000)

        self.enricher = Enricher(completion, slice_chars=slice_chars)
        self.concept_extractor = (
            ConceptExtractor(completion, slice_chars=slice_chars, max_tokens=enr_cfg.get("max_tokens", 1000))
            if completion is not None
            else None
        )
        self.graph = GraphBuilder(store, related_delta=enr_cfg.get("related_weight_delta", 0.5))
        self.watchers = WatchRegistry(self.index_document, debounce=idx_cfg.get("watch_debounce", 1.0))

        self._progress = IndexingProgress()
        self._resume = asyncio.Event()
        self._resume.set()

    # -- single documents ------------------------------------------------

    async def index_document(self, file_path: str | Path, options: IndexOptions | None = None) -> str:
        """Index one file and return its document id.

        Raises:
            FileProcessingError: the file could not be read or parsed.
            DatabaseError: the document could not be saved.
            KnowledgeBaseError: any other pipeline failure.
        """
        options = options or IndexOptions()
        path = Path(file_path).expanduser().resolve()
        try:
            extraction = await asyncio.to_thread(extract, path)
            document_id = document_id_for_path(str(path))
            document = Document(
                id=document_id,
                title=extraction.title,
                path=str(path),
                type=extraction.type,
                size=extraction.size,
                created=extraction.created,
                modified=extraction.modified,
                indexed=datetime.now(),
                author=extraction.author,
                tags=list(dict.fromkeys([*options.tags, *extraction.tags])),
                page_count=extraction.page_count,
                word_count=extraction.word_count,
            )

            if options.generate_summary:
                document.summary = await asyncio.to_thread(self.enricher.summarize, extraction.text)
            if options.extract_key_points:
                document.key_points = await asyncio.to_thread(self.enricher.key_points, extraction.text)

            chunks = build_chunks(
                document_id,
                extraction.text,
                title=document.title,
                doc_type=document.type,
                chunk_size=self.chunk_size,
                overlap_words=self.overlap_words,
            )
            if options.generate_embeddings and self.embedder is not None:
                await self._embed_chunks(chunks)

            previous = set(self.store.chunk_ids(document_id))
            stale = self.store.save_document(document, chunks)
            # reused ids without a fresh embedding still hold the old vector
            stale += [c.id for c in chunks if c.embedding is None and c.id in previous]
            await self._sync_vectors(document, chunks, stale)

            if options.extract_concepts and self.concept_extractor is not None:
                await self._extract_concepts(document_id, extraction.text)

            logger.info("Indexed %s (%d chunks)", path, len(chunks))
            return document_id
        except KnowledgeBaseError:
            raise
        except Exception as e:
            raise KnowledgeBaseError(f"Failed to index document {path}", e) from e

    async def _embed_chunks(self, chunks: list[Chunk]) -> None:
        for chunk in chunks:
            try:
                chunk.embedding = await asyncio.to_thread(self.embedder.embed, chunk.content)
            except EmbeddingError as e:
                logger.warning("Skipping embedding for %s: %s", chunk.id, e)

    async def _sync_vectors(self, document: Document, chunks: list[Chunk], stale: list[str]) -> None:
        if self.vector_index is None:
            return
        if stale:
            try:
                await self._vector_call(self.vector_index.delete_many, stale)
            except Exception as e:
                logger.warning("Failed to remove %d stale vectors for %s: %s", len(stale), document.id, e)
        for chunk in chunks:
            if chunk.embedding is None:
                continue
            metadata = {
                "documentId": document.id,
                "chunkIndex": chunk.index,
                "title": document.title,
                "path": document.path,
                "type": document.type.value,
            }
            try:
                await self._vector_call(self.vector_index.upsert, chunk.id, chunk.embedding, metadata)
            except Exception as e:
                logger.warning("Failed to store vector for %s: %s", chunk.id, e)

    async def _vector_call(self, fn: Callable, *args: Any) -> Any:
        if self.vector_index.in_process:
            return fn(*args)
        return await asyncio.to_thread(fn, *args)

    async def _extract_concepts(self, document_id: str, text: str) -> None:
        for part in self.concept_extractor.slices(text):
            concepts = await asyncio.to_thread(self.concept_extractor.extract, part)
            try:
                self.graph.add_concepts(document_id, concepts)
            except DatabaseError as e:
                logger.warning("Discarding concept slice for %s: %s", document_id, e)

    async def delete_document(self, document_id: str) -> bool:
        """Remove a document's vectors, then its rows. Returns False if it was unknown."""
        chunk_ids = self.store.chunk_ids(document_id)
        if chunk_ids and self.vector_index is not None:
            try:
                await self._vector_call(self.vector_index.delete_many, chunk_ids)
            except Exception as e:
                raise KnowledgeBaseError(f"Failed to delete vectors for document {document_id}", e) from e
        return self.store.delete_document(document_id)

    # -- directories -----------------------------------------------------

    async def index_directory(self, dir_path: str | Path, options: DirectoryOptions | None = None) -> IndexingProgress:
        """Index every matching file under a directory in bounded batches.

        Per-file failures are counted, never raised.

        Returns:
            A snapshot of the final progress (status ``completed`` or ``error``).
        """
        options = options or DirectoryOptions()
        root = Path(dir_path).expanduser().resolve()
        if not root.exists():
            raise KnowledgeBaseError(f"Directory {root} does not exist")
        if not root.is_dir():
            raise KnowledgeBaseError(f"{root} is not a directory")
        if not os.access(root, os.R_OK | os.X_OK):
            raise KnowledgeBaseError(f"Directory {root} is not readable")
        if self._progress.status in (IndexingStatus.INDEXING, IndexingStatus.PAUSED):
            raise KnowledgeBaseError("A directory indexing run is already in progress")

        self._progress = IndexingProgress(status=IndexingStatus.INDEXING, start_time=datetime.now())
        self._resume.set()
        file_options = IndexOptions(
            generate_embeddings=options.generate_embeddings,
            extract_key_points=options.extract_key_points,
            generate_summary=options.generate_summary,
            extract_concepts=options.extract_concepts,
            tags=list(options.tags),
        )

        try:
            files = await asyncio.to_thread(collect_files, root, options)
            self._progress.total = len(files)
            self._notify(options.on_progress)

            for start in range(0, len(files), self.max_concurrent):
                await self._resume.wait()
                batch = files[start : start + self.max_concurrent]
                await asyncio.gather(*(self._index_one(f, file_options, options.on_progress) for f in batch))

            self._progress.status = IndexingStatus.COMPLETED
        except Exception as e:
            logger.exception("Directory indexing of %s failed", root)
            self._progress.status = IndexingStatus.ERROR
            self._progress.error = str(e)
        finally:
            self._progress.end_time = datetime.now()
            self._resume.set()

        self._notify(options.on_progress)
        return self.get_progress()

    async def _index_one(
        self,
        path: Path,
        options: IndexOptions,
        on_progress: Callable[[IndexingProgress], None] | None,
    ) -> None:
        try:
            await self.index_document(path, options)
            self._progress.processed += 1
        except Exception as e:
            logger.error("Failed to index %s: %s", path, e)
            self._progress.failed += 1
        self._notify(on_progress)

    def _notify(self, on_progress: Callable[[IndexingProgress], None] | None) -> None:
        if on_progress is None:
            return
        try:
            on_progress(self.get_progress())
        except Exception:
            logger.exception("Progress callback raised")

    def get_progress(self) -> IndexingProgress:
        return dataclasses.replace(self._progress)

    def pause(self) -> bool:
        """Stop starting new batches. In-flight files finish."""
        if self._progress.status != IndexingStatus.INDEXING:
            return False
        self._progress.status = IndexingStatus.PAUSED
        self._resume.clear()
        return True

    def resume(self) -> bool:
        if self._progress.status != IndexingStatus.PAUSED:
            return False
        self._progress.status = IndexingStatus.INDEXING
        self._resume.set()
        return True

    # -- watching --------------------------------------------------------

    async def watch_directory(self, dir_path: str | Path, options: DirectoryOptions | None = None) -> None:
        root = Path(dir_path).expanduser().resolve()
        if not root.is_dir():
            raise KnowledgeBaseError(f"Directory {root} does not exist")
        self.watchers.watch(root, options or DirectoryOptions(), asyncio.get_running_loop())

    def stop_watching(self, dir_path: str | Path) -> bool:
        return self.watchers.stop(Path(dir_path).expanduser().resolve())

    def stop_all_watching(self) -> None:
        self.watchers.stop_all()
