"""Lexical and semantic search over the knowledge base."""

import dataclasses
import logging
from datetime import datetime

from ..embeddings.embedder import EmbeddingAdapter
from ..errors import EmbeddingError, KnowledgeBaseError
from ..models import Document, SearchOptions, SearchResult
from ..storage.base import VectorIndex, VectorMatch
from ..storage.metadata import MetadataStore
from .snippets import extract_snippet, query_terms

logger = logging.getLogger(__name__)

SEMANTIC_OVERFETCH = 4


def bm25_relevance(rank: float) -> float:
    """Map an FTS5 bm25 rank (lower is better) onto [0, 1)."""
    score = -rank
    if score <= 0:
        return 0.0
    return score / (1.0 + score)


def local_naive(value: datetime | None) -> datetime | None:
    """Stored timestamps are naive local time; bring aware bounds onto the same footing."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class SearchCoordinator:
    """Answers search queries from the metadata store and the vector index."""

    def __init__(
        self,
        store: MetadataStore,
        vector_index: VectorIndex | None = None,
        embedder: EmbeddingAdapter | None = None,
        snippet_length: int = 200,
    ):
        self.store = store
        self.vector_index = vector_index
        self.embedder = embedder
        self.snippet_length = snippet_length

    @property
    def semantic_available(self) -> bool:
        return self.embedder is not None and self.vector_index is not None

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Run a search query.

        Args:
            query: Free-text query.
            options: Paging, filters and the semantic switch.

        Returns:
            Results ordered by relevance, best first.
        """
        options = options or SearchOptions()
        options = dataclasses.replace(
            options, start_date=local_naive(options.start_date), end_date=local_naive(options.end_date)
        )
        if options.use_semantic_search and self.semantic_available:
            try:
                return self._semantic_search(query, options)
            except EmbeddingError as e:
                logger.warning("Query embedding failed, falling back to full-text search: %s", e)
        return self._lexical_search(query, options)

    def similar(self, document_id: str, limit: int = 5) -> list[SearchResult]:
        """Documents whose chunks sit closest to this document's content."""
        document = self.store.get_document(document_id)
        if document is None:
            raise KnowledgeBaseError(f"Document not found: {document_id}")
        if not self.semantic_available:
            return []

        content = self.store.get_document_content(document_id) or document.title
        vector = self.embedder.embed(content)
        matches = self._query_vectors(vector, (limit + 1) * SEMANTIC_OVERFETCH, [])
        best = [m for m in _best_per_document(matches) if m.metadata.get("documentId") != document_id]
        documents = self.store.get_documents([m.metadata["documentId"] for m in best])

        results = []
        for match in best:
            doc = documents.get(match.metadata["documentId"])
            if doc is None:
                continue
            results.append(self._semantic_result(doc, match, doc.title))
            if len(results) >= limit:
                break
        return results

    # -- lexical ---------------------------------------------------------

    def _lexical_search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        hits = self.store.full_text_search(
            query,
            types=options.types,
            start_date=options.start_date,
            end_date=options.end_date,
            tags=options.tags,
            limit=options.limit,
            offset=options.offset,
        )
        return [
            SearchResult(
                document_id=doc.id,
                title=doc.title,
                path=doc.path,
                type=doc.type,
                relevance=bm25_relevance(rank),
                snippet=self._lexical_snippet(doc, query),
                metadata=doc,
            )
            for doc, rank in hits
        ]

    def _lexical_snippet(self, document: Document, query: str) -> str:
        terms = query_terms(query)
        best_text, best_hits = None, 0
        for chunk in self.store.get_chunks(document.id):
            lowered = chunk.content.lower()
            hits = sum(lowered.count(t) for t in terms)
            if hits > best_hits:
                best_text, best_hits = chunk.content, hits
        if best_text is not None:
            return extract_snippet(best_text, query, self.snippet_length)
        if document.summary:
            return extract_snippet(document.summary, query, self.snippet_length)
        return document.title

    # -- semantic --------------------------------------------------------

    def _semantic_search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        vector = self.embedder.embed(query)
        top_k = (options.offset + options.limit) * SEMANTIC_OVERFETCH
        best = _best_per_document(self._query_vectors(vector, top_k, options.types))
        documents = self.store.get_documents([m.metadata["documentId"] for m in best])

        results = []
        for match in best:
            doc = documents.get(match.metadata["documentId"])
            if doc is None or not _passes_filters(doc, options):
                continue
            results.append(self._semantic_result(doc, match, query))
        return results[options.offset : options.offset + options.limit]

    def _query_vectors(self, vector: list[float], top_k: int, types: list) -> list[VectorMatch]:
        try:
            return self.vector_index.query(vector, top_k=top_k, filter={"types": types} if types else None)
        except Exception as e:
            raise KnowledgeBaseError("Vector index query failed", e) from e

    def _semantic_result(self, document: Document, match: VectorMatch, query: str) -> SearchResult:
        chunk = self.store.get_chunk(match.id)
        text = chunk.content if chunk else (document.summary or "")
        return SearchResult(
            document_id=document.id,
            title=document.title,
            path=document.path,
            type=document.type,
            relevance=match.score,
            snippet=extract_snippet(text, query, self.snippet_length),
            metadata=document,
        )


def _best_per_document(matches: list[VectorMatch]) -> list[VectorMatch]:
    """First (highest scoring) match for each document, order preserved."""
    seen: set[str] = set()
    best = []
    for match in matches:
        doc_id = match.metadata.get("documentId")
        if not doc_id or doc_id in seen:
            continue
        seen.add(doc_id)
        best.append(match)
    return best


def _passes_filters(document: Document, options: SearchOptions) -> bool:
    if options.start_date and document.modified < options.start_date:
        return False
    if options.end_date and document.modified > options.end_date:
        return False
    if options.tags and not set(options.tags) & set(document.tags):
        return False
    return True
