"""SQLite metadata store with a synchronized FTS5 full-text index.

Holds documents, their chunks (with optional float32 embeddings), and the
concept graph. Every write that belongs to one logical unit runs inside a
single ``transaction()`` block so it commits or rolls back as a whole.
"""

import json
import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from itertools import combinations
from pathlib import Path
from typing import Any, Iterator

import numpy as np

from ..errors import DatabaseError
from ..models import (
    Chunk,
    ChunkMetadata,
    Concept,
    ConceptType,
    Document,
    DocumentType,
    Relationship,
    RelationshipType,
    relationship_id,
)

logger = logging.getLogger(__name__)

DOCUMENT_SOURCE = "DOCUMENT"
MAX_QUERY_TERMS = 64

DOCUMENT_COLUMNS = (
    "id, title, path, type, size, created, modified, indexed, author, tags, "
    "summary, key_points, page_count, word_count"
)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        path TEXT NOT NULL UNIQUE,
        type TEXT NOT NULL,
        size INTEGER NOT NULL,
        created TEXT NOT NULL,
        modified TEXT NOT NULL,
        indexed TEXT NOT NULL,
        author TEXT,
        tags TEXT,
        summary TEXT,
        key_points TEXT,
        page_count INTEGER,
        word_count INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS document_chunks (
        id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL,
        content TEXT NOT NULL,
        index_num INTEGER NOT NULL,
        metadata TEXT,
        embedding BLOB,
        FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
        title, content, tags, summary
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_type ON documents(type)",
    "CREATE INDEX IF NOT EXISTS idx_documents_modified ON documents(modified)",
    "CREATE INDEX IF NOT EXISTS idx_document_chunks_document_id ON document_chunks(document_id, index_num)",
    # The fts row shares the document's rowid; chunk text is written separately
    """
    CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
        INSERT INTO documents_fts(rowid, title, content, tags, summary)
        VALUES (new.rowid, new.title, '', COALESCE(new.tags, ''), COALESCE(new.summary, ''));
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS documents_au AFTER UPDATE ON documents BEGIN
        UPDATE documents_fts
        SET title = new.title, tags = COALESCE(new.tags, ''), summary = COALESCE(new.summary, '')
        WHERE rowid = new.rowid;
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
        DELETE FROM documents_fts WHERE rowid = old.rowid;
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS concepts (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        description TEXT,
        frequency INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS relationships (
        id TEXT PRIMARY KEY,
        source_id TEXT NOT NULL,
        source_type TEXT NOT NULL,
        target_id TEXT NOT NULL,
        target_type TEXT NOT NULL,
        relationship_type TEXT NOT NULL,
        weight REAL NOT NULL DEFAULT 1.0,
        UNIQUE(source_id, target_id, relationship_type)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_relationships_source ON relationships(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_relationships_target ON relationships(target_id)",
]


def fts_query(query: str) -> str:
    """Turn free text into a safe FTS5 expression: quoted terms joined by OR."""
    terms: list[str] = []
    for term in re.findall(r"\w+", query.lower()):
        if term not in terms:
            terms.append(term)
        if len(terms) >= MAX_QUERY_TERMS:
            break
    return " OR ".join(f'"{t}"' for t in terms)


def encode_embedding(vector: list[float] | np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


class MetadataStore:
    """Durable storage for documents, chunks and the concept graph."""

    def __init__(self, db_path: str | Path, *, timeout: float = 60.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    # -- lifecycle -------------------------------------------------------

    def open(self) -> "MetadataStore":
        if self.conn is not None:
            return self
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path, check_same_thread=False, timeout=self.timeout, isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            self.conn = conn
            self._init_schema()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to open {self.db_path}", e) from e
        logger.debug("Opened metadata store at %s", self.db_path)
        return self

    def _init_schema(self) -> None:
        with self.transaction() as cur:
            for statement in SCHEMA:
                cur.execute(statement)

    def close(self) -> None:
        with self._lock:
            if self.conn is None:
                return
            try:
                self.conn.close()
            except sqlite3.Error:
                logger.debug("Error closing metadata database", exc_info=True)
            self.conn = None

    @property
    def _conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise DatabaseError("Metadata store is not open")
        return self.conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run a block of writes atomically; any failure rolls all of them back."""
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                yield cur
            except BaseException as e:
                cur.execute("ROLLBACK")
                if isinstance(e, sqlite3.Error):
                    raise DatabaseError(str(e), e) from e
                raise
            else:
                cur.execute("COMMIT")

    def _query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise DatabaseError(str(e), e) from e

    # -- documents -------------------------------------------------------

    def save_document(self, document: Document, chunks: list[Chunk]) -> list[str]:
        """Upsert a document with its chunks and refresh its full-text row.

        Chunk rows from an earlier pass are replaced, not accumulated.

        Returns:
            Ids of previously stored chunks that this pass no longer produced.
        """
        tags = json.dumps(document.tags)
        key_points = json.dumps(document.key_points)
        values = (
            document.title,
            document.path,
            document.type.value,
            document.size,
            document.created.isoformat(),
            document.modified.isoformat(),
            document.indexed.isoformat(),
            document.author,
            tags,
            document.summary,
            key_points,
            document.page_count,
            document.word_count,
        )
        try:
            with self.transaction() as cur:
                exists = cur.execute("SELECT 1 FROM documents WHERE id = ?", (document.id,)).fetchone()
                if exists:
                    cur.execute(
                        """
                        UPDATE documents SET
                            title = ?, path = ?, type = ?, size = ?, created = ?, modified = ?,
                            indexed = ?, author = ?, tags = ?, summary = ?, key_points = ?,
                            page_count = ?, word_count = ?
                        WHERE id = ?
                        """,
                        (*values, document.id),
                    )
                else:
                    cur.execute(
                        f"INSERT INTO documents ({DOCUMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (document.id, *values),
                    )

                previous = {
                    row[0]
                    for row in cur.execute("SELECT id FROM document_chunks WHERE document_id = ?", (document.id,))
                }
                cur.execute("DELETE FROM document_chunks WHERE document_id = ?", (document.id,))
                cur.executemany(
                    """
                    INSERT INTO document_chunks (id, document_id, content, index_num, metadata, embedding)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            c.id,
                            document.id,
                            c.content,
                            c.index,
                            json.dumps(c.metadata.to_dict()),
                            encode_embedding(c.embedding) if c.embedding is not None else None,
                        )
                        for c in chunks
                    ],
                )
                cur.execute(
                    "UPDATE documents_fts SET content = ? WHERE rowid = (SELECT rowid FROM documents WHERE id = ?)",
                    ("\n\n".join(c.content for c in chunks), document.id),
                )
        except DatabaseError as e:
            raise DatabaseError(f"Failed to save document {document.id}", e.cause) from e

        return sorted(previous - {c.id for c in chunks})

    def get_document(self, document_id: str) -> Document | None:
        rows = self._query(f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,))
        return self._row_to_document(rows[0]) if rows else None

    def get_documents(self, document_ids: list[str]) -> dict[str, Document]:
        if not document_ids:
            return {}
        placeholders = ", ".join("?" for _ in document_ids)
        rows = self._query(f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id IN ({placeholders})", document_ids)
        return {row["id"]: self._row_to_document(row) for row in rows}

    def list_documents(self, limit: int | None = None) -> list[Document]:
        sql = f"SELECT {DOCUMENT_COLUMNS} FROM documents ORDER BY rowid"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        return [self._row_to_document(r) for r in self._query(sql, params)]

    def delete_document(self, document_id: str) -> bool:
        """Remove a document, its chunks and its CONTAINS edges in one transaction."""
        try:
            with self.transaction() as cur:
                cur.execute(
                    "DELETE FROM relationships WHERE source_id = ? AND source_type = ? AND relationship_type = ?",
                    (document_id, DOCUMENT_SOURCE, RelationshipType.CONTAINS.value),
                )
                cur.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
                cur.execute("DELETE FROM documents WHERE id = ?", (document_id,))
                return cur.rowcount > 0
        except DatabaseError as e:
            raise DatabaseError(f"Failed to delete document {document_id}", e.cause) from e

    # -- chunks ----------------------------------------------------------

    def get_chunks(self, document_id: str) -> list[Chunk]:
        rows = self._query(
            "SELECT id, document_id, content, index_num, metadata, embedding FROM document_chunks "
            "WHERE document_id = ? ORDER BY index_num",
            (document_id,),
        )
        return [self._row_to_chunk(r) for r in rows]

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        rows = self._query(
            "SELECT id, document_id, content, index_num, metadata, embedding FROM document_chunks WHERE id = ?",
            (chunk_id,),
        )
        return self._row_to_chunk(rows[0]) if rows else None

    def chunk_ids(self, document_id: str) -> list[str]:
        rows = self._query(
            "SELECT id FROM document_chunks WHERE document_id = ? ORDER BY index_num", (document_id,)
        )
        return [r["id"] for r in rows]

    def count_chunks(self, document_id: str | None = None) -> int:
        if document_id is None:
            rows = self._query("SELECT COUNT(*) FROM document_chunks")
        else:
            rows = self._query("SELECT COUNT(*) FROM document_chunks WHERE document_id = ?", (document_id,))
        return int(rows[0][0])

    def get_document_content(self, document_id: str) -> str:
        return "\n\n".join(c.content for c in self.get_chunks(document_id))

    def get_fts_content(self, document_id: str) -> str | None:
        rows = self._query(
            "SELECT content FROM documents_fts WHERE rowid = (SELECT rowid FROM documents WHERE id = ?)",
            (document_id,),
        )
        return rows[0]["content"] if rows else None

    # -- embeddings ------------------------------------------------------

    def set_chunk_embedding(self, chunk_id: str, vector: list[float]) -> bool:
        with self.transaction() as cur:
            cur.execute(
                "UPDATE document_chunks SET embedding = ? WHERE id = ?", (encode_embedding(vector), chunk_id)
            )
            return cur.rowcount > 0

    def clear_chunk_embeddings(self, chunk_ids: list[str]) -> None:
        if not chunk_ids:
            return
        with self.transaction() as cur:
            cur.executemany("UPDATE document_chunks SET embedding = NULL WHERE id = ?", [(i,) for i in chunk_ids])

    def iter_embedded_chunks(self, types: list[DocumentType] | None = None) -> list[dict[str, Any]]:
        """Every chunk carrying an embedding, in document insertion then chunk order."""
        sql = (
            "SELECT c.id, c.document_id, c.index_num, c.embedding, d.title, d.path, d.type "
            "FROM document_chunks c JOIN documents d ON c.document_id = d.id "
            "WHERE c.embedding IS NOT NULL"
        )
        params: list[Any] = []
        if types:
            sql += f" AND d.type IN ({', '.join('?' for _ in types)})"
            params.extend(DocumentType(t).value for t in types)
        sql += " ORDER BY d.rowid, c.index_num"
        return [
            {
                "id": r["id"],
                "embedding": decode_embedding(r["embedding"]),
                "metadata": {
                    "documentId": r["document_id"],
                    "chunkIndex": r["index_num"],
                    "title": r["title"],
                    "path": r["path"],
                    "type": r["type"],
                },
            }
            for r in self._query(sql, params)
        ]

    # -- full-text search ------------------------------------------------

    def full_text_search(
        self,
        query: str,
        *,
        types: list[DocumentType] | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        tags: list[str] | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[tuple[Document, float]]:
        """Ranked lexical search. Returns (document, bm25 rank) pairs, best first."""
        match = fts_query(query)
        if not match:
            return []

        conditions: list[str] = []
        params: list[Any] = [match]
        if types:
            conditions.append(f"d.type IN ({', '.join('?' for _ in types)})")
            params.extend(DocumentType(t).value for t in types)
        if start_date:
            conditions.append("d.modified >= ?")
            params.append(start_date.isoformat())
        if end_date:
            conditions.append("d.modified <= ?")
            params.append(end_date.isoformat())
        if tags:
            conditions.append(
                "EXISTS (SELECT 1 FROM json_each(d.tags) WHERE json_each.value IN "
                f"({', '.join('?' for _ in tags)}))"
            )
            params.extend(tags)
        where = "".join(f" AND {c}" for c in conditions)
        params.extend([limit, offset])

        columns = ", ".join(f"d.{c.strip()}" for c in DOCUMENT_COLUMNS.split(","))
        rows = self._query(
            f"""
            SELECT {columns}, bm25(documents_fts) AS rank
            FROM documents_fts
            JOIN documents d ON d.rowid = documents_fts.rowid
            WHERE documents_fts MATCH ?{where}
            ORDER BY rank, d.rowid
            LIMIT ? OFFSET ?
            """,
            params,
        )
        return [(self._row_to_document(r), float(r["rank"])) for r in rows]

    # -- concept graph ---------------------------------------------------

    def record_concepts(
        self,
        document_id: str,
        concepts: list[Concept],
        related_delta: float = 0.5,
    ) -> list[Concept]:
        """Apply one extraction pass to the graph in a single transaction.

        Each concept's frequency goes up by one (or it is inserted at 1), the
        document's CONTAINS edge takes the current frequency, and every pair of
        concepts seen together gets a RELATED edge (+``related_delta``, or 1.0
        when new).
        """
        unique: dict[str, Concept] = {}
        for c in concepts:
            unique.setdefault(c.id, c)

        recorded: list[Concept] = []
        with self.transaction() as cur:
            for concept in unique.values():
                row = cur.execute("SELECT type, frequency FROM concepts WHERE id = ?", (concept.id,)).fetchone()
                if row:
                    cur.execute(
                        "UPDATE concepts SET frequency = frequency + 1, "
                        "description = COALESCE(description, ?) WHERE id = ?",
                        (concept.description, concept.id),
                    )
                    stored = Concept(
                        id=concept.id,
                        name=concept.name,
                        type=ConceptType.coerce(row["type"]),
                        description=concept.description,
                        frequency=int(row["frequency"]) + 1,
                    )
                else:
                    cur.execute(
                        "INSERT INTO concepts (id, name, type, description, frequency) VALUES (?, ?, ?, ?, 1)",
                        (concept.id, concept.name, concept.type.value, concept.description),
                    )
                    stored = Concept(concept.id, concept.name, concept.type, concept.description, 1)
                recorded.append(stored)

                cur.execute(
                    """
                    INSERT INTO relationships
                        (id, source_id, source_type, target_id, target_type, relationship_type, weight)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET weight = MAX(weight, excluded.weight)
                    """,
                    (
                        relationship_id(document_id, stored.id, RelationshipType.CONTAINS),
                        document_id,
                        DOCUMENT_SOURCE,
                        stored.id,
                        stored.type.value,
                        RelationshipType.CONTAINS.value,
                        float(stored.frequency),
                    ),
                )

            for a, b in combinations(recorded, 2):
                source, target = (a, b) if a.id < b.id else (b, a)
                cur.execute(
                    """
                    INSERT INTO relationships
                        (id, source_id, source_type, target_id, target_type, relationship_type, weight)
                    VALUES (?, ?, ?, ?, ?, ?, 1.0)
                    ON CONFLICT(id) DO UPDATE SET weight = weight + ?
                    """,
                    (
                        relationship_id(source.id, target.id, RelationshipType.RELATED),
                        source.id,
                        source.type.value,
                        target.id,
                        target.type.value,
                        RelationshipType.RELATED.value,
                        related_delta,
                    ),
                )
        return recorded

    def get_concept(self, concept_id: str) -> Concept | None:
        rows = self._query("SELECT id, name, type, description, frequency FROM concepts WHERE id = ?", (concept_id,))
        return self._row_to_concept(rows[0]) if rows else None

    def get_concepts(self, concept_ids: list[str]) -> dict[str, Concept]:
        if not concept_ids:
            return {}
        placeholders = ", ".join("?" for _ in concept_ids)
        rows = self._query(
            f"SELECT id, name, type, description, frequency FROM concepts WHERE id IN ({placeholders})",
            concept_ids,
        )
        return {r["id"]: self._row_to_concept(r) for r in rows}

    def list_relationships(self, min_weight: float = 0.0, limit: int | None = None) -> list[Relationship]:
        """Relationships at or above ``min_weight``, heaviest first."""
        sql = (
            "SELECT id, source_id, source_type, target_id, target_type, relationship_type, weight "
            "FROM relationships WHERE weight >= ? ORDER BY weight DESC, rowid"
        )
        params: list[Any] = [min_weight]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [
            Relationship(
                id=r["id"],
                source_id=r["source_id"],
                source_type=r["source_type"],
                target_id=r["target_id"],
                target_type=r["target_type"],
                relationship_type=RelationshipType(r["relationship_type"]),
                weight=float(r["weight"]),
            )
            for r in self._query(sql, params)
        ]

    def top_relationships(self, min_weight: float = 0.0, limit: int = 100) -> list[Relationship]:
        return self.list_relationships(min_weight, limit)

    def stats(self) -> dict[str, int]:
        counts = {}
        for name, sql in (
            ("documents", "SELECT COUNT(*) FROM documents"),
            ("chunks", "SELECT COUNT(*) FROM document_chunks"),
            ("embedded_chunks", "SELECT COUNT(*) FROM document_chunks WHERE embedding IS NOT NULL"),
            ("concepts", "SELECT COUNT(*) FROM concepts"),
            ("relationships", "SELECT COUNT(*) FROM relationships"),
        ):
            counts[name] = int(self._query(sql)[0][0])
        return counts

    # -- row mapping -----------------------------------------------------

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            title=row["title"],
            path=row["path"],
            type=DocumentType(row["type"]),
            size=row["size"],
            created=datetime.fromisoformat(row["created"]),
            modified=datetime.fromisoformat(row["modified"]),
            indexed=datetime.fromisoformat(row["indexed"]),
            author=row["author"],
            tags=_decode_str_list(row["tags"], "tags"),
            summary=row["summary"],
            key_points=_decode_str_list(row["key_points"], "key_points"),
            page_count=row["page_count"],
            word_count=row["word_count"],
        )

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        try:
            metadata = json.loads(row["metadata"]) if row["metadata"] else {}
        except json.JSONDecodeError as e:
            raise DatabaseError(f"Corrupt metadata on chunk {row['id']}", e) from e
        return Chunk(
            id=row["id"],
            document_id=row["document_id"],
            content=row["content"],
            index=row["index_num"],
            embedding=decode_embedding(row["embedding"]).tolist() if row["embedding"] is not None else None,
            metadata=ChunkMetadata.from_dict(metadata if isinstance(metadata, dict) else {}),
        )

    @staticmethod
    def _row_to_concept(row: sqlite3.Row) -> Concept:
        return Concept(
            id=row["id"],
            name=row["name"],
            type=ConceptType.coerce(row["type"]),
            description=row["description"],
            frequency=int(row["frequency"]),
        )


def _decode_str_list(value: str | None, field_name: str) -> list[str]:
    """Decode a JSON list-of-strings column, rejecting anything else."""
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise DatabaseError(f"Column {field_name} is not valid JSON", e) from e
    if not isinstance(data, list) or not all(isinstance(v, str) for v in data):
        raise DatabaseError(f"Column {field_name} must be a list of strings")
    return data
