"""Data models used throughout PKB."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable


class DocumentType(str, Enum):
    PDF = "pdf"
    EXCEL = "excel"
    CSV = "csv"
    WORD = "word"
    TEXT = "text"
    MARKDOWN = "markdown"
    UNKNOWN = "unknown"


class ConceptType(str, Enum):
    TOPIC = "TOPIC"
    CONCEPT = "CONCEPT"
    PERSON = "PERSON"

    @classmethod
    def coerce(cls, value: str) -> "ConceptType":
        """Map free-form model output onto a known type, defaulting to CONCEPT."""
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.CONCEPT


class RelationshipType(str, Enum):
    CONTAINS = "CONTAINS"
    RELATED = "RELATED"


class IndexingStatus(str, Enum):
    IDLE = "idle"
    INDEXING = "indexing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ChunkMetadata:
    """Known per-chunk fields stored alongside the chunk text."""
    title: str = ""
    type: str = DocumentType.UNKNOWN.value

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "type": self.type}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ChunkMetadata":
        data = data or {}
        return cls(title=str(data.get("title", "")), type=str(data.get("type", DocumentType.UNKNOWN.value)))


@dataclass
class Chunk:
    """A chunk of text from a document."""
    id: str
    document_id: str
    content: str
    index: int
    embedding: list[float] | None = None
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)


@dataclass
class Document:
    """One indexed source file and its derived metadata."""
    id: str
    title: str
    path: str
    type: DocumentType
    size: int
    created: datetime
    modified: datetime
    indexed: datetime
    author: str | None = None
    tags: list[str] = field(default_factory=list)
    summary: str | None = None
    key_points: list[str] = field(default_factory=list)
    page_count: int | None = None
    word_count: int | None = None


@dataclass
class Concept:
    """A named entity or topic extracted from document content."""
    id: str
    name: str
    type: ConceptType
    description: str | None = None
    frequency: int = 1


@dataclass
class Relationship:
    """A weighted edge between a document and a concept, or two concepts."""
    id: str
    source_id: str
    source_type: str
    target_id: str
    target_type: str
    relationship_type: RelationshipType
    weight: float = 1.0


@dataclass
class IndexingProgress:
    """Progress of the current (or last) directory indexing run."""
    total: int = 0
    processed: int = 0
    failed: int = 0
    status: IndexingStatus = IndexingStatus.IDLE
    error: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


@dataclass(frozen=True)
class SearchResult:
    """A ranked search hit. Never persisted."""
    document_id: str
    title: str
    path: str
    type: DocumentType
    relevance: float
    snippet: str
    metadata: Document


@dataclass
class GraphNode:
    id: str
    label: str
    type: str  # document | concept | person | topic
    weight: float = 1.0


@dataclass
class GraphEdge:
    source: str
    target: str
    label: str
    weight: float


@dataclass
class KnowledgeGraph:
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)


@dataclass
class IndexOptions:
    """Per-document indexing switches."""
    generate_embeddings: bool = False
    extract_key_points: bool = False
    generate_summary: bool = False
    extract_concepts: bool = True
    tags: list[str] = field(default_factory=list)


@dataclass
class DirectoryOptions(IndexOptions):
    """Options for a directory run (and for directory watching)."""
    recursive: bool = False
    file_types: list[DocumentType] = field(default_factory=list)
    max_files: int | None = None
    on_progress: Callable[[IndexingProgress], None] | None = None


@dataclass
class SearchOptions:
    limit: int = 10
    offset: int = 0
    types: list[DocumentType] = field(default_factory=list)
    start_date: datetime | None = None
    end_date: datetime | None = None
    tags: list[str] = field(default_factory=list)
    use_semantic_search: bool = False


def compute_hash(content: str) -> str:
    """SHA256 hex digest used for every stable id."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def document_id_for_path(path: str) -> str:
    return compute_hash(path)


def concept_id_for_name(name: str) -> str:
    return compute_hash(name.strip().lower())


def relationship_id(source_id: str, target_id: str, rel_type: RelationshipType) -> str:
    return compute_hash(f"{source_id}_{target_id}_{rel_type.value}")
