"""File type detection and text extraction."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import FileProcessingError, KnowledgeBaseError
from ..models import DocumentType
from .parsers import EXTENSION_TYPES, PARSERS, StrictTextParser

logger = logging.getLogger(__name__)

SNIFF_BYTES = 8192


@dataclass
class ExtractionResult:
    """Raw text plus whatever metadata the parser could recover."""
    text: str
    title: str
    type: DocumentType
    size: int
    created: datetime
    modified: datetime
    word_count: int
    author: str | None = None
    page_count: int | None = None
    tags: list[str] = field(default_factory=list)


def count_words(text: str) -> int:
    return len(text.split())


def mime_to_type(mime: str) -> DocumentType:
    """Classify a MIME string by family."""
    mime = (mime or "").lower()
    if "pdf" in mime:
        return DocumentType.PDF
    if "excel" in mime or "spreadsheet" in mime:
        return DocumentType.EXCEL
    if "word" in mime:
        return DocumentType.WORD
    if "text" in mime:
        return DocumentType.TEXT
    return DocumentType.UNKNOWN


def sniff_type(file_path: Path) -> DocumentType:
    """Detect the type from the file signature using libmagic."""
    import magic

    with open(file_path, "rb") as f:
        head = f.read(SNIFF_BYTES)
    if not head:
        return DocumentType.UNKNOWN
    return mime_to_type(magic.from_buffer(head, mime=True))


def detect_type(file_path: str | Path) -> DocumentType:
    """Extension map first, then the file signature."""
    path = Path(file_path)
    doc_type = EXTENSION_TYPES.get(path.suffix.lower())
    if doc_type is not None:
        return doc_type
    try:
        return sniff_type(path)
    except OSError as e:
        logger.debug("Could not sniff %s: %s", path, e)
        return DocumentType.UNKNOWN


def extract(file_path: str | Path) -> ExtractionResult:
    """Extract text and basic metadata from a supported file.

    Raises:
        FileProcessingError: if the file is missing, unreadable, or no
            extraction strategy succeeds.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileProcessingError("File does not exist", path)
    if not path.is_file():
        raise FileProcessingError("Not a regular file", path)

    try:
        stats = path.stat()
        doc_type = detect_type(path)
        parser_cls = PARSERS.get(doc_type)
        if parser_cls is not None:
            result = parser_cls().parse(path)
        else:
            # Unknown type: a plain-text read is the last strategy left
            try:
                result = StrictTextParser().parse(path)
            except (UnicodeDecodeError, ValueError) as e:
                raise FileProcessingError("Unsupported file type", path, e) from e
            doc_type = DocumentType.TEXT
    except KnowledgeBaseError:
        raise
    except Exception as e:
        raise FileProcessingError(f"Failed to extract {path.suffix or 'file'} content", path, e) from e

    text = result["content"]
    meta: dict[str, Any] = result.get("metadata", {})
    return ExtractionResult(
        text=text,
        title=result.get("title") or path.name,
        type=doc_type,
        size=stats.st_size,
        created=datetime.fromtimestamp(getattr(stats, "st_birthtime", stats.st_ctime)),
        modified=datetime.fromtimestamp(stats.st_mtime),
        word_count=count_words(text),
        author=meta.get("author"),
        page_count=meta.get("page_count"),
        tags=list(meta.get("tags", [])),
    )
