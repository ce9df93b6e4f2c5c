"""Paragraph-aware chunking with word overlap."""

import re

from ..models import Chunk, ChunkMetadata, DocumentType

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def chunk_text(text: str, chunk_size: int = 1000, overlap_words: int = 0) -> list[str]:
    """Split text into overlapping chunks along blank-line paragraph boundaries.

    Paragraphs are accumulated until adding the next one would push the buffer
    past ``chunk_size`` characters. The emitted chunk's last ``overlap_words``
    words then seed the next buffer, followed by the paragraph that overflowed.
    A paragraph longer than ``chunk_size`` becomes its own oversized chunk; it
    is never split.

    Args:
        text: The text to chunk.
        chunk_size: Soft maximum chunk length in characters.
        overlap_words: Words carried over from the end of each emitted chunk.

    Returns:
        List of chunk strings, in document order.
    """
    chunks: list[str] = []
    current = ""

    for paragraph in PARAGRAPH_BREAK.split(text):
        if not paragraph.strip():
            continue

        if current and len(current) + len(paragraph) > chunk_size:
            chunks.append(current)
            tail = overlap_tail(current, overlap_words)
            current = f"{tail} {paragraph}" if tail else paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph

    if current.strip():
        chunks.append(current)

    return chunks


def overlap_tail(text: str, overlap_words: int) -> str:
    """The last ``overlap_words`` whitespace-separated words of ``text``."""
    if overlap_words <= 0:
        return ""
    return " ".join(text.split()[-overlap_words:])


def chunk_id(document_id: str, index: int) -> str:
    return f"chunk_{document_id}_{index}"


def build_chunks(
    document_id: str,
    text: str,
    title: str = "",
    doc_type: DocumentType = DocumentType.UNKNOWN,
    chunk_size: int = 1000,
    overlap_words: int = 0,
) -> list[Chunk]:
    """Chunk ``text`` into Chunk records owned by ``document_id``."""
    return [
        Chunk(
            id=chunk_id(document_id, i),
            document_id=document_id,
            content=content,
            index=i,
            metadata=ChunkMetadata(title=title, type=doc_type.value),
        )
        for i, content in enumerate(chunk_text(text, chunk_size, overlap_words))
    ]
