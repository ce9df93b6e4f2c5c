"""Word document parser."""

from pathlib import Path
from typing import Any


class DocxParser:
    """Parse Word documents using python-docx."""

    def parse(self, file_path: Path) -> dict[str, Any]:
        from docx import Document

        doc = Document(str(file_path))
        paragraphs = [p.text for p in doc.paragraphs if p.text.strip()]

        # Tables carry real content in many office documents
        for table in doc.tables:
            for row in table.rows:
                cells = [c.text.strip() for c in row.cells]
                if any(cells):
                    paragraphs.append(" | ".join(cells))

        props = doc.core_properties
        metadata: dict[str, Any] = {}
        if props.author:
            metadata["author"] = props.author

        return {
            "content": "\n\n".join(paragraphs),
            "metadata": metadata,
            "title": props.title or file_path.name,
        }
