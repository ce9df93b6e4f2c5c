"""PDF file parser."""

import re
from pathlib import Path
from typing import Any


class PdfParser:
    """Parse PDF files using pypdf."""

    def parse(self, file_path: Path) -> dict[str, Any]:
        from pypdf import PdfReader

        reader = PdfReader(str(file_path))
        if len(reader.pages) == 0:
            raise ValueError("PDF contains no pages")
        pages = []
        for page in reader.pages:
            text = page.extract_text()
            if text:
                pages.append(self._clean_page(text))

        metadata: dict[str, Any] = {"page_count": len(reader.pages)}
        title = file_path.name

        info = reader.metadata
        if info:
            if info.author:
                metadata["author"] = info.author.strip()
            # Only trust titles that look like a real title
            t = (info.title or "").strip()
            if t and not t.startswith(("{", "[")) and len(t) < 200 and "\n" not in t:
                title = t

        return {"content": "\n\n".join(pages), "metadata": metadata, "title": title}

    @staticmethod
    def _clean_page(text: str) -> str:
        """Rejoin lines that pypdf breaks mid-sentence.

        Blank lines stay paragraph breaks; headings and list items keep their
        own line.
        """
        paragraphs: list[str] = []
        current: list[str] = []

        for line in text.split("\n"):
            stripped = line.strip()
            if not stripped:
                if current:
                    paragraphs.append(" ".join(current))
                    current = []
                continue

            if re.match(r"^(#{1,6}\s|[-*•]\s)", stripped):
                if current:
                    paragraphs.append(" ".join(current))
                    current = []
                paragraphs.append(stripped)
            else:
                current.append(stripped)

        if current:
            paragraphs.append(" ".join(current))

        return "\n\n".join(paragraphs)
