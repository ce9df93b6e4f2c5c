"""Plain text file parser."""

from pathlib import Path
from typing import Any


class TextParser:
    """Parse plain text files, replacing undecodable bytes."""

    def parse(self, file_path: Path) -> dict[str, Any]:
        text = file_path.read_text(encoding="utf-8", errors="replace")
        return {"content": text, "metadata": {}, "title": file_path.name}


class StrictTextParser:
    """Last-resort reader for files of unknown type: must be valid UTF-8."""

    def parse(self, file_path: Path) -> dict[str, Any]:
        text = file_path.read_bytes().decode("utf-8")
        if "\x00" in text:
            raise ValueError("binary content")
        return {"content": text, "metadata": {}, "title": file_path.name}
