"""Markdown file parser."""

import re
from pathlib import Path
from typing import Any

import yaml


class MarkdownParser:
    """Parse markdown files, lifting YAML frontmatter into metadata."""

    def parse(self, file_path: Path) -> dict[str, Any]:
        text = file_path.read_text(encoding="utf-8", errors="replace")
        metadata: dict[str, Any] = {}
        title = file_path.name

        fm_match = re.match(r"^---\s*\n(.*?)\n---\s*\n", text, re.DOTALL)
        if fm_match:
            try:
                fm = yaml.safe_load(fm_match.group(1)) or {}
            except yaml.YAMLError:
                fm = {}
            if isinstance(fm, dict):
                if fm.get("title"):
                    title = str(fm["title"])
                if fm.get("author"):
                    metadata["author"] = str(fm["author"])
                tags = fm.get("tags")
                if isinstance(tags, str):
                    tags = [t.strip() for t in tags.split(",")]
                if isinstance(tags, list):
                    metadata["tags"] = [str(t) for t in tags if str(t).strip()]
            text = text[fm_match.end():]

        return {"content": text, "metadata": metadata, "title": title}
