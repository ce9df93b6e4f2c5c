"""CSV file parser."""

import csv
from pathlib import Path
from typing import Any

from .table import render_markdown_table


class CsvParser:
    """Render a CSV file (first row is the header) as a markdown table."""

    def parse(self, file_path: Path) -> dict[str, Any]:
        with open(file_path, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            headers = list(reader.fieldnames or [])
            records = []
            for row in reader:
                values = [row.get(h) or "" for h in headers]
                if any(v.strip() for v in values):
                    records.append(values)

        content = render_markdown_table(headers, records) if headers else ""
        return {"content": content, "metadata": {}, "title": file_path.name}
