"""Excel workbook parser."""

from pathlib import Path
from typing import Any

from .table import render_markdown_table


class ExcelParser:
    """Render every sheet of a workbook as a markdown table using openpyxl."""

    def parse(self, file_path: Path) -> dict[str, Any]:
        from openpyxl import load_workbook

        wb = load_workbook(str(file_path), read_only=True, data_only=True)
        try:
            parts = []
            for sheet in wb.worksheets:
                rows = [list(r) for r in sheet.iter_rows(values_only=True)]
                rows = [r for r in rows if any(v is not None and str(v).strip() for v in r)]
                parts.append(f"# Sheet: {sheet.title}\n")
                if rows:
                    headers = [_cell(v) or f"Column {i + 1}" for i, v in enumerate(rows[0])]
                    records = [[_cell(v) for v in r] for r in rows[1:]]
                    parts.append(render_markdown_table(headers, records))
                parts.append("\n")
            author = wb.properties.creator if wb.properties else None
        finally:
            wb.close()

        metadata: dict[str, Any] = {}
        if author:
            metadata["author"] = author
        return {"content": "\n".join(parts), "metadata": metadata, "title": file_path.name}


def _cell(value: Any) -> str:
    return "" if value is None else str(value)
