"""Markdown table rendering shared by the tabular parsers."""


def render_markdown_table(headers: list[str], rows: list[list[str]]) -> str:
    """Header row, separator row, then one row per record."""
    width = len(headers)
    lines = [
        "| " + " | ".join(_escape(h) for h in headers) + " |",
        "| " + " | ".join("---" for _ in headers) + " |",
    ]
    for row in rows:
        cells = (list(row) + [""] * width)[:width]
        lines.append("| " + " | ".join(_escape(c) for c in cells) + " |")
    return "\n".join(lines) + "\n"


def _escape(value: str) -> str:
    return str(value).replace("|", "\\|").replace("\n", " ").strip()
