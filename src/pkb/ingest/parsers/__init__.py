"""Document parsers for the supported file formats."""

from ...models import DocumentType
from .csv_parser import CsvParser
from .docx import DocxParser
from .excel import ExcelParser
from .markdown import MarkdownParser
from .pdf import PdfParser
from .text import StrictTextParser, TextParser

EXTENSION_TYPES = {
    ".pdf": DocumentType.PDF,
    ".xlsx": DocumentType.EXCEL,
    ".xls": DocumentType.EXCEL,
    ".csv": DocumentType.CSV,
    ".docx": DocumentType.WORD,
    ".doc": DocumentType.WORD,
    ".txt": DocumentType.TEXT,
    ".md": DocumentType.MARKDOWN,
    ".markdown": DocumentType.MARKDOWN,
}

PARSERS = {
    DocumentType.PDF: PdfParser,
    DocumentType.EXCEL: ExcelParser,
    DocumentType.CSV: CsvParser,
    DocumentType.WORD: DocxParser,
    DocumentType.TEXT: TextParser,
    DocumentType.MARKDOWN: MarkdownParser,
}

__all__ = [
    "EXTENSION_TYPES",
    "PARSERS",
    "CsvParser",
    "DocxParser",
    "ExcelParser",
    "MarkdownParser",
    "PdfParser",
    "StrictTextParser",
    "TextParser",
]
