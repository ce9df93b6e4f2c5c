"""Shared fixtures and fake collaborators for pkb tests."""

import hashlib
import json
import re
import shutil
import tempfile
from pathlib import Path

import pytest

from pkb.config import build_config
from pkb.service import KnowledgeBaseService
from pkb.storage.metadata import MetadataStore

DIMENSION = 384


class HashingEmbedder:
    """Deterministic bag-of-words embedding: texts sharing words point the same way."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        vector = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.sha256(word.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector


class FailingEmbedder:
    def embed(self, text: str) -> list[float]:
        raise RuntimeError("model unavailable")


class FakeCompletion:
    """Canned completion replies keyed on the kind of request."""

    def __init__(self, concepts=None, summary="A short summary.", key_points="- First point\n- Second point"):
        self.concepts = concepts if concepts is not None else []
        self.summary = summary
        self.key_points = key_points
        self.calls: list[tuple[str, str | None]] = []

    def complete(self, prompt, *, system=None, max_tokens=1000, temperature=0.3):
        self.calls.append((prompt, system))
        system = system or ""
        if "key concepts" in system:
            if isinstance(self.concepts, Exception):
                raise self.concepts
            return self.concepts if isinstance(self.concepts, str) else json.dumps(self.concepts)
        if "key points" in system:
            return self.key_points
        return self.summary


def make_pdf(path: Path, text: str, author: str = "Jane Doe", title: str = "Quarterly Report") -> Path:
    """Write a minimal single-page PDF with a valid cross-reference table."""
    escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        f"<< /Author ({author}) /Title ({title}) >>".encode("latin-1"),
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R /Info 6 0 R >>\n".encode()
    out += f"startxref\n{xref_at}\n%%EOF\n".encode()

    path.write_bytes(bytes(out))
    return path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def config(temp_dir):
    return build_config(
        db_path=str(temp_dir / "kb" / "knowledge-base.db"),
        chroma_path=str(temp_dir / "kb" / "chroma"),
        vector_backend="memory",
        embeddings={"enabled": False},
        chunking={"chunk_size": 200, "overlap_words": 5},
        indexing={"max_concurrent_processing": 2, "watch_debounce": 0.1},
    )


@pytest.fixture
def store(temp_dir):
    s = MetadataStore(temp_dir / "store.db").open()
    yield s
    s.close()


@pytest.fixture
def completion():
    return FakeCompletion(
        concepts=[
            {"name": "Machine Learning", "type": "TOPIC", "description": "Learning from data"},
            {"name": "Ada Lovelace", "type": "PERSON"},
            {"name": "Gradient Descent", "type": "CONCEPT"},
        ]
    )


@pytest.fixture
def kb(config, completion):
    service = KnowledgeBaseService(config, embedding_service=HashingEmbedder(), completion_service=completion)
    service.open()
    yield service
    service.close()


@pytest.fixture
def docs_dir(temp_dir):
    """A directory with three small text documents on distinct subjects."""
    d = temp_dir / "docs"
    d.mkdir()
    (d / "astronomy.txt").write_text(
        "Telescopes collect starlight.\n\nThe nebula glows with ionized hydrogen near the galaxy core."
    )
    (d / "cooking.txt").write_text(
        "Knead the dough gently.\n\nSourdough bread needs a lively starter and a hot oven."
    )
    (d / "finance.txt").write_text(
        "Budgets track spending.\n\nQuarterly invoices reconcile against the ledger balance."
    )
    return d
