"""
Shared pytest fixtures for glean tests.

Provides mock analysis providers so no test talks to a real LLM, and
helpers that build small PDF and DOCX documents in memory.
"""

import io
from datetime import datetime, timedelta, timezone

import pytest

from glean.api import Glean
from glean.config import ProviderConfig, StoreConfig
from glean.history_store import HistoryStore
from glean.types import ImageItem, SummarizeConfig, TextItem


class MockAnalysisProvider:
    """Deterministic analysis provider that records its calls."""

    def __init__(self):
        self.summarize_calls: list[tuple[str, dict]] = []
        self.describe_calls: list[str] = []
        self.refine_calls: list[tuple[str, str, str, str]] = []

    def summarize(self, text: str, *, length: str = "medium",
                  focus: str = "informative", format: str = "paragraph") -> str:
        self.summarize_calls.append(
            (text, {"length": length, "focus": focus, "format": format})
        )
        return f"Summary ({length}/{focus}/{format}): {text[:40]}"

    def describe_image(self, image_data_uri: str) -> str:
        self.describe_calls.append(image_data_uri)
        return "A small test image."

    def refine(self, original_text: str, initial_summary: str,
               user_feedback: str, refinement_instructions: str) -> str:
        self.refine_calls.append(
            (original_text, initial_summary, user_feedback, refinement_instructions)
        )
        return f"Refined: {refinement_instructions}"


class FailingAnalysisProvider:
    """Analysis provider whose every call fails like a network error."""

    def summarize(self, text, **kwargs):
        raise ConnectionError("service unavailable")

    def describe_image(self, image_data_uri):
        raise ConnectionError("service unavailable")

    def refine(self, *args):
        raise ConnectionError("service unavailable")


# -----------------------------------------------------------------------------
# Document builders
# -----------------------------------------------------------------------------

def make_pdf(page_texts: list[str]) -> bytes:
    """Build a minimal PDF with one line of Helvetica text per page."""
    n = len(page_texts)
    page_ids = [4 + 2 * i for i in range(n)]
    objects: dict[int, bytes] = {
        1: b"<< /Type /Catalog /Pages 2 0 R >>",
        2: (
            b"<< /Type /Pages /Kids ["
            + b" ".join(f"{pid} 0 R".encode() for pid in page_ids)
            + f"] /Count {n} >>".encode()
        ),
        3: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    }
    for i, text in enumerate(page_texts):
        page_id, content_id = page_ids[i], page_ids[i] + 1
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode("latin-1")
        objects[page_id] = (
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {content_id} 0 R >>"
        ).encode()
        objects[content_id] = (
            f"<< /Length {len(stream)} >>\nstream\n".encode() + stream + b"\nendstream"
        )

    out = io.BytesIO()
    out.write(b"%PDF-1.4\n")
    offsets = {}
    for obj_id in sorted(objects):
        offsets[obj_id] = out.tell()
        out.write(f"{obj_id} 0 obj\n".encode() + objects[obj_id] + b"\nendobj\n")
    xref_at = out.tell()
    size = max(objects) + 1
    out.write(f"xref\n0 {size}\n".encode())
    out.write(b"0000000000 65535 f \n")
    for obj_id in range(1, size):
        out.write(f"{offsets[obj_id]:010d} 00000 n \n".encode())
    out.write(f"trailer\n<< /Size {size} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode())
    return out.getvalue()


def make_docx(paragraphs: list[str]) -> bytes:
    """Build a DOCX document with the given paragraphs."""
    from docx import Document

    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


# Smallest valid PNG signature plus a little payload; extraction never decodes it
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


# -----------------------------------------------------------------------------
# Item builders
# -----------------------------------------------------------------------------

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_text_item(id="t1", minutes=0, title="A text", **kwargs) -> TextItem:
    defaults = dict(
        original_content="The original text of the document.",
        summary="A summary.",
        config=SummarizeConfig(),
        tags=["text", "summary"],
    )
    defaults.update(kwargs)
    return TextItem(
        id=id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        title=title,
        **defaults,
    )


def make_image_item(id="i1", minutes=0, title="An image", **kwargs) -> ImageItem:
    defaults = dict(
        encoded_image="data:image/png;base64,iVBORw0KGgo=",
        description="A description.",
        tags=["image", "vision"],
    )
    defaults.update(kwargs)
    return ImageItem(
        id=id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        title=title,
        **defaults,
    )


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep tests away from real API keys and the user's ~/.glean."""
    for var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GLEAN_OPENAI_API_KEY",
                "GEMINI_API_KEY", "GOOGLE_API_KEY", "GLEAN_VERBOSE"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("GLEAN_STORE_PATH", str(tmp_path / "default-store"))


@pytest.fixture
def store(tmp_path):
    """A real SQLite history store in a temporary directory."""
    s = HistoryStore(tmp_path / "history.db")
    yield s
    s.close()


@pytest.fixture
def mock_provider():
    return MockAnalysisProvider()


@pytest.fixture
def glean(tmp_path, mock_provider):
    """Glean facade backed by real SQLite and the mock analysis provider."""
    config = StoreConfig(path=tmp_path / "store", analysis=ProviderConfig("passthrough"))
    gl = Glean(config=config, analysis_provider=mock_provider)
    yield gl
    gl.close()
