"""Tests for the Glean facade: ingestion, refinement, history and transfer."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from glean.api import Glean
from glean.config import ProviderConfig, StoreConfig
from glean.errors import (
    AnalysisCallFailed,
    ClassificationRejected,
    ExtractionFailed,
    ItemNotFound,
    OperationInProgress,
)
from glean.providers.base import get_registry
from glean.providers.extractors import TextExtractor
from glean.types import ImageItem, SummarizeConfig, TextItem

from tests.conftest import (
    PNG_BYTES,
    FailingAnalysisProvider,
    MockAnalysisProvider,
    make_docx,
)


def _glean_with(tmp_path, provider, name="store"):
    config = StoreConfig(path=tmp_path / name, analysis=ProviderConfig("passthrough"))
    return Glean(config=config, analysis_provider=provider)


class TestIngestBytes:

    def test_plain_text(self, glean, mock_provider):
        item = glean.ingest_bytes(b"Hello world", "notes.txt", "text/plain")
        assert isinstance(item, TextItem)
        assert item.original_content == "Hello world"
        assert item.title == "notes.txt"
        assert item.source_filename == "notes.txt"
        assert item.tags == ["text", "summary"]
        assert item.summary.startswith("Summary (medium/informative/paragraph)")
        assert mock_provider.summarize_calls[0][0] == "Hello world"
        assert glean.history() == [item]

    def test_summary_options_passed_through(self, glean, mock_provider):
        config = SummarizeConfig(length="short", focus="critical", format="list")
        item = glean.ingest_bytes(b"Some text to read", "a.txt", "text/plain", config=config)
        assert mock_provider.summarize_calls[0][1] == {
            "length": "short", "focus": "critical", "format": "list",
        }
        assert item.config == config

    def test_explicit_title(self, glean):
        item = glean.ingest_bytes(b"Hello world", "notes.txt", "text/plain", title="My notes")
        assert item.title == "My notes"

    def test_docx(self, glean):
        data = make_docx(["Dear reader,", "Thanks."])
        item = glean.ingest_bytes(data, "letter.docx", "application/octet-stream")
        assert item.original_content == "Dear reader,\nThanks."

    def test_image(self, glean, mock_provider):
        item = glean.ingest_bytes(PNG_BYTES, "photo.png", "image/png")
        assert isinstance(item, ImageItem)
        assert item.description == "A small test image."
        assert item.title == "photo.png"
        assert item.tags == ["image", "vision"]
        assert item.encoded_image == mock_provider.describe_calls[0]
        assert item.mime_type == "image/png"

    def test_legacy_doc_rejected_before_extraction(self, glean, mock_provider):
        with patch.object(TextExtractor, "extract") as extract:
            with pytest.raises(ClassificationRejected) as excinfo:
                glean.ingest_bytes(b"\xd0\xcf\x11\xe0", "report.doc", "application/msword")
        assert "legacy format" in excinfo.value.reason
        extract.assert_not_called()
        assert mock_provider.summarize_calls == []
        assert glean.count() == 0

    def test_extraction_failure_creates_nothing(self, glean, mock_provider):
        with pytest.raises(ExtractionFailed):
            glean.ingest_bytes(b"\xff\xfe\xfa", "bad.txt", "text/plain")
        assert mock_provider.summarize_calls == []
        assert glean.count() == 0

    def test_pdf_without_text_rejected(self, glean, mock_provider):
        reader = MagicMock()
        page = MagicMock()
        page.extract_text.return_value = "   "
        reader.pages = [page]
        with patch("pypdf.PdfReader", return_value=reader):
            with pytest.raises(ExtractionFailed, match="no text"):
                glean.ingest_bytes(b"%PDF-", "scan.pdf", "application/pdf")
        assert mock_provider.summarize_calls == []
        assert glean.count() == 0

    def test_analysis_failure_creates_nothing(self, tmp_path):
        gl = _glean_with(tmp_path, FailingAnalysisProvider())
        try:
            with pytest.raises(AnalysisCallFailed, match="service unavailable"):
                gl.ingest_bytes(b"Hello world", "notes.txt", "text/plain")
            with pytest.raises(AnalysisCallFailed):
                gl.ingest_bytes(PNG_BYTES, "p.png", "image/png")
            assert gl.history() == []
        finally:
            gl.close()

    def test_empty_analysis_is_a_failure(self, tmp_path):
        provider = MockAnalysisProvider()
        provider.summarize = lambda text, **kwargs: "  "
        gl = _glean_with(tmp_path, provider)
        try:
            with pytest.raises(AnalysisCallFailed, match="no text"):
                gl.ingest_bytes(b"Hello world", "notes.txt", "text/plain")
            assert gl.count() == 0
        finally:
            gl.close()


class TestIngestFile:

    def test_from_disk(self, glean, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("Hello world", encoding="utf-8")
        item = glean.ingest_file(path)
        assert item.original_content == "Hello world"
        assert item.source_filename == "notes.txt"

    def test_doc_on_disk_rejected(self, glean, tmp_path):
        path = tmp_path / "report.doc"
        path.write_bytes(b"\xd0\xcf\x11\xe0")
        with pytest.raises(ClassificationRejected):
            glean.ingest_file(path)
        assert glean.count() == 0

    def test_declared_mime_type_wins(self, glean, tmp_path):
        path = tmp_path / "upload.bin"
        path.write_bytes(PNG_BYTES)
        item = glean.ingest_file(path, mime_type="image/png")
        assert isinstance(item, ImageItem)


class TestAnalyzeText:

    def test_generated_title(self, glean):
        item = glean.analyze_text("The quick brown fox jumps over the lazy dog")
        assert item.title == "The quick brown fox jumps..."
        assert item.source_filename is None
        assert item.tags == ["text", "summary"]

    def test_too_short(self, glean, mock_provider):
        with pytest.raises(ValueError, match="10 characters"):
            glean.analyze_text("   tiny   ")
        assert mock_provider.summarize_calls == []


class TestRefine:

    def test_text_summary_rewritten(self, glean, mock_provider):
        item = glean.ingest_bytes(b"Hello world, again", "notes.txt", "text/plain")
        refined = glean.refine(item.id, "Use bullet points")
        assert refined.summary == "Refined: Use bullet points"
        assert refined.original_content == "Hello world, again"
        original, initial, feedback, instructions = mock_provider.refine_calls[0]
        assert original == "Hello world, again"
        assert initial == item.summary
        assert feedback == "User wants to improve this."
        assert instructions == "Use bullet points"
        assert glean.get(item.id).summary == "Refined: Use bullet points"

    def test_image_description_rewritten(self, glean):
        item = glean.ingest_bytes(PNG_BYTES, "p.png", "image/png")
        refined = glean.refine(item.id, "Mention the colors", feedback="Too vague")
        assert refined.description == "Refined: Mention the colors"
        assert refined.encoded_image == item.encoded_image

    def test_missing_item(self, glean):
        with pytest.raises(ItemNotFound):
            glean.refine("nope", "anything")

    def test_failure_leaves_item_unchanged(self, tmp_path):
        provider = MockAnalysisProvider()
        gl = _glean_with(tmp_path, provider)
        try:
            item = gl.ingest_bytes(b"Hello world", "notes.txt", "text/plain")
            provider.refine = FailingAnalysisProvider().refine
            with pytest.raises(AnalysisCallFailed):
                gl.refine(item.id, "shorter")
            assert gl.get(item.id).summary == item.summary
        finally:
            gl.close()

    def test_one_analysis_per_item_at_a_time(self, tmp_path):
        entered = threading.Event()
        release = threading.Event()

        class SlowProvider(MockAnalysisProvider):
            def refine(self, *args):
                entered.set()
                release.wait(timeout=5)
                return "slow result"

        gl = _glean_with(tmp_path, SlowProvider())
        try:
            item = gl.ingest_bytes(b"Hello world", "notes.txt", "text/plain")
            worker = threading.Thread(target=lambda: gl.refine(item.id, "a"))
            worker.start()
            assert entered.wait(timeout=5)
            with pytest.raises(OperationInProgress):
                gl.refine(item.id, "b")
            release.set()
            worker.join(timeout=5)
            assert gl.get(item.id).summary == "slow result"
            # Guard is released once the call finishes
            assert gl.refine(item.id, "c").summary == "slow result"
        finally:
            release.set()
            gl.close()


class TestEdits:

    def test_rename(self, glean):
        item = glean.analyze_text("Some text long enough to analyze")
        assert glean.rename(item.id, "  Better title ").title == "Better title"

    def test_rename_empty(self, glean):
        item = glean.analyze_text("Some text long enough to analyze")
        with pytest.raises(ValueError):
            glean.rename(item.id, "   ")

    def test_tags(self, glean):
        item = glean.analyze_text("Some text long enough to analyze")
        assert glean.add_tags(item.id, ["work", "text"]).tags == ["text", "summary", "work"]
        assert glean.remove_tags(item.id, ["summary"]).tags == ["text", "work"]
        assert glean.set_tags(item.id, ["only"]).tags == ["only"]

    def test_tags_missing_item(self, glean):
        with pytest.raises(ItemNotFound):
            glean.add_tags("nope", ["x"])

    def test_delete_and_clear(self, glean):
        a = glean.analyze_text("First text to summarize")
        glean.analyze_text("Second text to summarize")
        assert glean.delete(a.id) is True
        assert glean.delete(a.id) is False
        assert glean.clear_history() == 1
        assert glean.history() == []


class TestReads:

    def test_history_newest_first_and_limit(self, glean):
        first = glean.analyze_text("First text to summarize")
        second = glean.analyze_text("Second text to summarize")
        ids = [i.id for i in glean.history()]
        assert ids.index(second.id) < ids.index(first.id)
        assert len(glean.history(limit=1)) == 1

    def test_search(self, glean):
        glean.ingest_bytes(b"Quarterly numbers", "q3-report.txt", "text/plain")
        glean.ingest_bytes(PNG_BYTES, "cat.png", "image/png")
        assert [i.title for i in glean.search("report")] == ["q3-report.txt"]
        assert [i.title for i in glean.search("vision")] == ["cat.png"]

    def test_subscribe_sees_ingestion(self, glean):
        snapshots = []
        with glean.subscribe(snapshots.append):
            item = glean.analyze_text("Some text long enough to analyze")
        assert snapshots[0] == []
        assert snapshots[-1] == [item]


class TestTransfer:

    def test_export_import_between_stores(self, glean, tmp_path):
        glean.ingest_bytes(b"Hello world", "notes.txt", "text/plain")
        glean.ingest_bytes(PNG_BYTES, "p.png", "image/png")
        out = tmp_path / "glean-history.json"
        assert glean.export_to(out) == 2

        other = _glean_with(tmp_path, MockAnalysisProvider(), name="other")
        try:
            stats = other.import_from(out)
            assert stats.created == 2
            assert other.history() == glean.history()
        finally:
            other.close()


class TestProviderResolution:

    def test_provider_created_from_config_with_language(self, tmp_path):
        created = {}

        class RecordingProvider(MockAnalysisProvider):
            def __init__(self, **params):
                super().__init__()
                created.update(params)

        registry = get_registry()
        registry.register_analysis("recording", RecordingProvider)
        try:
            config = StoreConfig(
                path=tmp_path / "store",
                analysis=ProviderConfig("recording", {"model": "m1"}),
                language="Spanish",
            )
            with Glean(config=config) as gl:
                gl.analyze_text("Some text long enough to analyze")
            assert created == {"model": "m1", "language": "Spanish"}
        finally:
            registry._analysis_providers.pop("recording", None)

    def test_unknown_provider_is_analysis_failure(self, tmp_path):
        config = StoreConfig(path=tmp_path / "store", analysis=ProviderConfig("no-such-llm"))
        with Glean(config=config) as gl:
            with pytest.raises(AnalysisCallFailed, match="no-such-llm"):
                gl.analyze_text("Some text long enough to analyze")
            assert gl.count() == 0

    def test_store_path_creates_config(self, tmp_path):
        with Glean(tmp_path / "fresh") as gl:
            assert gl.config.config_path.exists()
            assert gl.config.analysis.name == "passthrough"
            item = gl.analyze_text("Passthrough returns the text itself")
            assert item.summary == "Passthrough returns the text itself"


class TestOpsLog:

    def test_operations_recorded_and_handler_removed(self, tmp_path):
        import logging

        gl = _glean_with(tmp_path, MockAnalysisProvider())
        handler = gl._ops_log_handler
        item = gl.analyze_text("Some text long enough to analyze")
        gl.close()

        log_text = (tmp_path / "store" / "glean-ops.log").read_text(encoding="utf-8")
        assert f"Inserted text item {item.id}" in log_text
        assert "[glean.history_store]" in log_text
        assert handler not in logging.getLogger("glean").handlers
