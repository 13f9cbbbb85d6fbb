"""
Core API for glean.

Ties the pieces together:
- ingest_file() / ingest_bytes(): classify → extract → analyze → store
- analyze_text(): pasted text → summarize → store
- refine(): rewrite a summary or description with user instructions
- history(), search(), subscribe(): read the stored history
- export_document() / import_document(): whole-history transfer
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Optional

from .classifier import require_supported
from .config import StoreConfig, get_default_store_path, load_or_create_config
from .errors import (
    AnalysisCallFailed,
    ExtractionFailed,
    GleanError,
    ItemNotFound,
    OperationInProgress,
)
from .history_store import HistoryStore, Subscription
from .providers.base import AnalysisProvider, get_registry
from .providers.extractors import Extraction, TextExtractor
from .transfer import ImportStats, export_document, import_document
from .types import (
    DEFAULT_IMAGE_TAGS,
    DEFAULT_IMAGE_TITLE,
    DEFAULT_TEXT_TAGS,
    AnalysisItem,
    ImageItem,
    SummarizeConfig,
    TextItem,
    generate_title,
    new_item_id,
    normalize_tags,
    utc_now,
)

logger = logging.getLogger(__name__)

# Shortest pasted text accepted for summarization
MIN_TEXT_LENGTH = 10

DEFAULT_REFINE_FEEDBACK = "User wants to improve this."


class Glean:
    """
    Local analysis history - ingestion, analysis and a durable record.

    Example:
        with Glean() as gl:
            item = gl.ingest_file("report.pdf")
            print(item.summary)
            for past in gl.history():
                print(past.title)
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        history_store: Optional[HistoryStore] = None,
        analysis_provider: Optional[AnalysisProvider] = None,
    ) -> None:
        """
        Open (or create) a glean store.

        Args:
            store_path: Path to store directory. Uses default if not specified.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            history_store: Injected history store (skips opening the database).
            analysis_provider: Injected analysis provider (skips the registry).
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
            self._store_path = Path(config.path)
        else:
            self._store_path = (
                Path(store_path).expanduser().resolve()
                if store_path is not None else get_default_store_path()
            )
            self._config = load_or_create_config(self._store_path)

        self._extractor = TextExtractor(max_size=self._config.max_file_size)

        # Created on first use so read-only commands never touch the network
        self._analysis_provider = analysis_provider

        # --- Persistent operations log ---
        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        self._history = history_store or HistoryStore(self._config.database_path)

        # IDs with an analysis call in flight
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    @property
    def config(self) -> StoreConfig:
        """Public access to store configuration."""
        return self._config

    @property
    def store(self) -> HistoryStore:
        return self._history

    def _get_analysis_provider(self) -> AnalysisProvider:
        if self._analysis_provider is None:
            params = dict(self._config.analysis.params)
            params.setdefault("language", self._config.language)
            self._analysis_provider = get_registry().create_analysis(
                self._config.analysis.name, params,
            )
            logger.debug("Using analysis provider %s", self._config.analysis.name)
        return self._analysis_provider

    @contextmanager
    def _exclusive(self, id: str):
        """Allow at most one analysis call per item ID at a time."""
        with self._in_flight_lock:
            if id in self._in_flight:
                raise OperationInProgress(id)
            self._in_flight.add(id)
        try:
            yield
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(id)

    def _call_provider(self, what: str, method: str, *args, **kwargs) -> str:
        """Run one provider call, turning any failure into AnalysisCallFailed."""
        try:
            result = getattr(self._get_analysis_provider(), method)(*args, **kwargs)
        except GleanError:
            raise
        except Exception as e:
            logger.warning("%s failed: %s", what, e)
            raise AnalysisCallFailed(str(e) or type(e).__name__) from e
        if not isinstance(result, str) or not result.strip():
            raise AnalysisCallFailed(f"{what} returned no text")
        return result.strip()

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def ingest_file(
        self,
        path: str | Path,
        *,
        mime_type: Optional[str] = None,
        config: Optional[SummarizeConfig] = None,
        title: Optional[str] = None,
    ) -> AnalysisItem:
        """
        Analyze a file from disk and store the result.

        Args:
            path: File to ingest
            mime_type: Declared MIME type; guessed from the name if omitted
            config: Summary options for text content
            title: Display title; defaults to the file name

        Returns:
            The stored item

        Raises:
            ClassificationRejected, ExtractionFailed, AnalysisCallFailed,
            StoreWriteFailed
        """
        path = Path(path)
        try:
            extraction = self._extractor.extract_path(path, mime_type)
            return self._analyze_extraction(extraction, config=config, title=title)
        except GleanError as e:
            logger.warning("Ingestion of %s failed: %s", path.name, e)
            raise

    def ingest_bytes(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        *,
        config: Optional[SummarizeConfig] = None,
        title: Optional[str] = None,
    ) -> AnalysisItem:
        """Analyze an uploaded payload and store the result."""
        try:
            classification = require_supported(mime_type, filename)
            extraction = self._extractor.extract(classification, data, filename, mime_type)
            return self._analyze_extraction(extraction, config=config, title=title)
        except GleanError as e:
            logger.warning("Ingestion of %s failed: %s", filename, e)
            raise

    def _analyze_extraction(
        self,
        extraction: Extraction,
        *,
        config: Optional[SummarizeConfig],
        title: Optional[str],
    ) -> AnalysisItem:
        if extraction.is_image:
            return self._analyze_image(
                extraction.image_data_uri,
                title=title or extraction.filename or DEFAULT_IMAGE_TITLE,
                source_filename=extraction.filename,
            )
        if not extraction.text.strip():
            raise ExtractionFailed(extraction.filename, "no text found in file")
        return self._analyze_text(
            extraction.text,
            config=config or SummarizeConfig(),
            title=title or extraction.filename,
            source_filename=extraction.filename,
        )

    def analyze_text(
        self,
        text: str,
        *,
        config: Optional[SummarizeConfig] = None,
        title: Optional[str] = None,
        source_filename: Optional[str] = None,
    ) -> TextItem:
        """
        Summarize pasted text and store the result.

        Raises:
            ValueError: If the text is shorter than MIN_TEXT_LENGTH characters
        """
        if len(text.strip()) < MIN_TEXT_LENGTH:
            raise ValueError(f"Please enter at least {MIN_TEXT_LENGTH} characters.")
        return self._analyze_text(
            text,
            config=config or SummarizeConfig(),
            title=title or generate_title(text),
            source_filename=source_filename,
        )

    def _analyze_text(
        self,
        text: str,
        *,
        config: SummarizeConfig,
        title: str,
        source_filename: Optional[str],
    ) -> TextItem:
        summary = self._call_provider(
            "Summarization",
            "summarize",
            text,
            length=config.length,
            focus=config.focus,
            format=config.format,
        )
        item = TextItem(
            id=new_item_id(),
            created_at=utc_now(),
            title=title,
            original_content=text,
            summary=summary,
            config=config,
            tags=list(DEFAULT_TEXT_TAGS),
            source_filename=source_filename,
        )
        self._history.insert(item)
        return item

    def _analyze_image(
        self,
        image_data_uri: str,
        *,
        title: str,
        source_filename: Optional[str],
    ) -> ImageItem:
        description = self._call_provider(
            "Image description", "describe_image", image_data_uri,
        )
        item = ImageItem(
            id=new_item_id(),
            created_at=utc_now(),
            title=title,
            encoded_image=image_data_uri,
            description=description,
            tags=list(DEFAULT_IMAGE_TAGS),
            source_filename=source_filename,
        )
        self._history.insert(item)
        return item

    # -------------------------------------------------------------------------
    # Edits
    # -------------------------------------------------------------------------

    def _require(self, id: str) -> AnalysisItem:
        item = self._history.get(id)
        if item is None:
            raise ItemNotFound(id)
        return item

    def refine(
        self,
        id: str,
        instructions: str,
        *,
        feedback: str = DEFAULT_REFINE_FEEDBACK,
    ) -> AnalysisItem:
        """
        Rewrite an item's summary or description following instructions.

        Raises:
            ItemNotFound: If no item has this ID
            OperationInProgress: If this item is already being analyzed
            AnalysisCallFailed: The item is left unchanged
        """
        with self._exclusive(id):
            item = self._require(id)
            if isinstance(item, TextItem):
                refined = self._call_provider(
                    "Refinement", "refine",
                    item.original_content, item.summary, feedback, instructions,
                )
                return self._history.update(id, summary=refined)
            if isinstance(item, ImageItem):
                refined = self._call_provider(
                    "Refinement", "refine",
                    item.description, item.description, feedback, instructions,
                )
                return self._history.update(id, description=refined)
            raise TypeError(f"Not an analysis item: {type(item).__name__}")

    def rename(self, id: str, title: str) -> AnalysisItem:
        """Change an item's display title."""
        title = title.strip()
        if not title:
            raise ValueError("Title cannot be empty")
        return self._history.update(id, title=title)

    def set_tags(self, id: str, tags: Iterable[str]) -> AnalysisItem:
        """Replace an item's tags."""
        return self._history.update(id, tags=normalize_tags(list(tags)))

    def add_tags(self, id: str, tags: Iterable[str]) -> AnalysisItem:
        item = self._require(id)
        return self.set_tags(id, list(item.tags) + list(tags))

    def remove_tags(self, id: str, tags: Iterable[str]) -> AnalysisItem:
        item = self._require(id)
        drop = set(normalize_tags(list(tags)))
        return self.set_tags(id, [t for t in item.tags if t not in drop])

    def delete(self, id: str) -> bool:
        """Delete one item. Returns False if it did not exist."""
        return self._history.delete(id)

    def clear_history(self) -> int:
        """Delete every item. The caller is responsible for confirming."""
        return self._history.delete_all()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Optional[AnalysisItem]:
        return self._history.get(id)

    def history(self, limit: Optional[int] = None) -> list[AnalysisItem]:
        """Stored items, newest first."""
        items = self._history.query_all_ordered_by_recency()
        return items[:limit] if limit else items

    def search(self, text: str) -> list[AnalysisItem]:
        """Items whose title or tags contain `text`, newest first."""
        return self._history.search(text)

    def subscribe(self, listener: Callable[[list[AnalysisItem]], None]) -> Subscription:
        """Live query on the full history; see HistoryStore.subscribe."""
        return self._history.subscribe(listener)

    def count(self) -> int:
        return self._history.count()

    # -------------------------------------------------------------------------
    # Export / Import
    # -------------------------------------------------------------------------

    def export_document(self) -> bytes:
        """The whole history as a JSON document (UTF-8 bytes)."""
        return export_document(self._history)

    def export_to(self, path: str | Path) -> int:
        """Write the export document to a file. Returns the item count."""
        data = self.export_document()
        Path(path).write_bytes(data)
        count = self._history.count()
        logger.info("Exported %d items to %s", count, path)
        return count

    def import_document(self, raw: bytes | str) -> ImportStats:
        """Upsert every record of an export document; all or nothing."""
        return import_document(self._history, raw)

    def import_from(self, path: str | Path) -> ImportStats:
        return self.import_document(Path(path).read_bytes())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the history store and detach the operations log."""
        if getattr(self, "_history", None) is not None:
            self._history.close()

        # Remove ops log handler to avoid handler accumulation
        if getattr(self, "_ops_log_handler", None) is not None:
            logging.getLogger("glean").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close resources."""
        self.close()
        return False

    def __del__(self):
        """Cleanup on deletion."""
        try:
            self.close()
        except Exception:
            pass  # Suppress errors during garbage collection
