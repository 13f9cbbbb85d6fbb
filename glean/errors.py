"""
Errors raised by glean, plus error logging for the CLI.

Every failure a user can trigger is a GleanError subclass carrying a
message fit for display. Full stack traces go to the error log.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class GleanError(Exception):
    """Base class for recoverable glean failures."""


class ClassificationRejected(GleanError):
    """The file type cannot be ingested."""

    def __init__(self, reason: str, filename: str | None = None):
        self.reason = reason
        self.filename = filename
        if filename:
            super().__init__(f"Cannot process {filename}: {reason}")
        else:
            super().__init__(f"Cannot process file: {reason}")


class ExtractionFailed(GleanError):
    """Text could not be extracted from a supported file."""

    def __init__(self, filename: str, cause: str):
        self.filename = filename
        self.cause = cause
        super().__init__(f"Could not read {filename}: {cause}")


class AnalysisCallFailed(GleanError):
    """The analysis provider call failed."""

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"Analysis request failed: {cause}")


class StoreWriteFailed(GleanError):
    """A history store write did not commit; prior state is unchanged."""

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"Could not save to history: {cause}")


class DuplicateItem(StoreWriteFailed):
    """Insert of an ID that already exists."""

    def __init__(self, id: str):
        self.id = id
        super().__init__(f"item already exists: {id}")


class ItemNotFound(GleanError):
    """No item with the given ID."""

    def __init__(self, id: str):
        self.id = id
        super().__init__(f"Item not found: {id}")


class ImportValidationFailed(GleanError):
    """An import document was rejected; nothing was written."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid import document: {reason}")


class OperationInProgress(GleanError):
    """An analysis for this item is already running."""

    def __init__(self, id: str):
        self.id = id
        super().__init__(f"An analysis is already in progress for {id}")


def _error_log_path() -> Path:
    """Resolve error log path, respecting GLEAN_STORE_PATH."""
    store = os.environ.get("GLEAN_STORE_PATH")
    if store:
        return Path(store) / "glean-errors.log"
    return Path.home() / ".glean" / "glean-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
