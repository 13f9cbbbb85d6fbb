"""
Logging configuration for glean.

Suppress verbose library output by default for better UX.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Third-party loggers that are noisy at INFO
_LIBRARY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai", "google_genai", "pypdf", "urllib3")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    This silences HTTP client chatter, SDK request logs, pypdf's warnings
    about slightly malformed documents, and Python warnings.

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        for name in _LIBRARY_LOGGERS:
            logging.getLogger(name).setLevel(logging.ERROR)
    else:
        warnings.filterwarnings("default")
        for name in _LIBRARY_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)


DEBUG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Ops log lines name the module so ingestion, store and import entries can be told apart
OPS_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
OPS_LOG_FILENAME = "glean-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and h.stream is sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root_logger):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(DEBUG_FORMAT, datefmt="%H:%M:%S"))
        root_logger.addHandler(handler)

    for name in ("glean",) + _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Attach the store's operations log to the "glean" logger.

    Ingestions, edits, deletions, exports and imports are recorded at INFO
    in {store_path}/glean-ops.log, rotated at 1MB with 3 backups, whether
    or not --verbose is set. The caller removes the returned handler when
    it closes the store.
    """
    store_path = Path(store_path)
    store_path.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(store_path / OPS_LOG_FILENAME),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(OPS_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    glean_logger = logging.getLogger("glean")
    glean_logger.addHandler(handler)
    # INFO must reach the file even in quiet mode
    if glean_logger.level == logging.NOTSET or glean_logger.level > logging.INFO:
        glean_logger.setLevel(logging.INFO)
    return handler
