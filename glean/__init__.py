"""
glean - a local history of document, text and image analyses.

Files are classified, their text extracted, and the result summarized or
described by an analysis provider. Every analysis is kept in a local
SQLite history that can be browsed, refined, exported and re-imported.

Quick start:
    from glean import Glean

    with Glean() as gl:
        item = gl.ingest_file("notes.txt")
        print(item.summary)
"""

__version__ = "0.3.0"

from .api import Glean
from .classifier import Category, Classification, classify
from .errors import (
    AnalysisCallFailed,
    ClassificationRejected,
    ExtractionFailed,
    GleanError,
    ImportValidationFailed,
    ItemNotFound,
    OperationInProgress,
    StoreWriteFailed,
)
from .history_store import HistoryStore, Subscription
from .transfer import EXPORT_FILENAME, ImportStats
from .types import AnalysisItem, ImageItem, SummarizeConfig, TextItem

__all__ = [
    "AnalysisCallFailed",
    "AnalysisItem",
    "Category",
    "Classification",
    "ClassificationRejected",
    "EXPORT_FILENAME",
    "ExtractionFailed",
    "Glean",
    "GleanError",
    "HistoryStore",
    "ImageItem",
    "ImportStats",
    "ImportValidationFailed",
    "ItemNotFound",
    "OperationInProgress",
    "StoreWriteFailed",
    "Subscription",
    "SummarizeConfig",
    "TextItem",
    "classify",
]
