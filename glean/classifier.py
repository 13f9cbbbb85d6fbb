"""
Upload classification.

Decides from the declared MIME type and the filename alone which
extraction strategy applies to a file, so that unsupported files are
rejected before any bytes are read.
"""

import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Optional

from .errors import ClassificationRejected


class Category(str, Enum):
    PLAIN_TEXT = "plain_text"
    PDF = "pdf"
    DOCX = "docx"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


LEGACY_DOC_REASON = "legacy format, convert to .docx"
UNRECOGNIZED_REASON = "unrecognized type"

# Extensions offered on the upload surface (.doc is accepted only to be rejected)
ACCEPTED_EXTENSIONS = (".txt", ".png", ".jpg", ".jpeg", ".pdf", ".docx", ".doc")

EXTENSION_TYPES = {
    ".txt": "text/plain",
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".doc": "application/msword",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


@dataclass(frozen=True)
class Classification:
    """Result of classifying an upload."""
    category: Category
    reason: Optional[str] = None

    @property
    def supported(self) -> bool:
        return self.category is not Category.UNSUPPORTED


def _base_mime(mime_type: Optional[str]) -> str:
    """Lowercased MIME type without parameters ("text/plain; charset=x" -> "text/plain")."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def _suffix(filename: Optional[str]) -> str:
    if not filename:
        return ""
    return PurePath(filename).suffix.lower()


def classify(mime_type: Optional[str], filename: Optional[str]) -> Classification:
    """
    Classify an upload by declared MIME type and filename.

    Pure function: the same pair always gives the same answer. Legacy
    .doc files are rejected whatever MIME type they claim.
    """
    mime = _base_mime(mime_type)
    suffix = _suffix(filename)

    if suffix == ".doc":
        return Classification(Category.UNSUPPORTED, LEGACY_DOC_REASON)
    if mime.startswith("image/"):
        return Classification(Category.IMAGE)
    if mime == "text/plain":
        return Classification(Category.PLAIN_TEXT)
    if suffix == ".docx":
        return Classification(Category.DOCX)
    if mime == "application/pdf":
        return Classification(Category.PDF)
    return Classification(Category.UNSUPPORTED, UNRECOGNIZED_REASON)


def require_supported(mime_type: Optional[str], filename: Optional[str]) -> Classification:
    """Classify, raising ClassificationRejected for unsupported files."""
    result = classify(mime_type, filename)
    if not result.supported:
        raise ClassificationRejected(result.reason, filename)
    return result


def guess_mime_type(filename: str) -> str:
    """MIME type for a filename when the caller has no declared type."""
    suffix = _suffix(filename)
    if suffix in EXTENSION_TYPES:
        return EXTENSION_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"
