"""
Text extraction for classified uploads.

Turns the bytes of a supported file into either a single UTF-8 string
(plain text, PDF, DOCX) or, for images, a base64 data URI that is stored
as-is. Failures are raised as ExtractionFailed, never returned as empty
text.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..classifier import Category, Classification, guess_mime_type, require_supported
from ..config import DEFAULT_MAX_FILE_SIZE
from ..errors import ExtractionFailed
from ..types import make_data_uri

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Extraction:
    """
    Output of a successful extraction.

    Exactly one of `text` and `image_data_uri` is set.
    """
    category: Category
    filename: str
    text: Optional[str] = None
    image_data_uri: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.image_data_uri is not None


class TextExtractor:
    """
    Extraction strategies, one per supported category.

    Stateless apart from the size limit; safe to share.
    """

    def __init__(self, max_size: int | None = None):
        self.max_size = max_size or DEFAULT_MAX_FILE_SIZE

    def extract(
        self,
        classification: Classification,
        data: bytes,
        filename: str,
        mime_type: str,
    ) -> Extraction:
        """
        Extract content from an already-classified payload.

        Raises:
            ExtractionFailed: naming the file and a generic cause
        """
        if len(data) > self.max_size:
            raise ExtractionFailed(
                filename,
                f"file too large ({len(data):,} bytes, limit {self.max_size:,})",
            )

        category = classification.category
        if category is Category.PLAIN_TEXT:
            text = self._extract_plain_text(data, filename)
        elif category is Category.PDF:
            text = self._extract_pdf_text(data, filename)
        elif category is Category.DOCX:
            text = self._extract_docx_text(data, filename)
        elif category is Category.IMAGE:
            mime = mime_type.split(";", 1)[0].strip().lower()
            return Extraction(category, filename, image_data_uri=make_data_uri(mime, data))
        else:
            raise ExtractionFailed(filename, f"no extractor for {classification.reason or category.value}")

        logger.debug("Extracted %d characters from %s (%s)", len(text), filename, category.value)
        return Extraction(category, filename, text=text)

    def extract_path(self, path: Path, mime_type: str | None = None) -> Extraction:
        """
        Classify and extract a file from disk.

        Unsupported files are rejected before the file is opened.
        """
        path = Path(path)
        mime = mime_type or guess_mime_type(path.name)
        classification = require_supported(mime, path.name)

        try:
            size = path.stat().st_size
        except OSError as e:
            raise ExtractionFailed(path.name, f"unreadable file ({e.strerror or e})") from e
        if size > self.max_size:
            raise ExtractionFailed(
                path.name, f"file too large ({size:,} bytes, limit {self.max_size:,})"
            )

        try:
            data = path.read_bytes()
        except OSError as e:
            raise ExtractionFailed(path.name, f"unreadable file ({e.strerror or e})") from e
        return self.extract(classification, data, path.name, mime)

    @staticmethod
    def _extract_plain_text(data: bytes, filename: str) -> str:
        """Decode as UTF-8, verbatim."""
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ExtractionFailed(filename, "file is not valid UTF-8 text") from e

    @staticmethod
    def _extract_pdf_text(data: bytes, filename: str) -> str:
        """Extract text page by page, in page order.

        Pages are joined with a single newline and the result is trimmed.
        A failure on any page fails the whole document.
        """
        from pypdf import PdfReader

        try:
            reader = PdfReader(io.BytesIO(data))
            page_texts = []
            for page_number, page in enumerate(reader.pages, 1):
                page_texts.append(page.extract_text() or "")
                logger.debug("PDF %s: page %d extracted", filename, page_number)
        except Exception as e:
            raise ExtractionFailed(filename, f"malformed or unreadable PDF ({e})") from e

        return "\n".join(page_texts).strip()

    @staticmethod
    def _extract_docx_text(data: bytes, filename: str) -> str:
        """Raw text of a DOCX document, formatting discarded.

        Paragraphs come first, one per line, then each table row as its
        non-empty cells joined with " | ".
        """
        from docx import Document as DocxDocument

        try:
            doc = DocxDocument(io.BytesIO(data))
            lines = [para.text for para in doc.paragraphs]
            for table in doc.tables:
                for row in table.rows:
                    cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                    if cells:
                        lines.append(" | ".join(cells))
            logger.debug("DOCX %s: %d paragraphs, %d tables",
                         filename, len(doc.paragraphs), len(doc.tables))
        except Exception as e:
            raise ExtractionFailed(filename, f"corrupt or unreadable DOCX ({e})") from e
        return "\n".join(lines)
