"""
Data types for the analysis history.

An AnalysisItem is one of two variants:
- TextItem: extracted or pasted text plus its summary
- ImageItem: an image (as a base64 data URI) plus its description

Consumers dispatch on the concrete class; the variants never share
variant-specific fields.
"""

import base64
import binascii
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union


# Summarization options offered to the user
LENGTHS = ("short", "medium", "long")
FOCUSES = ("informative", "critical", "narrative", "technical")
FORMATS = ("list", "paragraph", "mixed")

TEXT_KIND = "text"
IMAGE_KIND = "image"

DEFAULT_TEXT_TAGS = ("text", "summary")
DEFAULT_IMAGE_TAGS = ("image", "vision")
DEFAULT_IMAGE_TITLE = "New image analysis"

MAX_ID_LENGTH = 1024
MAX_TAG_LENGTH = 64

# Control characters are never valid in an ID
_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f]')

_DATA_URI_RE = re.compile(r'^data:([\w.+-]+/[\w.+-]+);base64,(.*)$', re.DOTALL)


# -----------------------------------------------------------------------------
# Timestamps
# -----------------------------------------------------------------------------

def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a timestamp string to a timezone-aware UTC datetime.

    Naive timestamps are taken to be UTC. A trailing 'Z' is accepted.
    Raises ValueError for anything that is not ISO 8601.
    """
    if not isinstance(ts, str) or not ts.strip():
        raise ValueError(f"Invalid timestamp: {ts!r}")
    ts = ts.strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Render a datetime in the canonical stored form.

    Always UTC with microsecond precision, so that stored strings sort in
    the same order as the datetimes they represent.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


# -----------------------------------------------------------------------------
# Validation helpers
# -----------------------------------------------------------------------------

def new_item_id() -> str:
    """Fresh random identifier for a new item."""
    return str(uuid.uuid4())


def validate_id(id: str) -> None:
    """Validate an item ID: length and no control characters."""
    if not isinstance(id, str) or not id or len(id) > MAX_ID_LENGTH:
        raise ValueError(f"ID must be 1-{MAX_ID_LENGTH} characters")
    if _ID_BLOCKED_RE.search(id):
        raise ValueError(f"ID contains invalid characters: {id!r}")


def normalize_tags(tags) -> list[str]:
    """Strip, drop empties and de-duplicate tags (first occurrence wins)."""
    if tags is None:
        return []
    if isinstance(tags, str):
        raise ValueError("Tags must be a list of strings, not a string")
    result: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValueError(f"Tag must be a string: {tag!r}")
        tag = tag.strip()
        if not tag:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tag longer than {MAX_TAG_LENGTH} characters: {tag[:20]!r}...")
        if tag not in result:
            result.append(tag)
    return result


def generate_title(content: str) -> str:
    """Title for pasted text: its first five words followed by an ellipsis."""
    words = content.split()
    return " ".join(words[:5]) + "..."


# -----------------------------------------------------------------------------
# Image payloads
# -----------------------------------------------------------------------------

def make_data_uri(mime_type: str, data: bytes) -> str:
    """Encode bytes as a base64 data URI."""
    payload = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


def parse_data_uri(uri: str) -> tuple[str, bytes]:
    """Split a base64 data URI into (mime_type, raw bytes)."""
    m = _DATA_URI_RE.match(uri or "")
    if not m:
        raise ValueError("Not a base64 data URI")
    try:
        data = base64.b64decode(m.group(2), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload in data URI: {e}") from e
    return m.group(1), data


# -----------------------------------------------------------------------------
# Items
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class SummarizeConfig:
    """Summary options chosen when a text item is created."""
    length: str = "medium"
    focus: str = "informative"
    format: str = "paragraph"

    def __post_init__(self):
        if self.length not in LENGTHS:
            raise ValueError(f"length must be one of {', '.join(LENGTHS)}: {self.length!r}")
        if self.focus not in FOCUSES:
            raise ValueError(f"focus must be one of {', '.join(FOCUSES)}: {self.focus!r}")
        if self.format not in FORMATS:
            raise ValueError(f"format must be one of {', '.join(FORMATS)}: {self.format!r}")

    def to_dict(self) -> dict[str, str]:
        return {"length": self.length, "focus": self.focus, "format": self.format}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SummarizeConfig":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"config must be an object: {data!r}")
        return cls(
            length=data.get("length", "medium"),
            focus=data.get("focus", "informative"),
            format=data.get("format", "paragraph"),
        )


@dataclass
class TextItem:
    """
    An analyzed piece of text.

    `original_content` and `config` are fixed at creation; `summary` is
    rewritten by refinement.
    """
    id: str
    created_at: datetime
    title: str
    original_content: str
    summary: str
    config: SummarizeConfig = field(default_factory=SummarizeConfig)
    tags: list[str] = field(default_factory=list)
    source_filename: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    kind = TEXT_KIND

    # Fields that may change after creation
    MUTABLE_FIELDS = frozenset({"title", "tags", "summary"})

    def __str__(self) -> str:
        summary = self.summary[:50] + "..." if len(self.summary) > 50 else self.summary
        return f"{self.id}: {summary}"


@dataclass
class ImageItem:
    """
    An analyzed image.

    `encoded_image` is the canonical stored form of the image: a base64
    data URI that carries its MIME type.
    """
    id: str
    created_at: datetime
    title: str
    encoded_image: str
    description: str
    tags: list[str] = field(default_factory=list)
    source_filename: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    kind = IMAGE_KIND

    MUTABLE_FIELDS = frozenset({"title", "tags", "description"})

    @property
    def mime_type(self) -> str:
        return parse_data_uri(self.encoded_image)[0]

    def __str__(self) -> str:
        desc = self.description[:50] + "..." if len(self.description) > 50 else self.description
        return f"{self.id}: {desc}"


AnalysisItem = Union[TextItem, ImageItem]


def analysis_text(item: AnalysisItem) -> str:
    """The generated text of an item: summary or description."""
    if isinstance(item, TextItem):
        return item.summary
    if isinstance(item, ImageItem):
        return item.description
    raise TypeError(f"Not an analysis item: {type(item).__name__}")


def matches_filter(item: AnalysisItem, text: str) -> bool:
    """Case-insensitive substring match on the title or any tag."""
    needle = text.casefold()
    if needle in item.title.casefold():
        return True
    return any(needle in tag.casefold() for tag in item.tags)


# -----------------------------------------------------------------------------
# Record codec (shared by the history store and export/import)
# -----------------------------------------------------------------------------

# Keys owned by the item model; everything else in a record is carried
# through untouched in `extra`.
_COMMON_KEYS = ("id", "kind", "createdAt", "title", "tags", "sourceFilename")
_TEXT_KEYS = ("originalContent", "summary", "config")
_IMAGE_KEYS = ("encodedImage", "description")

# Keys written by earlier exports, accepted on import
_LEGACY_KEYS = {"type": "kind", "imageUrl": "encodedImage", "originalFilename": "sourceFilename"}

KNOWN_KEYS = frozenset(_COMMON_KEYS + _TEXT_KEYS + _IMAGE_KEYS) | frozenset(_LEGACY_KEYS)


def item_to_dict(item: AnalysisItem) -> dict[str, Any]:
    """Serialize an item to a JSON-compatible record."""
    if isinstance(item, TextItem):
        record = {
            "id": item.id,
            "kind": TEXT_KIND,
            "createdAt": format_timestamp(item.created_at),
            "title": item.title,
            "tags": list(item.tags),
            "sourceFilename": item.source_filename,
            "originalContent": item.original_content,
            "summary": item.summary,
            "config": item.config.to_dict(),
        }
    elif isinstance(item, ImageItem):
        record = {
            "id": item.id,
            "kind": IMAGE_KIND,
            "createdAt": format_timestamp(item.created_at),
            "title": item.title,
            "tags": list(item.tags),
            "sourceFilename": item.source_filename,
            "encodedImage": item.encoded_image,
            "description": item.description,
        }
    else:
        raise TypeError(f"Not an analysis item: {type(item).__name__}")

    for key, value in item.extra.items():
        record.setdefault(key, value)
    return record


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"Record field {key!r} must be a string")
    return value


def item_from_dict(data: dict[str, Any]) -> AnalysisItem:
    """Build an item from a record.

    Raises ValueError if the record cannot represent either variant.
    """
    if not isinstance(data, dict):
        raise ValueError("Record must be an object")

    data = dict(data)
    for legacy, current in _LEGACY_KEYS.items():
        if legacy in data and current not in data:
            data[current] = data[legacy]

    id = data.get("id")
    validate_id(id)
    created = data.get("createdAt")
    if isinstance(created, datetime):
        created_at = created if created.tzinfo else created.replace(tzinfo=timezone.utc)
    else:
        created_at = parse_utc_timestamp(created)

    title = data.get("title") or ""
    if not isinstance(title, str):
        raise ValueError("Record field 'title' must be a string")
    tags = normalize_tags(data.get("tags"))
    source_filename = data.get("sourceFilename")
    if source_filename is not None and not isinstance(source_filename, str):
        raise ValueError("Record field 'sourceFilename' must be a string")

    extra = {k: v for k, v in data.items() if k not in KNOWN_KEYS}

    kind = data.get("kind")
    if kind == TEXT_KIND:
        return TextItem(
            id=id,
            created_at=created_at,
            title=title,
            original_content=_require_str(data, "originalContent"),
            summary=_require_str(data, "summary"),
            config=SummarizeConfig.from_dict(data.get("config")),
            tags=tags,
            source_filename=source_filename,
            extra=extra,
        )
    if kind == IMAGE_KIND:
        encoded = _require_str(data, "encodedImage")
        parse_data_uri(encoded)
        return ImageItem(
            id=id,
            created_at=created_at,
            title=title,
            encoded_image=encoded,
            description=_require_str(data, "description"),
            tags=tags,
            source_filename=source_filename,
            extra=extra,
        )
    raise ValueError(f"Unknown item kind: {kind!r}")


# -----------------------------------------------------------------------------
# Display
# -----------------------------------------------------------------------------

def render_markdown(item: AnalysisItem) -> str:
    """Render a single item as a markdown document."""
    md = f"# {item.title}\n\n"
    md += "**Tags:** " + ", ".join(f"`{t}`" for t in item.tags) + "\n\n"
    if isinstance(item, TextItem):
        md += f"## Summary\n\n{item.summary}\n\n---\n\n"
        quoted = item.original_content.replace("\n", "\n> ")
        md += f"## Original Text\n\n> {quoted}\n"
    elif isinstance(item, ImageItem):
        md += f"## Description\n\n{item.description}\n\n"
        md += f"![Image]({item.encoded_image})\n"
    else:
        raise TypeError(f"Not an analysis item: {type(item).__name__}")
    return md
