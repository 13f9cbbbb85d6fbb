"""
Export and import of the whole history.

The export document is a UTF-8 JSON array of item records. Importing a
document upserts every record by ID: existing items are fully replaced,
new ones are created. Unknown record fields are carried through.

Import is all-or-nothing. The whole document is validated and converted
before anything is written, and the writes happen in one transaction.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from .errors import ImportValidationFailed
from .history_store import HistoryStore
from .types import AnalysisItem, item_from_dict, item_to_dict, parse_utc_timestamp

logger = logging.getLogger(__name__)

EXPORT_FILENAME = "glean-history.json"

# Record field holding the item's creation time
TIMESTAMP_FIELD = "createdAt"


@dataclass
class ImportStats:
    """Outcome of an import."""
    created: int = 0
    replaced: int = 0

    @property
    def total(self) -> int:
        return self.created + self.replaced

    def to_dict(self) -> dict[str, int]:
        return {"created": self.created, "replaced": self.replaced, "total": self.total}


def export_items(store: HistoryStore) -> list[dict[str, Any]]:
    """All items as records, newest first. Read-only."""
    return [item_to_dict(item) for item in store.query_all_ordered_by_recency()]


def export_document(store: HistoryStore) -> bytes:
    """The export document as UTF-8 bytes, ready to write to a file."""
    records = export_items(store)
    logger.info("Exporting %d items", len(records))
    return json.dumps(records, ensure_ascii=False, indent=2).encode("utf-8")


def parse_document(raw: bytes | str) -> list[dict[str, Any]]:
    """
    Parse and structurally validate an import document.

    Raises:
        ImportValidationFailed: If the document is not JSON, the top level
            is not an array, or any element is not an object with an `id`
            and a parseable `createdAt`
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ImportValidationFailed("document is not UTF-8 text") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ImportValidationFailed(f"not valid JSON ({e.msg} at line {e.lineno})") from e

    if not isinstance(data, list):
        raise ImportValidationFailed("top level must be an array of items")

    for index, record in enumerate(data):
        if not isinstance(record, dict):
            raise ImportValidationFailed(f"element {index} is not an object")
        id = record.get("id")
        if not isinstance(id, str) or not id:
            raise ImportValidationFailed(f"element {index} has no id")
        if TIMESTAMP_FIELD not in record or record[TIMESTAMP_FIELD] in (None, ""):
            raise ImportValidationFailed(f"element {index} ({id}) has no {TIMESTAMP_FIELD}")
        try:
            parse_utc_timestamp(record[TIMESTAMP_FIELD])
        except (TypeError, ValueError) as e:
            raise ImportValidationFailed(
                f"element {index} ({id}) has an unparseable {TIMESTAMP_FIELD}: "
                f"{record[TIMESTAMP_FIELD]!r}"
            ) from e
    return data


def records_to_items(records: list[dict[str, Any]]) -> list[AnalysisItem]:
    """Convert validated records to items; any bad record rejects the lot."""
    items = []
    for index, record in enumerate(records):
        try:
            items.append(item_from_dict(record))
        except ValueError as e:
            raise ImportValidationFailed(f"element {index} ({record.get('id')}): {e}") from e
    return items


def import_document(store: HistoryStore, raw: bytes | str) -> ImportStats:
    """
    Import a document into the store, upserting by ID.

    Returns:
        ImportStats with created/replaced counts

    Raises:
        ImportValidationFailed: Nothing was written
        StoreWriteFailed: The transaction was rolled back; nothing was written
    """
    items = records_to_items(parse_document(raw))

    # Later duplicates of an ID win, as if upserted in document order
    by_id: dict[str, AnalysisItem] = {}
    for item in items:
        by_id.pop(item.id, None)
        by_id[item.id] = item

    counts = store.upsert_many(by_id.values())
    stats = ImportStats(created=counts["created"], replaced=counts["replaced"])
    logger.info("Imported %d items (%d new, %d replaced)", stats.total, stats.created, stats.replaced)
    return stats
