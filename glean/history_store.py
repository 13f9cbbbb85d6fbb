"""
History store using SQLite.

The history store is the sole owner of analysis items:
- Item identity (ID, the merge key for imports)
- Creation time (the only sort key)
- The full item record, variant fields included

Every mutation commits before it returns. After each commit the store
hands a fresh, fully ordered snapshot to every live-query subscriber.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from .errors import DuplicateItem, ItemNotFound, StoreWriteFailed
from .types import (
    AnalysisItem,
    ImageItem,
    TextItem,
    format_timestamp,
    item_from_dict,
    item_to_dict,
    matches_filter,
    normalize_tags,
)

logger = logging.getLogger(__name__)

Listener = Callable[[list[AnalysisItem]], None]


class Subscription:
    """
    Handle for a live query.

    The listener receives the full ordered history on subscribe and again
    after every committed change, until unsubscribe() is called.
    """

    def __init__(self, store: "HistoryStore", listener: Listener):
        self._store = store
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._store._remove_subscription(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()
        return False


class HistoryStore:
    """
    SQLite-backed store for analysis items.

    Writers serialize on a store-level lock; each write is a single SQLite
    transaction, so a failed write leaves the previous state in place and
    readers never see a partial write.
    """

    def __init__(self, store_path: Path | str):
        """
        Args:
            store_path: Path to SQLite database file, or ":memory:"
        """
        self._db_path = store_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._subscriptions: list[Subscription] = []
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        if str(self._db_path) != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    title TEXT NOT NULL,
                    record_json TEXT NOT NULL
                )
            """)

            # Index for recency ordering
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_items_created
                ON items(created_at)
            """)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("History store is closed")
        return self._conn

    @staticmethod
    def _row_values(item: AnalysisItem) -> tuple:
        if not isinstance(item, (TextItem, ImageItem)):
            raise TypeError(f"Not an analysis item: {type(item).__name__}")
        record = item_to_dict(item)
        return (
            item.id,
            item.kind,
            format_timestamp(item.created_at),
            item.title,
            json.dumps(record, ensure_ascii=False),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> AnalysisItem:
        return item_from_dict(json.loads(row["record_json"]))

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def insert(self, item: AnalysisItem) -> AnalysisItem:
        """
        Persist a new item.

        Raises:
            DuplicateItem: If an item with this ID already exists
            StoreWriteFailed: If the write could not be committed
        """
        values = self._row_values(item)
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute("""
                        INSERT INTO items (id, kind, created_at, title, record_json)
                        VALUES (?, ?, ?, ?, ?)
                    """, values)
            except sqlite3.IntegrityError as e:
                raise DuplicateItem(item.id) from e
            except sqlite3.Error as e:
                raise StoreWriteFailed(str(e)) from e
            logger.info("Inserted %s item %s", item.kind, item.id)
            self._notify()
        return item

    def update(self, id: str, **fields) -> AnalysisItem:
        """
        Overwrite mutable fields of an existing item.

        Accepts title and tags for both kinds, summary for text items and
        description for image items. Values replace the stored ones whole.

        Args:
            id: Item identifier
            **fields: Field names and new values

        Returns:
            The updated item

        Raises:
            ItemNotFound: If no item has this ID
            ValueError: If a field is write-once or belongs to the other kind
        """
        with self._lock:
            item = self.get(id)
            if item is None:
                raise ItemNotFound(id)

            disallowed = set(fields) - item.MUTABLE_FIELDS
            if disallowed:
                raise ValueError(
                    f"Cannot update {', '.join(sorted(disallowed))} on {item.kind} item "
                    f"(mutable: {', '.join(sorted(item.MUTABLE_FIELDS))})"
                )
            for name, value in fields.items():
                if name == "tags":
                    value = normalize_tags(value)
                elif not isinstance(value, str):
                    raise ValueError(f"{name} must be a string")
                setattr(item, name, value)

            values = self._row_values(item)
            try:
                with self.conn:
                    cursor = self.conn.execute("""
                        UPDATE items SET title = ?, record_json = ?
                        WHERE id = ?
                    """, (values[3], values[4], id))
            except sqlite3.Error as e:
                raise StoreWriteFailed(str(e)) from e
            if cursor.rowcount == 0:
                raise ItemNotFound(id)
            logger.info("Updated %s on item %s", ", ".join(sorted(fields)), id)
            self._notify()
        return item

    def upsert_many(self, items: Iterable[AnalysisItem]) -> dict[str, int]:
        """
        Insert or fully replace items by ID, in one transaction.

        Either every item is written or none is.

        Returns:
            Dict with counts: {"created": n, "replaced": m}
        """
        rows = [self._row_values(item) for item in items]
        created = replaced = 0
        with self._lock:
            try:
                with self.conn:
                    for row in rows:
                        exists = self.conn.execute(
                            "SELECT 1 FROM items WHERE id = ?", (row[0],)
                        ).fetchone() is not None
                        self.conn.execute("""
                            INSERT OR REPLACE INTO items
                            (id, kind, created_at, title, record_json)
                            VALUES (?, ?, ?, ?, ?)
                        """, row)
                        if exists:
                            replaced += 1
                        else:
                            created += 1
            except sqlite3.Error as e:
                raise StoreWriteFailed(str(e)) from e
            logger.info("Upserted %d items (%d new, %d replaced)", len(rows), created, replaced)
            if rows:
                self._notify()
        return {"created": created, "replaced": replaced}

    def delete(self, id: str) -> bool:
        """
        Delete one item.

        Returns:
            True if the item existed and was deleted
        """
        with self._lock:
            try:
                with self.conn:
                    cursor = self.conn.execute("DELETE FROM items WHERE id = ?", (id,))
            except sqlite3.Error as e:
                raise StoreWriteFailed(str(e)) from e
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("Deleted item %s", id)
                self._notify()
        return deleted

    def delete_all(self) -> int:
        """
        Delete every item. Irreversible; confirmation is the caller's job.

        Returns:
            Number of items deleted
        """
        with self._lock:
            try:
                with self.conn:
                    cursor = self.conn.execute("DELETE FROM items")
            except sqlite3.Error as e:
                raise StoreWriteFailed(str(e)) from e
            logger.info("Cleared history (%d items)", cursor.rowcount)
            self._notify()
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Optional[AnalysisItem]:
        """Get an item by ID, or None."""
        with self._lock:
            row = self.conn.execute(
                "SELECT record_json FROM items WHERE id = ?", (id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_item(row)

    def exists(self, id: str) -> bool:
        """Check if an item exists."""
        with self._lock:
            row = self.conn.execute("SELECT 1 FROM items WHERE id = ?", (id,)).fetchone()
        return row is not None

    def count(self) -> int:
        """Number of stored items."""
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]

    def query_all_ordered_by_recency(self) -> list[AnalysisItem]:
        """All items, newest first."""
        with self._lock:
            rows = self.conn.execute("""
                SELECT record_json FROM items
                ORDER BY created_at DESC, id ASC
            """).fetchall()
        return [self._row_to_item(row) for row in rows]

    def search(self, text: str) -> list[AnalysisItem]:
        """Items whose title or a tag contains `text` (case-insensitive), newest first."""
        return [item for item in self.query_all_ordered_by_recency() if matches_filter(item, text)]

    # -------------------------------------------------------------------------
    # Live Query
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Subscription:
        """
        Register a live query on the full history, newest first.

        The listener is called right away with the current snapshot and
        again after every committed insert, update or delete. Each call
        carries the complete list; there are no incremental diffs.
        """
        with self._lock:
            subscription = Subscription(self, listener)
            self._subscriptions.append(subscription)
            self._deliver(subscription, self.query_all_ordered_by_recency())
        return subscription

    def _remove_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _notify(self) -> None:
        """Send a fresh snapshot to every subscriber. Called with the lock held."""
        if not self._subscriptions:
            return
        snapshot = self.query_all_ordered_by_recency()
        for subscription in list(self._subscriptions):
            if subscription.active:
                self._deliver(subscription, list(snapshot))

    @staticmethod
    def _deliver(subscription: Subscription, snapshot: list[AnalysisItem]) -> None:
        try:
            subscription.listener(snapshot)
        except Exception as e:
            # A broken listener must not fail the write that triggered it
            logger.warning("History listener failed: %s", e, exc_info=True)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection and drop subscriptions."""
        with self._lock:
            for subscription in self._subscriptions:
                subscription.active = False
            self._subscriptions.clear()
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        try:
            self.close()
        except Exception:
            pass  # Suppress errors during garbage collection
