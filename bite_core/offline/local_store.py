# =============================================================================
# bite_core/offline/local_store.py
# Local SQLite Store for Offline Operation
# =============================================================================
"""
LocalStore - durable key-value collections that survive restarts and
offline periods.

Features:
- One table per collection, upserts keyed by id
- Commit-before-return writes (WAL journal, synchronous=FULL)
- Atomic batch writes (put_many)
- Outbox flag for offline-created orders
- DataFrame export (pandas)
- Thread-safe operations
"""

from __future__ import annotations
import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
import logging

import numpy as np
import pandas as pd

from bite_core.errors import StoreWriteFailure
from bite_core.models import CachedEntity, Collection, OrderRecord

logger = logging.getLogger(__name__)

CollectionName = Union[Collection, str]


def _json_default(value: Any) -> Any:
    """Convert numpy/pandas/datetime values that json cannot encode."""
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return value.isoformat()
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class LocalStore:
    """
    Local SQLite store holding cached restaurants, orders, preferences and
    liked restaurants.

    Usage:
        store = LocalStore(Path("local_data/swipenbite.db"))
        store.initialize()
        store.put_many("restaurants", nearby)
        store.get("restaurants", "r-1")
    """

    DEFAULT_DB_PATH = Path("local_data") / "swipenbite.db"

    SCHEMA = {
        Collection.RESTAURANTS.value: """
            CREATE TABLE IF NOT EXISTS restaurants (
                id TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL,
                last_updated REAL NOT NULL
            )
        """,
        Collection.ORDERS.value: """
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL,
                last_updated REAL NOT NULL,
                synced INTEGER NOT NULL DEFAULT 0
            )
        """,
        Collection.PREFERENCES.value: """
            CREATE TABLE IF NOT EXISTS preferences (
                id TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL,
                last_updated REAL NOT NULL
            )
        """,
        Collection.LIKED_RESTAURANTS.value: """
            CREATE TABLE IF NOT EXISTS liked_restaurants (
                id TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL,
                last_updated REAL NOT NULL
            )
        """,
    }

    def __init__(
        self,
        db_path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize local store.

        Args:
            db_path: Path to SQLite database file
            clock: Source of ``last_updated`` timestamps
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self._clock = clock
        self._ensure_directory()
        self._local = threading.local()
        self._write_lock = threading.RLock()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._initialized = False

    def _ensure_directory(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = FULL")
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.connection

    @contextmanager
    def transaction(self):
        """
        Serialized write transaction.

        Commits on success; rolls back and raises StoreWriteFailure on any
        error, so nothing is acknowledged that was not committed.
        """
        with self._write_lock:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except StoreWriteFailure:
                conn.rollback()
                raise
            except Exception as e:
                conn.rollback()
                raise StoreWriteFailure(f"Local write failed: {e}") from e

    def initialize(self) -> LocalStore:
        """Initialize database schema."""
        if self._initialized:
            return self

        conn = self._get_connection()
        for table_name, schema in self.SCHEMA.items():
            conn.execute(schema)
            logger.debug(f"Created/verified table: {table_name}")
        conn.commit()

        self._initialized = True
        logger.info(f"Local store initialized at: {self.db_path}")
        return self

    @staticmethod
    def _table(collection: CollectionName) -> str:
        name = collection.value if isinstance(collection, Collection) else str(collection)
        if name not in LocalStore.SCHEMA:
            raise ValueError(f"Unknown collection: {name}")
        return name

    @staticmethod
    def _encode(payload: Dict[str, Any]) -> str:
        return json.dumps(payload, default=_json_default)

    # =========================================================================
    # GENERIC KEY-VALUE OPERATIONS
    # =========================================================================

    def put(self, collection: CollectionName, entity_id: str, payload: Dict[str, Any]) -> None:
        """
        Upsert one record. Returns only after the write is committed.

        Raises:
            StoreWriteFailure: if the write could not be committed
        """
        table = self._table(collection)
        with self.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO {table} (id, payload_json, last_updated)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    last_updated = excluded.last_updated
                """,
                [str(entity_id), self._encode(payload), self._clock()]
            )

    def put_many(
        self,
        collection: CollectionName,
        payloads: Iterable[Dict[str, Any]],
        id_key: str = "id",
    ) -> int:
        """
        Upsert a batch of records in one transaction (all or nothing).

        Args:
            collection: Target collection
            payloads: Records to cache
            id_key: Payload field holding the record id

        Returns:
            Number of records written
        """
        table = self._table(collection)
        payloads = list(payloads)
        if not payloads:
            return 0

        timestamp = self._clock()
        with self.transaction() as conn:
            for payload in payloads:
                entity_id = payload.get(id_key) or payload.get("id")
                if entity_id is None:
                    raise StoreWriteFailure(
                        f"Record without '{id_key}' in batch",
                        collection=table,
                    )
                conn.execute(
                    f"""
                    INSERT INTO {table} (id, payload_json, last_updated)
                    VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        payload_json = excluded.payload_json,
                        last_updated = excluded.last_updated
                    """,
                    [str(entity_id), self._encode(payload), timestamp]
                )

        logger.debug(f"Cached {len(payloads)} records in {table}")
        return len(payloads)

    def get(self, collection: CollectionName, entity_id: str) -> Optional[Dict[str, Any]]:
        """Get a payload by id, or None if absent."""
        entity = self.get_entity(collection, entity_id)
        return entity.payload if entity else None

    def get_entity(self, collection: CollectionName, entity_id: str) -> Optional[CachedEntity]:
        """Get the full cached record (payload + timestamp)."""
        table = self._table(collection)
        row = self._get_connection().execute(
            f"SELECT * FROM {table} WHERE id = ?",
            [str(entity_id)]
        ).fetchone()
        return self._row_to_entity(table, row) if row else None

    def get_all(self, collection: CollectionName) -> List[Dict[str, Any]]:
        """Get every payload in a collection."""
        table = self._table(collection)
        rows = self._get_connection().execute(
            f"SELECT payload_json FROM {table} ORDER BY last_updated DESC, id"
        ).fetchall()
        return [json.loads(row["payload_json"]) for row in rows]

    def count(self, collection: CollectionName) -> int:
        table = self._table(collection)
        row = self._get_connection().execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()
        return row["count"] if row else 0

    def delete(self, collection: CollectionName, entity_id: str) -> bool:
        """Delete a record. Returns True if something was removed."""
        table = self._table(collection)
        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", [str(entity_id)])
            return cursor.rowcount > 0

    def clear(self, collection: CollectionName) -> int:
        """Remove every record from one collection."""
        table = self._table(collection)
        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {table}")
            return cursor.rowcount

    def clear_all(self) -> None:
        """Bulk clear on logout: every collection, one transaction."""
        with self.transaction() as conn:
            for table in self.SCHEMA:
                conn.execute(f"DELETE FROM {table}")
        logger.info("Local store cleared")

    def _row_to_entity(self, table: str, row: sqlite3.Row) -> CachedEntity:
        payload = json.loads(row["payload_json"])
        if table == Collection.ORDERS.value:
            return OrderRecord(
                id=row["id"],
                payload=payload,
                last_updated=row["last_updated"],
                synced=bool(row["synced"]),
            )
        return CachedEntity(id=row["id"], payload=payload, last_updated=row["last_updated"])

    # =========================================================================
    # ORDER OUTBOX
    # =========================================================================

    def put_order(self, order: Dict[str, Any], synced: bool = False) -> None:
        """
        Cache an order. Orders created offline go in with synced=False.

        A record already marked synced stays synced when it is re-cached;
        only mark_order_unsynced resets the flag.
        """
        if order.get("id") is None:
            raise StoreWriteFailure("Order without id", collection=Collection.ORDERS.value)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO orders (id, payload_json, last_updated, synced)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    last_updated = excluded.last_updated,
                    synced = MAX(orders.synced, excluded.synced)
                """,
                [str(order["id"]), self._encode(order), self._clock(), int(synced)]
            )

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        return self.get_entity(Collection.ORDERS, order_id)

    def get_unsynced_orders(self) -> List[Dict[str, Any]]:
        """Outbox: orders not yet acknowledged by the backend, oldest first."""
        rows = self._get_connection().execute(
            "SELECT payload_json FROM orders WHERE synced = 0 ORDER BY last_updated ASC, id"
        ).fetchall()
        return [json.loads(row["payload_json"]) for row in rows]

    def is_order_synced(self, order_id: str) -> bool:
        row = self._get_connection().execute(
            "SELECT synced FROM orders WHERE id = ?", [str(order_id)]
        ).fetchone()
        return bool(row["synced"]) if row else False

    def mark_order_synced(self, order_id: str) -> bool:
        """
        Mark an order synced. Idempotent.

        Returns:
            True if this call flipped the flag, False if it was already
            synced (or the order is not cached).
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE orders SET synced = 1 WHERE id = ? AND synced = 0",
                [str(order_id)]
            )
            return cursor.rowcount > 0

    def mark_order_unsynced(self, order_id: str) -> bool:
        """Explicit resync: put an order back in the outbox."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE orders SET synced = 0 WHERE id = ?",
                [str(order_id)]
            )
            return cursor.rowcount > 0

    # =========================================================================
    # PREFERENCES
    # =========================================================================

    def set_preference(self, key: str, value: Any) -> None:
        self.put(Collection.PREFERENCES, key, {"key": key, "value": value})

    def get_preference(self, key: str, default: Any = None) -> Any:
        payload = self.get(Collection.PREFERENCES, key)
        return payload["value"] if payload else default

    def get_all_preferences(self) -> Dict[str, Any]:
        return {p["key"]: p["value"] for p in self.get_all(Collection.PREFERENCES)}

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, collection: CollectionName) -> pd.DataFrame:
        """
        Load a collection's payloads into a DataFrame.

        Nested payload fields are flattened with dotted column names.
        """
        payloads = self.get_all(collection)
        if not payloads:
            return pd.DataFrame()
        return pd.json_normalize(payloads)

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
