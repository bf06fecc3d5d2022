"""SQLite mirror of the aggregation store."""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from interaction.io_utils import ensure_dir
from interaction.types import AggregateEdge, InteractionEvent

LOGGER = logging.getLogger("interaction.storage.sqlite")

SCHEMA = """
CREATE TABLE IF NOT EXISTS interaction_edge (
    sender_id TEXT NOT NULL,
    receiver_id TEXT NOT NULL,
    cumulative_weight INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (sender_id, receiver_id)
);
CREATE TABLE IF NOT EXISTS interaction_event (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sender_id TEXT NOT NULL,
    receiver_id TEXT NOT NULL,
    weight INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_event_created_at ON interaction_event (created_at);
"""

UPSERT_EDGE = """
INSERT INTO interaction_edge (sender_id, receiver_id, cumulative_weight, updated_at)
VALUES (?, ?, ?, ?)
ON CONFLICT (sender_id, receiver_id) DO UPDATE SET
    cumulative_weight = cumulative_weight + excluded.cumulative_weight,
    updated_at = excluded.updated_at
"""


def _iso_utc(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


class SqliteEdgeSink:
    """Writes every event as a row and upserts its edge total in one transaction."""

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            ensure_dir(Path(self.db_path).parent)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        with self._conn:
            self._conn.executescript(SCHEMA)
        LOGGER.info("Opened interaction database %s", self.db_path)

    def increment(self, event: InteractionEvent) -> None:
        created_at = _iso_utc(event.timestamp)
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO interaction_event (sender_id, receiver_id, weight, created_at) VALUES (?, ?, ?, ?)",
                (event.sender_id, event.receiver_id, int(event.weight), created_at),
            )
            self._conn.execute(UPSERT_EDGE, (event.sender_id, event.receiver_id, int(event.weight), created_at))

    def load_edges(self) -> List[AggregateEdge]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT sender_id, receiver_id, cumulative_weight FROM interaction_edge "
                "ORDER BY sender_id, receiver_id"
            ).fetchall()
        return [AggregateEdge(sender_id=s, receiver_id=r, cumulative_weight=int(w)) for s, r, w in rows]

    def totals_since(self, since: Optional[datetime] = None) -> List[AggregateEdge]:
        """Edge totals summed from the event table, optionally from ``since`` on."""
        query = "SELECT sender_id, receiver_id, SUM(weight) FROM interaction_event"
        params: tuple = ()
        if since is not None:
            query += " WHERE created_at >= ?"
            params = (_iso_utc(since),)
        query += " GROUP BY sender_id, receiver_id ORDER BY sender_id, receiver_id"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [AggregateEdge(sender_id=s, receiver_id=r, cumulative_weight=int(w)) for s, r, w in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        LOGGER.info("Closed interaction database %s", self.db_path)

    def __enter__(self) -> "SqliteEdgeSink":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
