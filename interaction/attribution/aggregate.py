"""Aggregation store: cumulative interaction weight per (sender, receiver) edge."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd

from interaction.errors import UnknownIdentity
from interaction.types import AggregateEdge, EdgeKey, InteractionEvent, sorted_edges

LOGGER = logging.getLogger("interaction.attribution.aggregate")


class AggregationStore:
    """Owns edge mutation.

    Applies for the same edge key are serialized by a per-key lock, which also
    covers the optional persistence sink write. The shared in-memory edge
    table is only touched under a short global lock, so ``snapshot`` always
    sees whole increments and never waits on sink I/O. Whether different keys
    overlap in the sink is up to the sink; ``SqliteEdgeSink`` is single-writer
    and serializes them.
    """

    def __init__(
        self,
        known_ids: Iterable[str],
        sink=None,
        keep_events: bool = True,
    ) -> None:
        self.known_ids = frozenset(str(v) for v in known_ids)
        self.sink = sink
        self.keep_events = keep_events
        self._edges: Dict[EdgeKey, int] = {}
        self._events: List[InteractionEvent] = []
        self._table_lock = threading.Lock()
        self._key_locks: Dict[EdgeKey, threading.Lock] = defaultdict(threading.Lock)
        self._key_locks_guard = threading.Lock()

    def _lock_for(self, key: EdgeKey) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks[key]

    def seed(self, edges: Iterable[AggregateEdge]) -> None:
        """Load previously persisted totals; intended for startup only."""
        count = 0
        with self._table_lock:
            for edge in edges:
                if edge.cumulative_weight < 0:
                    raise ValueError(f"Negative cumulative weight for {edge.key}")
                self._edges[edge.key] = self._edges.get(edge.key, 0) + int(edge.cumulative_weight)
                count += 1
        LOGGER.info("Seeded aggregation store with %d edge(s)", count)

    def apply(self, event: InteractionEvent) -> AggregateEdge:
        """Add ``event.weight`` to its edge and return the updated edge."""
        unknown = [v for v in (event.sender_id, event.receiver_id) if v not in self.known_ids]
        if unknown:
            raise UnknownIdentity(event.sender_id, event.receiver_id)
        if event.weight < 1:
            raise ValueError(f"Event weight must be a positive integer, got {event.weight}")
        key = event.key
        with self._lock_for(key):
            if self.sink is not None:
                self.sink.increment(event)
            with self._table_lock:
                total = self._edges.get(key, 0) + int(event.weight)
                self._edges[key] = total
                if self.keep_events:
                    self._events.append(event)
        LOGGER.debug("Applied %s -> %s +%d (total=%d)", event.sender_id, event.receiver_id, event.weight, total)
        return AggregateEdge(sender_id=key[0], receiver_id=key[1], cumulative_weight=total)

    def get(self, sender_id: str, receiver_id: str) -> int:
        with self._table_lock:
            return self._edges.get((sender_id, receiver_id), 0)

    def snapshot(self) -> List[AggregateEdge]:
        """Point-in-time copy of every edge, sorted by (sender, receiver)."""
        with self._table_lock:
            edges = dict(self._edges)
        return sorted_edges(edges)

    def events(self, since: Optional[datetime] = None) -> List[InteractionEvent]:
        with self._table_lock:
            events = list(self._events)
        if since is None:
            return events
        return [event for event in events if event.timestamp >= since]

    def totals_since(self, since: datetime) -> List[AggregateEdge]:
        """Edge totals restricted to events applied in this run at or after ``since``."""
        totals: Dict[EdgeKey, int] = {}
        for event in self.events(since):
            totals[event.key] = totals.get(event.key, 0) + event.weight
        return sorted_edges(totals)


def edges_to_frame(edges: Iterable[AggregateEdge]) -> pd.DataFrame:
    data = [edge.to_dict() for edge in edges]
    if not data:
        return pd.DataFrame(columns=["sender_id", "receiver_id", "cumulative_weight"])
    return pd.DataFrame(data)


def edges_to_totals(edges: Iterable[AggregateEdge], names: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """Per-identity total weight across every edge it takes part in."""
    df = edges_to_frame(edges)
    if df.empty:
        return pd.DataFrame(columns=["identity_id", "name", "total_weight"])
    stacked = pd.concat(
        [
            df[["sender_id", "cumulative_weight"]].rename(columns={"sender_id": "identity_id"}),
            df[["receiver_id", "cumulative_weight"]].rename(columns={"receiver_id": "identity_id"}),
        ],
        ignore_index=True,
    )
    totals = (
        stacked.groupby("identity_id")["cumulative_weight"]
        .sum()
        .reset_index()
        .rename(columns={"cumulative_weight": "total_weight"})
        .sort_values(["total_weight", "identity_id"], ascending=[False, True])
        .reset_index(drop=True)
    )
    names = names or {}
    totals.insert(1, "name", totals["identity_id"].map(lambda v: names.get(v, v)))
    return totals
