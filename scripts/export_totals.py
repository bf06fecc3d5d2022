#!/usr/bin/env python3
"""CLI for exporting interaction edge totals from the SQLite database to CSV."""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from interaction.attribution.aggregate import edges_to_frame, edges_to_totals
from interaction.io_utils import setup_logging
from interaction.storage.sqlite_sink import SqliteEdgeSink


LOGGER = logging.getLogger("scripts.export_totals")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export interaction edge totals to CSV")
    parser.add_argument("db", type=Path, help="Path to the interactions SQLite database")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Optional output CSV path (defaults to the database stem + -EDGES.csv)",
    )
    window = parser.add_mutually_exclusive_group()
    window.add_argument("--days", type=float, default=None, help="Only count events from the trailing N days")
    window.add_argument("--today", action="store_true", help="Only count events since local midnight")
    parser.add_argument(
        "--per-identity",
        action="store_true",
        help="Emit one row per identity with its total weight instead of one row per edge",
    )
    return parser.parse_args(argv)


def window_start(days: Optional[float], today: bool, now: Optional[datetime] = None) -> Optional[datetime]:
    now = now or datetime.now().astimezone()
    if today:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if days is not None:
        return now - timedelta(days=days)
    return None


def main(argv=None) -> Path:
    args = parse_args(argv)
    setup_logging()

    since = window_start(args.days, args.today)
    with SqliteEdgeSink(args.db) as sink:
        edges = sink.load_edges() if since is None else sink.totals_since(since)

    df = edges_to_totals(edges) if args.per_identity else edges_to_frame(edges)
    output_path = args.output or args.db.with_name(f"{args.db.stem}-EDGES.csv")
    df.to_csv(output_path, index=False)
    LOGGER.info(
        "Exported %d row(s) to %s (window start=%s)",
        len(df),
        output_path,
        since.astimezone(timezone.utc).isoformat() if since else "all time",
    )
    return output_path


if __name__ == "__main__":
    main()
