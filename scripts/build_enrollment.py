#!/usr/bin/env python3
"""CLI for building the enrollment parquet from an identity directory."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List

from interaction.io_utils import setup_logging
from interaction.recognition.embed_arcface import ArcFaceEmbedder
from interaction.recognition.enrollment import EnrollmentStore, iter_identity_directory, load_roster
from interaction.types import IdentityRecord


LOGGER = logging.getLogger("scripts.enroll")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build enrollment embeddings using ArcFace")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--identity-dir",
        type=Path,
        help="Directory containing labeled face images (per-person subdirectories)",
    )
    source.add_argument(
        "--roster",
        type=Path,
        help="YAML or CSV roster with id, name and image columns",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/enrollment.parquet"),
        help="Path of the enrollment parquet to write",
    )
    parser.add_argument("--model", type=str, default="buffalo_l", help="InsightFace model pack name")
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="Execution providers for ONNXRuntime (e.g. CUDAExecutionProvider)",
    )
    parser.add_argument("--det-thresh", type=float, default=0.5)
    return parser.parse_args(argv)


def read_records(args: argparse.Namespace) -> List[IdentityRecord]:
    if args.roster is not None:
        return load_roster(args.roster)
    return list(iter_identity_directory(args.identity_dir))


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging()

    records = read_records(args)
    embedder = ArcFaceEmbedder(model_name=args.model, providers=args.providers, det_thresh=args.det_thresh)
    store = EnrollmentStore(embedder)
    store.load(records)
    store.save_parquet(args.output)
    LOGGER.info("Enrollment built: %d/%d identities -> %s", len(store), len(records), args.output)


if __name__ == "__main__":
    main()
