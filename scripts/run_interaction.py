#!/usr/bin/env python3
"""CLI for running the camera sampling -> recognition -> interaction pipeline."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional, TextIO

from interaction.attribution.aggregate import AggregationStore, edges_to_frame
from interaction.attribution.classifier import InteractionClassifier
from interaction.attribution.weighting import EmotionWeightFunction
from interaction.config import PipelineConfig, load_pipeline_config
from interaction.detectors.face_emotion import FaceEmotionDetector, load_expression_model
from interaction.io_utils import setup_logging
from interaction.pipeline import InteractionPipeline
from interaction.recognition.embed_arcface import ArcFaceEmbedder
from interaction.recognition.enrollment import EnrollmentStore, iter_identity_directory
from interaction.recognition.matcher import Matcher
from interaction.sampling.frame_source import CameraFrameSource, FrameSampler
from interaction.storage.sqlite_sink import SqliteEdgeSink


LOGGER = logging.getLogger("scripts.run_interaction")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Track owner/target interactions from a camera feed")
    parser.add_argument(
        "--pipeline-config",
        type=Path,
        default=Path("configs/pipeline.yaml"),
        help="Pipeline configuration YAML",
    )
    parser.add_argument("--target", dest="target_id", type=str, default=None, help="Fixed target identity id")
    parser.add_argument("--owner", dest="owner_id", type=str, default=None, help="Initial owner identity id")
    parser.add_argument("--camera", type=str, default=None, help="Camera index or video path")
    parser.add_argument("--tick-period", dest="tick_period_s", type=float, default=None, help="Seconds between ticks")
    parser.add_argument("--threshold", dest="match_threshold", type=float, default=None, help="Match distance threshold")
    parser.add_argument("--cooldown", dest="cooldown_s", type=float, default=None, help="Per-pair cooldown seconds")
    parser.add_argument("--db", dest="db_path", type=Path, default=None, help="SQLite database path")
    parser.add_argument(
        "--enrollment",
        dest="enrollment_parquet",
        type=Path,
        default=None,
        help="Enrollment parquet built by interaction-enroll",
    )
    parser.add_argument(
        "--identity-dir",
        type=Path,
        default=None,
        help="Enroll from per-person image folders instead of the parquet",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="ONNX execution providers (overrides platform defaults)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: read commands from stdin until 'quit')",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> PipelineConfig:
    config = load_pipeline_config(
        args.pipeline_config,
        target_id=args.target_id,
        owner_id=args.owner_id,
        camera=args.camera,
        tick_period_s=args.tick_period_s,
        match_threshold=args.match_threshold,
        cooldown_s=args.cooldown_s,
        db_path=args.db_path,
        enrollment_parquet=args.enrollment_parquet,
        providers=tuple(args.providers) if args.providers else None,
    )
    if config.target_id is None:
        raise SystemExit("A target identity is required (--target or target_id in the pipeline config)")
    return config


def handle_command(pipeline: InteractionPipeline, line: str, out: TextIO = sys.stdout) -> bool:
    """Apply one control command. Returns False when the loop should stop."""
    parts = line.strip().split()
    if not parts:
        return True
    command = parts[0].lower()
    if command in {"quit", "exit"}:
        return False
    if command == "owner":
        if len(parts) != 2:
            out.write("usage: owner <id>|none\n")
            return True
        owner = None if parts[1].lower() == "none" else parts[1]
        pipeline.set_owner(owner)
        out.write(f"owner={owner}\n")
        return True
    if command == "totals":
        df = edges_to_frame(pipeline.store.snapshot())
        out.write(("(no interactions yet)" if df.empty else df.to_string(index=False)) + "\n")
        return True
    if command == "stats":
        stats = pipeline.scheduler.stats.to_dict() if pipeline.scheduler is not None else {}
        out.write(f"{stats}\n")
        return True
    out.write(f"unknown command: {command} (owner, totals, stats, quit)\n")
    return True


def build_enrollment(config: PipelineConfig, args: argparse.Namespace, embedder: ArcFaceEmbedder) -> EnrollmentStore:
    if args.identity_dir is not None:
        store = EnrollmentStore(embedder)
        store.load(iter_identity_directory(args.identity_dir))
        return store
    return EnrollmentStore.from_parquet(config.enrollment_parquet)


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    config = resolve_config(args)

    embedder = ArcFaceEmbedder(providers=config.providers, det_size=config.det_size, det_thresh=config.det_thresh)
    enrollment = build_enrollment(config, args, embedder)
    for identity_id in (config.target_id, config.owner_id):
        if identity_id is not None and identity_id not in enrollment:
            LOGGER.warning("Configured identity %s is not enrolled and will never be recognized", identity_id)

    detector = FaceEmotionDetector(embedder, load_expression_model())
    classifier = InteractionClassifier(
        target_id=config.target_id,
        weight_fn=EmotionWeightFunction(
            positive_label=config.positive_label,
            high_weight=config.high_weight,
            low_weight=config.low_weight,
            precedence=config.label_precedence,
        ),
        owner_id=config.owner_id,
        cooldown_s=config.cooldown_s,
    )

    with SqliteEdgeSink(config.db_path) as sink, CameraFrameSource(config.camera) as frame_source:
        store = AggregationStore(enrollment.known_ids, sink=sink)
        store.seed(sink.load_edges())
        pipeline = InteractionPipeline(
            FrameSampler(frame_source, detector),
            Matcher(enrollment, threshold=config.match_threshold),
            classifier,
            store,
            match_workers=config.match_workers,
        )

        pipeline.start(config.tick_period_s)
        try:
            if args.duration is not None:
                time.sleep(args.duration)
            else:
                for line in sys.stdin:
                    if not handle_command(pipeline, line):
                        break
        except KeyboardInterrupt:
            LOGGER.info("Interrupted; stopping")
        finally:
            pipeline.stop()
    LOGGER.info("Final edges:\n%s", edges_to_frame(store.snapshot()).to_string(index=False))


if __name__ == "__main__":
    main()
