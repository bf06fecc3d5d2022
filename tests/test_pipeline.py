import logging
import time

import numpy as np
import pytest

from interaction.attribution.aggregate import AggregationStore
from interaction.attribution.classifier import InteractionClassifier, Outcome
from interaction.errors import DetectionFailure
from interaction.pipeline import InteractionPipeline
from interaction.recognition.enrollment import EnrollmentStore
from interaction.recognition.matcher import Matcher
from interaction.sampling.frame_source import FrameSampler
from interaction.types import AggregateEdge, IdentityRecord, Probe

V1 = np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float32)
V2 = np.array([0.0, 1.0, 0.0, 0.0], dtype=np.float32)
V3 = np.array([0.0, 0.0, 1.0, 0.0], dtype=np.float32)
HAPPY = {"happy": 0.92, "neutral": 0.05, "sad": 0.03}


class _VectorExtractor:
    def extract(self, image):
        return np.asarray(image, dtype=np.float32).reshape(-1)


class _StaticFrameSource:
    def read(self):
        return np.zeros((4, 4, 3), dtype=np.uint8)


class _NullFrameSource:
    def read(self):
        return None


class _BrokenFrameSource:
    def read(self):
        raise OSError("device busy")


class _ScriptedDetector:
    """Returns the next scripted sample on every call (repeats the last one)."""

    def __init__(self, *samples):
        self.samples = list(samples)
        self.calls = 0

    def detect_all(self, frame):
        sample = self.samples[min(self.calls, len(self.samples) - 1)]
        self.calls += 1
        if isinstance(sample, Exception):
            raise sample
        return list(sample)


def near(vec, expressions=None):
    jitter = np.array([0.01, 0.02, 0.0, 0.01], dtype=np.float32)
    return Probe(embedding=vec + jitter, expression_scores=expressions or {})


def build_pipeline(detector, owner="A", frame_source=None, known_ids=None, sink=None):
    enrollment = EnrollmentStore(_VectorExtractor())
    enrollment.load(
        [
            IdentityRecord(id="A", name="Alice", image_sources=(V1,)),
            IdentityRecord(id="B", name="Bob", image_sources=(V2,)),
            IdentityRecord(id="C", name="Carol", image_sources=(V3,)),
        ]
    )
    store = AggregationStore(known_ids if known_ids is not None else enrollment.known_ids, sink=sink)
    classifier = InteractionClassifier(target_id="B", owner_id=owner)
    sampler = FrameSampler(frame_source or _StaticFrameSource(), detector)
    return InteractionPipeline(sampler, Matcher(enrollment, threshold=0.6), classifier, store, match_workers=2)


def test_target_alone_then_with_owner():
    detector = _ScriptedDetector(
        [near(V2, HAPPY)],
        [near(V1), near(V2, HAPPY)],
    )
    pipeline = build_pipeline(detector)

    first = pipeline.run_tick()
    second = pipeline.run_tick()
    pipeline.stop()

    assert first.outcome is Outcome.TARGET_ONLY
    assert first.event is None
    assert second.outcome is Outcome.QUALIFYING
    assert (second.event.sender_id, second.event.receiver_id, second.event.weight) == ("B", "A", 5)
    assert pipeline.store.snapshot() == [AggregateEdge("B", "A", 5)]


def test_unknown_faces_are_ignored_in_classification():
    stranger = Probe(embedding=np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float32))
    pipeline = build_pipeline(_ScriptedDetector([stranger, near(V1), near(V2)]))

    result = pipeline.run_tick()
    pipeline.stop()

    assert [m.identity_id for m in result.matches] == ["UNKNOWN", "A", "B"]
    assert result.outcome is Outcome.QUALIFYING
    assert result.event.weight == 1


def test_repeated_qualifying_ticks_accumulate():
    pipeline = build_pipeline(_ScriptedDetector([near(V1), near(V2, HAPPY)]))

    for _ in range(3):
        pipeline.run_tick()
    pipeline.stop()

    assert pipeline.store.get("B", "A") == 15


@pytest.mark.parametrize(
    "frame_source,detector",
    [
        (_NullFrameSource(), _ScriptedDetector([near(V1), near(V2)])),
        (_BrokenFrameSource(), _ScriptedDetector([near(V1), near(V2)])),
        (None, _ScriptedDetector(RuntimeError("model crashed"))),
    ],
)
def test_detection_failure_degrades_to_empty_sample(frame_source, detector, caplog):
    pipeline = build_pipeline(detector, frame_source=frame_source)

    with caplog.at_level(logging.WARNING, logger="interaction.pipeline"):
        result = pipeline.run_tick()
    pipeline.stop()

    assert result.detection_failed
    assert result.outcome is Outcome.NONE_PRESENT
    assert result.event is None
    assert "Detection failed" in caplog.text


def test_sampler_wraps_errors_as_detection_failure():
    sampler = FrameSampler(_BrokenFrameSource(), _ScriptedDetector([]))

    with pytest.raises(DetectionFailure):
        sampler.sample()


def test_unknown_identity_event_is_dropped_and_logged(caplog):
    pipeline = build_pipeline(_ScriptedDetector([near(V1), near(V2)]), known_ids=["B"])

    with caplog.at_level(logging.ERROR, logger="interaction.pipeline"):
        result = pipeline.run_tick()
    pipeline.stop()

    assert result.event is not None
    assert result.dropped
    assert not result.applied
    assert pipeline.store.snapshot() == []
    assert "Dropped interaction event" in caplog.text


def test_owner_change_takes_effect_next_tick():
    pipeline = build_pipeline(_ScriptedDetector([near(V1), near(V2), near(V3)]), owner=None)

    assert pipeline.run_tick().outcome is Outcome.INACTIVE
    pipeline.set_owner("C")
    result = pipeline.run_tick()
    pipeline.stop()

    assert (result.event.sender_id, result.event.receiver_id) == ("B", "C")


def test_scheduled_run_applies_events_and_stops_cleanly():
    pipeline = build_pipeline(_ScriptedDetector([near(V1), near(V2, HAPPY)]))

    scheduler = pipeline.start(period_s=0.02)
    deadline = time.monotonic() + 5
    while pipeline.store.get("B", "A") < 10 and time.monotonic() < deadline:
        time.sleep(0.01)
    pipeline.stop(timeout=5)

    total = pipeline.store.get("B", "A")
    assert total >= 10
    assert total == 5 * scheduler.stats.completed
    assert scheduler.stats.max_active == 1


def test_restart_after_stop_keeps_recording():
    pipeline = build_pipeline(_ScriptedDetector([near(V1), near(V2, HAPPY)]))

    pipeline.start(period_s=0.02)
    deadline = time.monotonic() + 5
    while pipeline.store.get("B", "A") < 5 and time.monotonic() < deadline:
        time.sleep(0.01)
    pipeline.stop(timeout=5)
    before = pipeline.store.get("B", "A")

    scheduler = pipeline.start(period_s=0.02)
    deadline = time.monotonic() + 5
    while pipeline.store.get("B", "A") < before + 10 and time.monotonic() < deadline:
        time.sleep(0.01)
    pipeline.stop(timeout=5)

    assert before >= 5
    assert pipeline.store.get("B", "A") >= before + 10
    assert scheduler.stats.failed == 0


def test_run_tick_after_stop_matches_multiple_faces():
    pipeline = build_pipeline(_ScriptedDetector([near(V1), near(V2)]))
    pipeline.run_tick()
    pipeline.stop()

    result = pipeline.run_tick()
    pipeline.stop()

    assert [m.identity_id for m in result.matches] == ["A", "B"]
    assert result.outcome is Outcome.QUALIFYING
