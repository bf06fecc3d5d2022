from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from interaction.attribution.classifier import InteractionClassifier, Outcome
from interaction.attribution.weighting import EmotionWeightFunction
from interaction.types import UNKNOWN, MatchResult, Probe

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def obs(identity_id, distance=0.2, expressions=None):
    probe = Probe(embedding=np.zeros(3, dtype=np.float32), expression_scores=expressions or {})
    return probe, MatchResult(identity_id=identity_id, distance=distance)


def build(owner="A", target="B", **kwargs):
    kwargs.setdefault("clock", _Clock())
    return InteractionClassifier(target_id=target, owner_id=owner, **kwargs)


def test_owner_and_target_emit_one_event_target_to_owner():
    classifier = build()

    result = classifier.classify([obs("A"), obs("B", expressions={"happy": 0.9, "sad": 0.1})])

    assert result.outcome is Outcome.QUALIFYING
    event = result.event
    assert (event.sender_id, event.receiver_id, event.weight) == ("B", "A", 5)
    assert event.timestamp == T0


def test_non_positive_expression_gives_low_weight():
    classifier = build()

    result = classifier.classify([obs("B", expressions={"neutral": 0.9}), obs("A")])

    assert result.event.weight == 1


@pytest.mark.parametrize(
    "sample,outcome",
    [
        ([obs("B")], Outcome.TARGET_ONLY),
        ([obs("A")], Outcome.OWNER_ONLY),
        ([obs("C"), obs(UNKNOWN, distance=0.9)], Outcome.NONE_PRESENT),
        ([], Outcome.NONE_PRESENT),
        ([obs(UNKNOWN, distance=0.7), obs(UNKNOWN, distance=0.8)], Outcome.NONE_PRESENT),
    ],
)
def test_non_qualifying_ticks_emit_nothing(sample, outcome):
    classifier = build()

    result = classifier.classify(sample)

    assert result.outcome is outcome
    assert result.event is None


def test_unset_owner_is_inactive():
    classifier = build(owner=None)

    result = classifier.classify([obs("A"), obs("B")])

    assert result.outcome is Outcome.INACTIVE
    assert result.event is None
    assert result.present_ids == frozenset({"A", "B"})


def test_owner_equal_to_target_never_emits():
    classifier = build(owner="B")

    result = classifier.classify([obs("B"), obs("B")])

    assert result.outcome is Outcome.INACTIVE
    assert result.event is None


def test_set_owner_applies_to_next_classification():
    classifier = build(owner=None)
    sample = [obs("A"), obs("C"), obs("B")]
    assert classifier.classify(sample).event is None

    classifier.set_owner("C")
    event = classifier.classify(sample).event

    assert (event.sender_id, event.receiver_id) == ("B", "C")


def test_matches_at_or_beyond_threshold_are_ignored():
    classifier = build(threshold=0.6)

    result = classifier.classify([obs("A", distance=0.6), obs("B", distance=0.1)])

    assert result.outcome is Outcome.TARGET_ONLY


def test_closest_target_probe_supplies_expression():
    classifier = build()

    result = classifier.classify(
        [
            obs("A"),
            obs("B", distance=0.5, expressions={"sad": 1.0}),
            obs("B", distance=0.1, expressions={"happy": 1.0}),
        ]
    )

    assert result.target_expression == {"happy": 1.0}
    assert result.event.weight == 5


def test_repeated_qualifying_ticks_each_emit_without_cooldown():
    clock = _Clock()
    classifier = build(clock=clock)
    sample = [obs("A"), obs("B")]

    events = []
    for _ in range(3):
        events.append(classifier.classify(sample).event)
        clock.advance(1)

    assert all(event is not None for event in events)
    assert len({event.timestamp for event in events}) == 3


def test_optional_cooldown_suppresses_until_elapsed():
    clock = _Clock()
    classifier = build(clock=clock, cooldown_s=10)
    sample = [obs("A"), obs("B")]

    assert classifier.classify(sample).outcome is Outcome.QUALIFYING
    clock.advance(5)
    assert classifier.classify(sample).outcome is Outcome.COOLDOWN
    clock.advance(5)
    assert classifier.classify(sample).outcome is Outcome.QUALIFYING


def test_custom_weight_function_is_used():
    classifier = build(weight_fn=EmotionWeightFunction(high_weight=9, low_weight=2))

    result = classifier.classify([obs("A"), obs("B", expressions={"happy": 0.7})])

    assert result.event.weight == 9


def test_target_is_required():
    with pytest.raises(ValueError):
        InteractionClassifier(target_id="")
