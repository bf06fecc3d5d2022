"""Per-tick role classification: owner vs. target vs. everyone else."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, FrozenSet, Optional, Sequence, Tuple

from interaction.attribution.weighting import EmotionWeightFunction
from interaction.types import EdgeKey, InteractionEvent, MatchResult, Probe

LOGGER = logging.getLogger("interaction.attribution.classifier")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Outcome(str, enum.Enum):
    INACTIVE = "inactive"
    QUALIFYING = "qualifying"
    TARGET_ONLY = "target_only"
    OWNER_ONLY = "owner_only"
    NONE_PRESENT = "none_present"
    COOLDOWN = "cooldown"


@dataclass
class Classification:
    outcome: Outcome
    event: Optional[InteractionEvent] = None
    owner_id: Optional[str] = None
    present_ids: FrozenSet[str] = field(default_factory=frozenset)
    target_expression: Dict[str, float] = field(default_factory=dict)


class InteractionClassifier:
    """Classifies each tick independently from its own matches.

    Only recognized matches count (unknowns and anything at or beyond the
    threshold are ignored). When owner and target are both present one event
    ``target -> owner`` is emitted, weighted by the target's expression.
    With ``cooldown_s`` > 0 a pair that emitted recently is suppressed; the
    default of 0 emits on every qualifying tick.
    """

    def __init__(
        self,
        target_id: str,
        weight_fn: Optional[EmotionWeightFunction] = None,
        owner_id: Optional[str] = None,
        threshold: Optional[float] = None,
        cooldown_s: float = 0.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not target_id:
            raise ValueError("target_id is required")
        if cooldown_s < 0:
            raise ValueError(f"cooldown_s must be >= 0, got {cooldown_s}")
        self.target_id = str(target_id)
        self.weight_fn = weight_fn or EmotionWeightFunction()
        self.threshold = threshold
        self.cooldown = timedelta(seconds=cooldown_s)
        self.clock = clock
        self._owner_lock = threading.Lock()
        self._owner_id: Optional[str] = None
        self._last_emitted: Dict[EdgeKey, datetime] = {}
        self.set_owner(owner_id)

    @property
    def owner_id(self) -> Optional[str]:
        with self._owner_lock:
            return self._owner_id

    def set_owner(self, owner_id: Optional[str]) -> None:
        """Select the owner role; applies from the next classified tick."""
        owner = None if owner_id is None else str(owner_id)
        if owner is not None and owner == self.target_id:
            LOGGER.warning("Owner %s equals the target identity; no events will be emitted", owner)
        with self._owner_lock:
            previous, self._owner_id = self._owner_id, owner
        if previous != owner:
            LOGGER.info("Owner role changed %s -> %s", previous, owner)

    def _recognized(self, match: MatchResult) -> bool:
        if not match.is_known:
            return False
        return self.threshold is None or match.distance < self.threshold

    def classify(self, observations: Sequence[Tuple[Probe, MatchResult]]) -> Classification:
        owner_id = self.owner_id
        present = set()
        target_hit: Optional[Tuple[Probe, MatchResult]] = None
        for probe, match in observations:
            if not self._recognized(match):
                continue
            present.add(match.identity_id)
            if match.identity_id == self.target_id:
                if target_hit is None or match.distance < target_hit[1].distance:
                    target_hit = (probe, match)
        present_ids = frozenset(present)
        expression = dict(target_hit[0].expression_scores) if target_hit is not None else {}

        def result(outcome: Outcome, event: Optional[InteractionEvent] = None) -> Classification:
            return Classification(
                outcome=outcome,
                event=event,
                owner_id=owner_id,
                present_ids=present_ids,
                target_expression=expression,
            )

        if owner_id is None or owner_id == self.target_id:
            return result(Outcome.INACTIVE)
        owner_present = owner_id in present_ids
        target_present = target_hit is not None
        if not (owner_present and target_present):
            if target_present:
                return result(Outcome.TARGET_ONLY)
            if owner_present:
                return result(Outcome.OWNER_ONLY)
            return result(Outcome.NONE_PRESENT)

        now = self.clock()
        key = (self.target_id, owner_id)
        last = self._last_emitted.get(key)
        if self.cooldown and last is not None and now - last < self.cooldown:
            LOGGER.debug("Pair %s in cooldown (last event %s)", key, last.isoformat())
            return result(Outcome.COOLDOWN)

        event = InteractionEvent(
            sender_id=self.target_id,
            receiver_id=owner_id,
            weight=self.weight_fn.weight(expression),
            timestamp=now,
        )
        self._last_emitted[key] = now
        return result(Outcome.QUALIFYING, event)
