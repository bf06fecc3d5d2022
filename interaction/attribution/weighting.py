"""Maps a target's dominant expression to an interaction weight."""

from __future__ import annotations

import logging
import math
from typing import Dict, Optional, Sequence, Tuple

from interaction.types import DEFAULT_LABEL_PRECEDENCE

LOGGER = logging.getLogger("interaction.attribution.weighting")


def dominant_label(
    scores: Dict[str, float],
    precedence: Sequence[str] = DEFAULT_LABEL_PRECEDENCE,
) -> Optional[str]:
    """Label with the highest score; ties go to the label earlier in ``precedence``.

    Labels missing from ``precedence`` rank after it, alphabetically. NaN
    scores are ignored. Returns None for an empty map.
    """
    rank = {label: idx for idx, label in enumerate(precedence)}
    candidates = [
        (label, float(score))
        for label, score in scores.items()
        if score is not None and not math.isnan(float(score))
    ]
    if not candidates:
        return None
    best = max(score for _, score in candidates)
    tied = [label for label, score in candidates if score == best]
    tied.sort(key=lambda label: (rank.get(label, len(rank)), label))
    return tied[0]


class EmotionWeightFunction:
    def __init__(
        self,
        positive_label: str = "happy",
        high_weight: int = 5,
        low_weight: int = 1,
        precedence: Sequence[str] = DEFAULT_LABEL_PRECEDENCE,
    ) -> None:
        if int(low_weight) < 1 or int(high_weight) < 1:
            raise ValueError(f"weights must be positive integers, got low={low_weight} high={high_weight}")
        self.positive_label = positive_label.lower()
        self.high_weight = int(high_weight)
        self.low_weight = int(low_weight)
        self.precedence: Tuple[str, ...] = tuple(label.lower() for label in precedence)

    @property
    def values(self) -> Tuple[int, int]:
        return (self.low_weight, self.high_weight)

    def __call__(self, expression_scores: Dict[str, float]) -> int:
        return self.weight(expression_scores)

    def weight(self, expression_scores: Dict[str, float]) -> int:
        normalized = {str(label).lower(): score for label, score in (expression_scores or {}).items()}
        label = dominant_label(normalized, self.precedence)
        if label is None:
            LOGGER.debug("No expression scores available; using low weight %d", self.low_weight)
            return self.low_weight
        return self.high_weight if label == self.positive_label else self.low_weight
