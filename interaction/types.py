"""Common dataclasses and type aliases used across the interaction package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np

# Sentinel identity id for probes that matched nobody
UNKNOWN = "UNKNOWN"

# Bounding box order: x1, y1, x2, y2 (pixel coordinates)
BBox = Tuple[float, float, float, float]
EdgeKey = Tuple[str, str]
ImageSource = Union[str, Path, np.ndarray]

# Tie-break order for equally scored expression labels
DEFAULT_LABEL_PRECEDENCE: Tuple[str, ...] = (
    "happy",
    "surprise",
    "neutral",
    "sad",
    "angry",
    "fear",
    "disgust",
)


@dataclass(frozen=True)
class IdentityRecord:
    """Row supplied by the identity directory at startup."""

    id: str
    name: str
    image_sources: Tuple[ImageSource, ...] = ()


@dataclass(frozen=True)
class Identity:
    """Enrolled identity with one or more independent reference embeddings."""

    id: str
    display_name: str
    reference_embeddings: Tuple[np.ndarray, ...]

    @property
    def num_references(self) -> int:
        return len(self.reference_embeddings)


@dataclass
class Probe:
    """A face observed during one sampling tick."""

    embedding: np.ndarray
    expression_scores: Dict[str, float] = field(default_factory=dict)
    bbox: BBox = (0.0, 0.0, 0.0, 0.0)
    det_score: float = 0.0


@dataclass(frozen=True)
class MatchResult:
    identity_id: str
    distance: float

    @property
    def is_known(self) -> bool:
        return self.identity_id != UNKNOWN


@dataclass(frozen=True)
class InteractionEvent:
    """Weighted sender -> receiver interaction emitted by a qualifying tick."""

    sender_id: str
    receiver_id: str
    weight: int
    timestamp: datetime

    @property
    def key(self) -> EdgeKey:
        return (self.sender_id, self.receiver_id)

    def to_dict(self) -> Dict:
        return {
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "weight": self.weight,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class AggregateEdge:
    sender_id: str
    receiver_id: str
    cumulative_weight: int

    @property
    def key(self) -> EdgeKey:
        return (self.sender_id, self.receiver_id)

    def to_dict(self) -> Dict:
        return {
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "cumulative_weight": self.cumulative_weight,
        }


def as_embedding(vec: Sequence[float]) -> np.ndarray:
    """Coerce an embedding-like sequence into a 1D float32 vector."""
    return np.asarray(vec, dtype=np.float32).reshape(-1)


def l2_normalize(vec: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """L2-normalize the input vector."""
    norm = np.linalg.norm(vec)
    if norm < eps:
        return vec
    return vec / norm


def bbox_area(box: BBox) -> float:
    """Compute area of a bounding box."""
    x1, y1, x2, y2 = box
    return max(0.0, (x2 - x1)) * max(0.0, (y2 - y1))


def sorted_edges(edges: Dict[EdgeKey, int]) -> List[AggregateEdge]:
    return [
        AggregateEdge(sender_id=sender, receiver_id=receiver, cumulative_weight=weight)
        for (sender, receiver), weight in sorted(edges.items())
    ]
