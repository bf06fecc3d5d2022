"""Nearest-reference Euclidean matcher over the enrollment store."""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Tuple

import numpy as np

from interaction.errors import NotReady
from interaction.recognition.enrollment import EnrollmentStore
from interaction.types import UNKNOWN, MatchResult, as_embedding

LOGGER = logging.getLogger("interaction.recognition.matcher")


def euclidean_distances(references: np.ndarray, embedding: np.ndarray) -> np.ndarray:
    if references.shape[1] != embedding.shape[0]:
        raise ValueError(
            f"Embedding length {embedding.shape[0]} does not match references ({references.shape[1]})"
        )
    return np.linalg.norm(references - embedding[None, :], axis=1)


class Matcher:
    """Returns the closest enrolled identity, or UNKNOWN outside the threshold.

    Every reference embedding is an independent candidate. The reference
    matrix is stacked in enrollment order, so ``argmin`` resolves equal
    distances to the identity enrolled first.
    """

    def __init__(self, enrollment: EnrollmentStore, threshold: float = 0.6) -> None:
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.enrollment = enrollment
        self.threshold = threshold
        self._lock = threading.Lock()
        self._references: Optional[np.ndarray] = None
        self._owners: Tuple[str, ...] = ()

    def _reference_matrix(self) -> Tuple[np.ndarray, Tuple[str, ...]]:
        if not self.enrollment.is_ready:
            raise NotReady("Matcher used before enrollment completed")
        with self._lock:
            if self._references is None:
                rows: List[np.ndarray] = []
                owners: List[str] = []
                for identity in self.enrollment.identities:
                    for embedding in identity.reference_embeddings:
                        rows.append(embedding)
                        owners.append(identity.id)
                self._references = np.stack(rows, axis=0).astype(np.float32)
                self._owners = tuple(owners)
                LOGGER.debug(
                    "Built reference matrix %s for %d identities",
                    self._references.shape,
                    len(set(owners)),
                )
            return self._references, self._owners

    def match(self, embedding: np.ndarray) -> MatchResult:
        references, owners = self._reference_matrix()
        distances = euclidean_distances(references, as_embedding(embedding))
        best = int(np.argmin(distances))
        distance = float(distances[best])
        if distance < self.threshold:
            return MatchResult(identity_id=owners[best], distance=distance)
        return MatchResult(identity_id=UNKNOWN, distance=distance)

    def topk(self, embedding: np.ndarray, k: int = 3) -> List[Tuple[str, float]]:
        """Closest distinct identities without applying the threshold."""
        references, owners = self._reference_matrix()
        distances = euclidean_distances(references, as_embedding(embedding))
        ranked: List[Tuple[str, float]] = []
        seen = set()
        for idx in np.argsort(distances, kind="stable"):
            identity_id = owners[int(idx)]
            if identity_id in seen:
                continue
            seen.add(identity_id)
            ranked.append((identity_id, float(distances[int(idx)])))
            if len(ranked) >= k:
                break
        return ranked
