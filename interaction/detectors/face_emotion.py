"""Multi-face detector producing (embedding, expression scores) probes."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np

from interaction.types import BBox, Probe

LOGGER = logging.getLogger("interaction.detectors.face")


class DeepFaceExpressionModel:
    """Expression scores for an already-cropped face via DeepFace."""

    def __init__(self, detector_backend: str = "skip") -> None:
        try:
            from deepface import DeepFace
        except ImportError as exc:
            raise RuntimeError(
                "deepface is required for DeepFaceExpressionModel. "
                "Install it via `pip install deepface`."
            ) from exc
        self._deepface = DeepFace
        self.detector_backend = detector_backend
        LOGGER.info("Loaded DeepFace expression model backend=%s", detector_backend)

    def scores(self, face_image: np.ndarray) -> Dict[str, float]:
        result = self._deepface.analyze(
            face_image,
            actions=["emotion"],
            enforce_detection=False,
            detector_backend=self.detector_backend,
            silent=True,
        )
        if isinstance(result, list):
            result = result[0] if result else {}
        return normalize_scores(result.get("emotion") or {})


def load_expression_model(detector_backend: str = "skip") -> Optional[DeepFaceExpressionModel]:
    """DeepFace expression model, or None when the ``emotion`` extra is not installed."""
    try:
        return DeepFaceExpressionModel(detector_backend)
    except RuntimeError as exc:
        LOGGER.warning("Expression scores disabled: %s", exc)
        return None


def normalize_scores(raw: Dict[str, float]) -> Dict[str, float]:
    """Scale expression scores into [0, 1]; DeepFace reports percentages."""
    scores = {str(label).lower(): float(value) for label, value in raw.items()}
    if scores and max(scores.values()) > 1.0:
        scores = {label: value / 100.0 for label, value in scores.items()}
    return {label: min(1.0, max(0.0, value)) for label, value in scores.items()}


class FaceEmotionDetector:
    """Implements ``detect_all(frame)`` on top of an ArcFace embedder and expression model.

    Without an expression model every probe carries empty scores, which the
    weight function maps to the low weight.
    """

    def __init__(self, embedder, expression_model=None, min_face_px: int = 0) -> None:
        self.embedder = embedder
        self.expression_model = expression_model
        if expression_model is None:
            LOGGER.warning("No expression model configured; all interactions get the low weight")
        self.min_face_px = min_face_px

    def detect_all(self, frame: np.ndarray) -> List[Probe]:
        probes: List[Probe] = []
        for face in self.embedder.faces(frame):
            bbox: BBox = tuple(float(v) for v in face.bbox)  # type: ignore[assignment]
            x1, y1, x2, y2 = bbox
            if min(x2 - x1, y2 - y1) < self.min_face_px:
                continue
            embedding = self.embedder.embedding_of(face)
            if embedding is None:
                continue
            crop = _crop_to_bbox(frame, bbox)
            expressions = self._expression_scores(crop)
            probes.append(
                Probe(
                    embedding=embedding,
                    expression_scores=expressions,
                    bbox=bbox,
                    det_score=float(face.det_score),
                )
            )
        return probes

    def _expression_scores(self, crop: np.ndarray) -> Dict[str, float]:
        if self.expression_model is None or crop.size == 0:
            return {}
        try:
            return self.expression_model.scores(crop)
        except ValueError as exc:
            # a face without an expression reading still counts for presence
            LOGGER.warning("Expression analysis failed on %s crop: %s", crop.shape, exc)
            return {}


def _crop_to_bbox(image: np.ndarray, bbox: BBox) -> np.ndarray:
    x1, y1, x2, y2 = [int(round(v)) for v in bbox]
    if x2 <= x1 or y2 <= y1:
        return image.copy()
    crop = image[max(0, y1) : max(0, y2), max(0, x1) : max(0, x2)]
    if crop.size == 0:
        return image.copy()
    return crop

