"""ArcFace embedding utilities."""

from __future__ import annotations

import logging
import os
import platform
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from interaction.types import as_embedding, bbox_area, l2_normalize

LOGGER = logging.getLogger("interaction.recognition.embed")


def _default_providers() -> Tuple[str, ...]:
    """Choose default ONNX providers based on platform."""
    system = platform.system()
    machine = platform.machine().lower()
    if system == "Darwin" and machine in {"arm64", "aarch64"}:
        return ("CoreMLExecutionProvider", "CPUExecutionProvider")
    return ("CPUExecutionProvider",)


class ArcFaceEmbedder:
    """Detects faces and computes ArcFace embeddings via InsightFace FaceAnalysis.

    ``extract`` implements the embedding-extractor contract used by enrollment:
    it returns the embedding of the largest face in the image, or ``None`` when
    no face passes the detection threshold.
    """

    def __init__(
        self,
        model_name: str = "buffalo_l",
        providers: Optional[Sequence[str]] = None,
        det_size: Tuple[int, int] = (640, 640),
        det_thresh: float = 0.5,
    ) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        os.environ.setdefault("MKL_NUM_THREADS", "2")
        os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", "2")
        try:
            from insightface.app import FaceAnalysis
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "insightface is required for ArcFaceEmbedder. "
                "Install it via `pip install insightface`."
            ) from exc

        provider_list: Tuple[str, ...]
        if providers is None:
            provider_list = _default_providers()
        else:
            provider_list = tuple(providers)
        self.providers = provider_list
        self.det_size = tuple(det_size)
        self.det_thresh = det_thresh
        LOGGER.info(
            "Loading FaceAnalysis %s det_size=%s det_thresh=%.2f providers=%s",
            model_name,
            self.det_size,
            det_thresh,
            provider_list,
        )
        self.app = FaceAnalysis(
            name=model_name,
            allowed_modules=["detection", "recognition"],
            providers=list(provider_list),
        )
        self.app.prepare(ctx_id=0, det_size=self.det_size)

    def faces(self, image: np.ndarray) -> List[Any]:
        """Return InsightFace face objects above the detection threshold."""
        faces = self.app.get(image)
        return [face for face in faces if float(face.det_score) >= self.det_thresh]

    @staticmethod
    def embedding_of(face: Any) -> Optional[np.ndarray]:
        raw = getattr(face, "normed_embedding", None)
        if raw is None:
            raw = getattr(face, "embedding", None)
        if raw is None:
            return None
        return l2_normalize(as_embedding(raw))

    def extract(self, image: np.ndarray) -> Optional[np.ndarray]:
        """Embedding of the largest detected face, or None if no usable face."""
        faces = self.faces(image)
        if not faces:
            return None
        largest = max(faces, key=lambda face: bbox_area(tuple(float(v) for v in face.bbox)))
        return self.embedding_of(largest)
