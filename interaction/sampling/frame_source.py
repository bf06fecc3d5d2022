"""Frame capture and per-tick probe sampling."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, Optional, Union

import cv2
import numpy as np

from interaction.errors import DetectionFailure
from interaction.types import Probe

LOGGER = logging.getLogger("interaction.sampling.frame")


class CameraFrameSource:
    """Reads the latest frame from an OpenCV capture (camera index or video path)."""

    def __init__(self, source: Union[int, str, Path] = 0) -> None:
        if isinstance(source, str) and source.isdigit():
            source = int(source)
        self.source = source
        self._lock = threading.Lock()
        self._capture = cv2.VideoCapture(source if isinstance(source, int) else str(source))
        if not self._capture.isOpened():
            raise RuntimeError(f"Unable to open video source: {source}")
        LOGGER.info("Opened video source %s", source)

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            ok, frame = self._capture.read()
        if not ok:
            return None
        return frame

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                LOGGER.info("Released video source %s", self.source)

    def __enter__(self) -> "CameraFrameSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class FrameSampler:
    """Pulls the current frame and runs the detector over it.

    Any frame source or detector error is re-raised as ``DetectionFailure`` so
    the caller can degrade the tick to an empty sample.
    """

    def __init__(self, frame_source, detector) -> None:
        self.frame_source = frame_source
        self.detector = detector

    def sample(self) -> List[Probe]:
        try:
            frame = self.frame_source.read()
        except Exception as exc:
            raise DetectionFailure(f"Frame source error: {exc}") from exc
        if frame is None:
            raise DetectionFailure("Frame source returned no frame")
        try:
            probes = list(self.detector.detect_all(frame))
        except Exception as exc:
            raise DetectionFailure(f"Detector error: {exc}") from exc
        LOGGER.debug("Sampled frame %s -> %d probe(s)", getattr(frame, "shape", None), len(probes))
        return probes
