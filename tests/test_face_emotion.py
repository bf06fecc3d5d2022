import sys

import numpy as np
import pytest

from interaction.detectors.face_emotion import (
    DeepFaceExpressionModel,
    FaceEmotionDetector,
    _crop_to_bbox,
    load_expression_model,
    normalize_scores,
)


class _Face:
    def __init__(self, bbox, embedding, det_score=0.9):
        self.bbox = np.asarray(bbox, dtype=np.float32)
        self.normed_embedding = np.asarray(embedding, dtype=np.float32)
        self.det_score = det_score


class _StubEmbedder:
    def __init__(self, faces):
        self._faces = faces

    def faces(self, image):
        return list(self._faces)

    @staticmethod
    def embedding_of(face):
        return face.normed_embedding


class _RecordingExpressions:
    def __init__(self, fail_on_call=None):
        self.shapes = []
        self.fail_on_call = fail_on_call

    def scores(self, crop):
        self.shapes.append(crop.shape)
        if self.fail_on_call == len(self.shapes):
            raise ValueError("Face could not be detected")
        return {"happy": 0.8, "neutral": 0.2}


def test_detect_all_builds_one_probe_per_face():
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    faces = [
        _Face((10, 10, 50, 60), [1.0, 0.0]),
        _Face((100, 20, 140, 70), [0.0, 1.0], det_score=0.75),
    ]
    expressions = _RecordingExpressions()
    detector = FaceEmotionDetector(_StubEmbedder(faces), expressions)

    probes = detector.detect_all(frame)

    assert len(probes) == 2
    np.testing.assert_allclose(probes[1].embedding, [0.0, 1.0])
    assert probes[0].expression_scores == {"happy": 0.8, "neutral": 0.2}
    assert probes[1].det_score == pytest.approx(0.75)
    assert expressions.shapes == [(50, 40, 3), (50, 40, 3)]


def test_small_faces_filtered_and_expression_failure_tolerated():
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    faces = [
        _Face((0, 0, 10, 10), [1.0, 0.0]),
        _Face((20, 20, 80, 80), [0.0, 1.0]),
    ]
    detector = FaceEmotionDetector(_StubEmbedder(faces), _RecordingExpressions(fail_on_call=1), min_face_px=32)

    probes = detector.detect_all(frame)

    assert len(probes) == 1
    assert probes[0].expression_scores == {}


def test_empty_frame_yields_no_probes():
    detector = FaceEmotionDetector(_StubEmbedder([]), _RecordingExpressions())

    assert detector.detect_all(np.zeros((8, 8, 3), dtype=np.uint8)) == []


def test_normalize_scores_scales_percentages():
    scores = normalize_scores({"Happy": 85.0, "sad": 10.0, "angry": 5.0})

    assert scores == pytest.approx({"happy": 0.85, "sad": 0.10, "angry": 0.05})
    assert normalize_scores({"happy": 0.4}) == {"happy": 0.4}


def test_crop_to_bbox_clamps_and_falls_back():
    image = np.arange(5 * 5).reshape(5, 5)

    assert _crop_to_bbox(image, (-2, -2, 2, 2)).shape == (2, 2)
    assert _crop_to_bbox(image, (3, 3, 1, 1)).shape == (5, 5)


def test_missing_deepface_disables_expressions(monkeypatch, caplog):
    monkeypatch.setitem(sys.modules, "deepface", None)

    with pytest.raises(RuntimeError, match="deepface is required"):
        DeepFaceExpressionModel()
    assert load_expression_model() is None
    assert "Expression scores disabled" in caplog.text


def test_detector_without_expression_model_yields_empty_scores():
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    detector = FaceEmotionDetector(_StubEmbedder([_Face((10, 10, 50, 60), [1.0, 0.0])]), None)

    probes = detector.detect_all(frame)

    assert len(probes) == 1
    assert probes[0].expression_scores == {}
