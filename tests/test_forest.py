from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.face.errors import InputShapeError, RecognitionError, UntrainedModelError
from src.face.forest import LandmarkForestClassifier, flatten_landmarks


def _clusters(num_points: int = 6, per_class: int = 8, seed: int = 0):
    rng = np.random.default_rng(seed)
    centre_a = rng.normal(size=(num_points, 3)).astype(np.float32)
    centre_b = centre_a + 50.0
    points, keys = [], []
    for _ in range(per_class):
        points.append(centre_a + rng.normal(scale=0.5, size=centre_a.shape))
        keys.append(12)
        points.append(centre_b + rng.normal(scale=0.5, size=centre_b.shape))
        keys.append(34567890)
    return centre_a, centre_b, points, keys


def test_flatten_interleaves_xyz_in_point_order():
    pts = [(1, 2, 3), (4, 5, 6)]
    assert flatten_landmarks(pts).tolist() == [1, 2, 3, 4, 5, 6]

    with pytest.raises(InputShapeError):
        flatten_landmarks([(1, 2), (3, 4)])


def test_predicts_cluster_class_keys():
    centre_a, centre_b, points, keys = _clusters()
    forest = LandmarkForestClassifier()
    assert forest.train(points, keys)

    assert forest.is_trained
    assert forest.class_keys == [12, 34567890]
    assert forest.num_points == 6
    # Large keys come back intact.
    assert forest.predict(centre_a + 0.1) == 12
    assert forest.predict(centre_b - 0.1) == 34567890


def test_untrained_predict_raises():
    with pytest.raises(UntrainedModelError):
        LandmarkForestClassifier().predict(np.zeros((4, 3)))


def test_point_count_mismatch():
    _, _, points, keys = _clusters(num_points=4)
    forest = LandmarkForestClassifier()
    with pytest.raises(InputShapeError):
        forest.train(points + [np.zeros((5, 3))], keys + [12])

    forest.train(points, keys)
    with pytest.raises(InputShapeError):
        forest.predict(np.zeros((5, 3)))


def test_backend_failure_leaves_model_untrained():
    class _FailingBackend:
        def fit(self, features, labels, num_classes):
            raise UntrainedModelError("boom")

        def predict_one(self, model, feature):
            return 0.0

    _, _, points, keys = _clusters()
    forest = LandmarkForestClassifier(backend=_FailingBackend())
    assert forest.train(points, keys) is False
    assert not forest.is_trained


def test_single_record_per_class_still_splits():
    rng = np.random.default_rng(3)
    centre_a = rng.normal(size=(10, 3))
    centre_b = centre_a + 100.0

    forest = LandmarkForestClassifier()
    assert forest.train([centre_a, centre_b], [7, 9])
    assert forest.predict(centre_a + 0.01) == 7
    assert forest.predict(centre_b - 0.01) == 9


def test_backend_prediction_error_is_typed():
    import cv2

    class _BrokenPredictBackend:
        def fit(self, features, labels, num_classes):
            return object()

        def predict_one(self, model, feature):
            raise cv2.error("predict failed")

    _, _, points, keys = _clusters()
    forest = LandmarkForestClassifier(backend=_BrokenPredictBackend())
    assert forest.train(points, keys)

    with pytest.raises(RecognitionError):
        forest.predict(points[0])
