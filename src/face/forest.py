"""Landmark forest classifier.

Each face is described by N 3D feature points flattened to a 3N vector
(x, y, z per point, points in index order). Classes are shortened ids.
The ensemble itself comes from a `ForestBackend`; the default backend is
OpenCV's random trees.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence

import cv2
import numpy as np

from src.config import FOREST_ACCURACY, FOREST_MAX_DEPTH, FOREST_MAX_TREES, FOREST_MIN_SAMPLE_COUNT
from src.face.errors import InputShapeError, RecognitionError, UnknownIdentityError, UntrainedModelError
from src.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class ForestConfig:
    max_depth: int = FOREST_MAX_DEPTH
    min_sample_count: int = FOREST_MIN_SAMPLE_COUNT
    max_trees: int = FOREST_MAX_TREES
    forest_accuracy: float = FOREST_ACCURACY
    # 0 => sqrt(number of features) per split.
    active_var_count: int = 0


class ForestBackend(Protocol):
    def fit(self, features: np.ndarray, labels: np.ndarray, num_classes: int) -> Any:
        ...

    def predict_one(self, model: Any, feature: np.ndarray) -> float:
        ...


class OpenCVRTreesBackend:
    def __init__(self, config: Optional[ForestConfig] = None):
        self.config = config or ForestConfig()

    def fit(self, features: np.ndarray, labels: np.ndarray, num_classes: int):
        ml = getattr(cv2, "ml", None)
        if ml is None:
            raise UntrainedModelError(f"This OpenCV build ({cv2.__version__}) has no cv2.ml module")

        cfg = self.config
        model = ml.RTrees_create()
        model.setMaxDepth(int(cfg.max_depth))
        model.setMinSampleCount(int(cfg.min_sample_count))
        model.setRegressionAccuracy(0.0)
        model.setUseSurrogates(False)
        model.setCVFolds(0)
        model.setActiveVarCount(int(cfg.active_var_count))
        model.setTermCriteria(
            (cv2.TERM_CRITERIA_MAX_ITER + cv2.TERM_CRITERIA_EPS, int(cfg.max_trees), float(cfg.forest_accuracy))
        )

        samples = np.ascontiguousarray(features, dtype=np.float32)
        # Integer responses make OpenCV treat the problem as classification.
        responses = np.ascontiguousarray(labels, dtype=np.int32).reshape(-1, 1)
        if not model.train(samples, ml.ROW_SAMPLE, responses):
            raise UntrainedModelError(f"RTrees training did not converge ({num_classes} classes)")
        return model

    def predict_one(self, model, feature: np.ndarray) -> float:
        row = np.ascontiguousarray(feature, dtype=np.float32).reshape(1, -1)
        _, out = model.predict(row)
        return float(np.asarray(out).reshape(-1)[0])


def as_landmark_array(points) -> np.ndarray:
    """Coerce a set of 3D feature points to an (N, 3) float32 array."""
    arr = np.asarray(points, dtype=np.float32)
    if arr.ndim != 2 or arr.shape[1] != 3 or arr.shape[0] == 0:
        raise InputShapeError(f"Expected (N, 3) landmark points, got shape {arr.shape}")
    return arr


def flatten_landmarks(points) -> np.ndarray:
    """(N, 3) -> (3N,) with x, y, z interleaved per point."""
    return as_landmark_array(points).reshape(-1)


class LandmarkForestClassifier:
    """Flattening and label-mapping layer around a decision-forest primitive.

    Class keys are mapped to dense indices 0..C-1 before training so that
    large shortened ids survive the backend's float predictions.
    """

    def __init__(self, backend: Optional[ForestBackend] = None):
        self.backend = backend or OpenCVRTreesBackend()
        self._model: Optional[Any] = None
        self._class_keys: np.ndarray = np.zeros((0,), dtype=np.int64)
        self._num_points: int = 0

    @property
    def is_trained(self) -> bool:
        return self._model is not None

    @property
    def class_keys(self) -> List[int]:
        return [int(k) for k in self._class_keys]

    @property
    def num_points(self) -> int:
        return self._num_points

    def train(self, landmarks: Sequence, class_keys: Sequence[int]) -> bool:
        """Fit the forest; returns False (model left untrained) when the backend fails.

        Raises:
            InputShapeError: no records, or records with different point counts.
        """
        if len(landmarks) == 0:
            raise InputShapeError("Cannot train the landmark forest without records")
        if len(landmarks) != len(class_keys):
            raise InputShapeError(f"{len(landmarks)} landmark sets for {len(class_keys)} class keys")

        rows = [flatten_landmarks(p) for p in landmarks]
        width = int(rows[0].shape[0])
        for i, r in enumerate(rows):
            if int(r.shape[0]) != width:
                raise InputShapeError(f"Record {i} has {r.shape[0] // 3} points, expected {width // 3}")

        features = np.stack(rows, axis=0)
        keys, encoded = np.unique(np.asarray(class_keys, dtype=np.int64), return_inverse=True)
        num_classes = int(keys.shape[0])

        self._model = None
        try:
            model = self.backend.fit(features, encoded.astype(np.int32), num_classes)
        except (cv2.error, UntrainedModelError) as e:
            logger.warning(f"Landmark forest training failed, landmark recognition disabled: {e}")
            return False

        self._model = model
        self._class_keys = keys
        self._num_points = width // 3
        logger.info(f"Landmark forest trained: {features.shape[0]} samples, {num_classes} classes, {self._num_points} points")
        return True

    def predict(self, points) -> int:
        """Return the shortened class key predicted for one landmark set."""
        if self._model is None:
            raise UntrainedModelError("No landmark forest has been trained")

        feature = flatten_landmarks(points)
        if int(feature.shape[0]) != self._num_points * 3:
            raise InputShapeError(f"Expected {self._num_points} landmark points, got {feature.shape[0] // 3}")

        try:
            raw = self.backend.predict_one(self._model, feature)
        except cv2.error as e:
            raise RecognitionError(f"Landmark forest prediction failed: {e}") from e
        index = int(round(raw))
        if index < 0 or index >= len(self._class_keys):
            raise UnknownIdentityError(index)
        return int(self._class_keys[index])
