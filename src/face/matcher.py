from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from src.config import DEFAULT_EIGEN_DISTANCE_THRESHOLD, UNRECOGNIZED_LABEL
from src.face.errors import InputShapeError
from src.utils.math import l2_distances


@dataclass
class MatcherConfig:
    # Reject the nearest entry when its eigen distance is >= threshold.
    # A threshold <= 0 disables rejection.
    threshold: float = DEFAULT_EIGEN_DISTANCE_THRESHOLD
    unknown_label: str = UNRECOGNIZED_LABEL


class EigenDistanceMatcher:
    """Nearest-neighbour matcher over eigen coefficient vectors.

    Distances are raw L2 in eigenspace units, no normalization.
    """

    def __init__(self, config: MatcherConfig):
        self.config = config

    def distances(self, query: np.ndarray, gallery: Sequence[np.ndarray]) -> np.ndarray:
        mat = np.asarray(gallery, dtype=np.float64)
        if mat.ndim == 1:
            mat = mat.reshape(1, -1)
        q = np.asarray(query, dtype=np.float64).reshape(-1)
        if mat.size and int(mat.shape[1]) != int(q.shape[0]):
            raise InputShapeError(f"Coefficient length {q.shape[0]} does not match gallery length {mat.shape[1]}")
        return l2_distances(q, mat)

    def nearest(
        self, query: np.ndarray, gallery: Sequence[np.ndarray], labels: Sequence[str]
    ) -> Tuple[int, float, str]:
        """Return (index, distance, label) of the closest gallery entry.

        Exact ties resolve to the lowest index.
        """
        dist = self.distances(query, gallery)
        if dist.size == 0:
            raise InputShapeError("Cannot match against an empty gallery")
        # argmin returns the first occurrence of the minimum
        index = int(np.argmin(dist))
        return index, float(dist[index]), str(labels[index])

    def accepts(self, distance: float) -> bool:
        thr = float(self.config.threshold)
        return thr <= 0 or float(distance) < thr

    def match_with_index(
        self, query: np.ndarray, gallery: Sequence[np.ndarray], labels: Sequence[str]
    ) -> Tuple[int, str, float]:
        """Return (nearest index, label, distance); label is `unknown_label` when rejected."""
        index, distance, label = self.nearest(query, gallery, labels)
        if self.accepts(distance):
            return index, label, distance
        return index, self.config.unknown_label, distance

    def match(
        self, query: np.ndarray, gallery: Sequence[np.ndarray], labels: Sequence[str]
    ) -> Tuple[str, float]:
        """Return (label, distance); label is `unknown_label` when rejected by the threshold."""
        _, label, distance = self.match_with_index(query, gallery, labels)
        return label, distance


def rank(distances: np.ndarray, labels: List[str], topk: Optional[int] = None) -> List[Tuple[str, float]]:
    """(label, distance) pairs sorted nearest first; stable so ties keep gallery order."""
    order = np.argsort(np.asarray(distances), kind="stable")
    if topk is not None:
        order = order[: int(max(1, topk))]
    return [(str(labels[int(i)]), float(distances[int(i)])) for i in order]
