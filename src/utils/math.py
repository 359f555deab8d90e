from __future__ import annotations

import numpy as np


def l2_distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Euclidean distance from `query` (D,) to every row of `matrix` (N, D)."""
    q = np.asarray(query, dtype=np.float64).reshape(-1)
    mat = np.asarray(matrix, dtype=np.float64)
    if mat.ndim == 1:
        mat = mat.reshape(1, -1)
    if mat.shape[0] == 0:
        return np.zeros((0,), dtype=np.float64)
    if int(mat.shape[1]) != int(q.shape[0]):
        raise ValueError(f"Dimension mismatch: query={q.shape[0]}, rows={mat.shape[1]}")
    diff = mat - q
    return np.sqrt(np.sum(diff * diff, axis=1))


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """L2 distance between two 1D vectors."""
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.shape != vb.shape:
        raise ValueError(f"Dimension mismatch: {va.shape[0]} vs {vb.shape[0]}")
    diff = va - vb
    return float(np.sqrt(np.dot(diff, diff)))
