"""Eigenface subspace: basis construction and image decomposition.

The PCA arithmetic is delegated to a `PCABackend`. The default backend uses
OpenCV; any object with the same two methods can be swapped in.
"""
from __future__ import annotations

from typing import Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from src.face.errors import InputShapeError
from src.utils.log import get_logger

logger = get_logger(__name__)


class PCABackend(Protocol):
    def compute_basis(self, data: np.ndarray, max_components: int, eps: float) -> Tuple[np.ndarray, np.ndarray]:
        """Return ((K, D) orthonormal basis ordered by decreasing variance, (D,) mean) for (N, D) data."""
        ...

    def project(self, sample: np.ndarray, basis: np.ndarray, mean: np.ndarray) -> np.ndarray:
        """Return the (K,) coefficients of a (D,) sample."""
        ...


class OpenCVPCABackend:
    """PCA via cv2.PCACompute2 / cv2.PCAProject.

    Components whose eigenvalue falls below `eps` times the leading eigenvalue
    are left as zero images, so the basis always has `max_components` rows.
    """

    def compute_basis(self, data: np.ndarray, max_components: int, eps: float) -> Tuple[np.ndarray, np.ndarray]:
        data = np.ascontiguousarray(data, dtype=np.float32)
        mean, vectors, values = cv2.PCACompute2(data, mean=None, maxComponents=int(max_components))

        basis = np.zeros((int(max_components), data.shape[1]), dtype=np.float32)
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        count = min(int(vectors.shape[0]), int(max_components))
        lead = float(values[0]) if values.size else 0.0
        for i in range(count):
            if lead <= 0.0 or float(values[i]) / lead < float(eps):
                break
            basis[i] = vectors[i]

        return basis, np.asarray(mean, dtype=np.float32).reshape(-1)

    def project(self, sample: np.ndarray, basis: np.ndarray, mean: np.ndarray) -> np.ndarray:
        row = np.ascontiguousarray(sample, dtype=np.float32).reshape(1, -1)
        mu = np.ascontiguousarray(mean, dtype=np.float32).reshape(1, -1)
        vecs = np.ascontiguousarray(basis, dtype=np.float32)
        return np.asarray(cv2.PCAProject(row, mu, vecs), dtype=np.float32).reshape(-1)


_DEFAULT_BACKEND = OpenCVPCABackend()


def as_gray_image(image) -> np.ndarray:
    """Coerce an image to a 2D float32 array."""
    arr = np.asarray(image)
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    if arr.ndim != 2 or arr.size == 0:
        raise InputShapeError(f"Expected a non-empty 2D grayscale image, got shape {arr.shape}")
    return arr.astype(np.float32, copy=False)


def basis_size(num_images: int, max_iter: int) -> int:
    """K = max_iter when 0 < max_iter <= num_images, otherwise num_images."""
    if max_iter <= 0 or max_iter > num_images:
        return int(num_images)
    return int(max_iter)


def build_eigenspace(
    images: Sequence[np.ndarray],
    max_iter: int,
    eps: float,
    backend: Optional[PCABackend] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Compute the eigen images and the average image of a training set.

    Returns:
        eigen_images: (K, H, W) float32
        average_image: (H, W) float32
    """
    if images is None or len(images) == 0:
        raise InputShapeError("Cannot build an eigenspace from an empty image set")

    grays = [as_gray_image(img) for img in images]
    shape = grays[0].shape
    for i, g in enumerate(grays):
        if g.shape != shape:
            raise InputShapeError(f"Image {i} has shape {g.shape}, expected {shape}")

    k = basis_size(len(grays), int(max_iter))
    data = np.stack([g.reshape(-1) for g in grays], axis=0)

    backend = backend or _DEFAULT_BACKEND
    basis, mean = backend.compute_basis(data, k, float(eps))

    eigen_images = np.asarray(basis, dtype=np.float32).reshape(-1, shape[0], shape[1])
    average_image = np.asarray(mean, dtype=np.float32).reshape(shape)
    logger.debug(f"eigenspace: {len(grays)} images {shape[1]}x{shape[0]} -> K={eigen_images.shape[0]}")
    return eigen_images, average_image


def decompose(
    image: np.ndarray,
    eigen_images: np.ndarray,
    average_image: np.ndarray,
    backend: Optional[PCABackend] = None,
) -> np.ndarray:
    """Project (image - average_image) onto every eigen image."""
    gray = as_gray_image(image)
    avg = np.asarray(average_image, dtype=np.float32)
    if gray.shape != avg.shape:
        raise InputShapeError(f"Image shape {gray.shape} does not match eigenspace shape {avg.shape}")
    eig = np.asarray(eigen_images, dtype=np.float32)
    basis = eig.reshape(eig.shape[0], -1)

    backend = backend or _DEFAULT_BACKEND
    return backend.project(gray.reshape(-1), basis, avg.reshape(-1))
