from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.face.eigenspace import basis_size, build_eigenspace, decompose
from src.face.errors import InputShapeError


def _faces(n: int, seed: int = 0, shape=(20, 16)):
    rng = np.random.default_rng(seed)
    return [rng.integers(0, 256, size=shape).astype(np.uint8) for _ in range(n)]


@pytest.mark.parametrize("max_iter, expected", [(3, 3), (5, 5), (9, 5), (0, 5), (-1, 5)])
def test_basis_size(max_iter: int, expected: int):
    assert basis_size(5, max_iter) == expected
    eigen_images, average_image = build_eigenspace(_faces(5), max_iter, 0.001)
    assert eigen_images.shape == (expected, 20, 16)
    assert average_image.shape == (20, 16)


def test_average_image_is_pixel_mean():
    faces = _faces(4, seed=1)
    _, average_image = build_eigenspace(faces, 4, 0.001)
    expected = np.mean(np.stack(faces).astype(np.float64), axis=0)
    assert np.allclose(average_image, expected, atol=1e-3)


def test_leading_eigen_images_are_orthonormal():
    eigen_images, _ = build_eigenspace(_faces(6, seed=2), 6, 0.001)
    basis = eigen_images.reshape(eigen_images.shape[0], -1).astype(np.float64)
    gram = basis[:2] @ basis[:2].T
    assert np.allclose(gram, np.eye(2), atol=1e-3)


def test_decompose_is_deterministic_and_sized_k():
    faces = _faces(5, seed=3)
    eigen_images, average_image = build_eigenspace(faces, 4, 0.001)

    c1 = decompose(faces[2], eigen_images, average_image)
    c2 = decompose(faces[2], eigen_images, average_image)
    assert c1.shape == (4,)
    assert np.array_equal(c1, c2)

    # The average image projects onto the origin.
    assert np.allclose(decompose(average_image, eigen_images, average_image), 0.0, atol=1e-2)


def test_shape_errors():
    with pytest.raises(InputShapeError):
        build_eigenspace([], 3, 0.001)

    mixed = _faces(2) + _faces(1, shape=(16, 16))
    with pytest.raises(InputShapeError):
        build_eigenspace(mixed, 3, 0.001)

    eigen_images, average_image = build_eigenspace(_faces(3), 3, 0.001)
    with pytest.raises(InputShapeError):
        decompose(np.zeros((10, 10), dtype=np.uint8), eigen_images, average_image)


def test_custom_backend_is_used():
    calls = []

    class _MeanOnlyBackend:
        def compute_basis(self, data, max_components, eps):
            calls.append(("basis", data.shape, max_components, eps))
            basis = np.zeros((max_components, data.shape[1]), dtype=np.float32)
            basis[0, 0] = 1.0
            return basis, data.mean(axis=0)

        def project(self, sample, basis, mean):
            calls.append(("project", sample.shape))
            return basis @ (sample - mean)

    faces = _faces(3, shape=(4, 4))
    eigen_images, average_image = build_eigenspace(faces, 2, 0.5, backend=_MeanOnlyBackend())
    coeffs = decompose(faces[0], eigen_images, average_image, backend=_MeanOnlyBackend())

    assert calls[0] == ("basis", (3, 16), 2, 0.5)
    assert calls[1] == ("project", (16,))
    assert coeffs[0] == pytest.approx(float(faces[0][0, 0]) - float(average_image[0, 0]))
    assert coeffs[1] == 0.0
