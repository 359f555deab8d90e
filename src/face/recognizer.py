from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from src.config import DEFAULT_EIGEN_DISTANCE_THRESHOLD, DEFAULT_EPS
from src.face.eigenspace import PCABackend, build_eigenspace, decompose
from src.face.errors import InputShapeError, UntrainedModelError
from src.face.forest import ForestBackend, LandmarkForestClassifier
from src.face.gallery import RecognizerState, TargetFace
from src.face.identity import IdentityTable, shorten
from src.face.matcher import EigenDistanceMatcher, MatcherConfig, rank
from src.utils.log import get_logger

logger = get_logger(__name__)


def _frozen(arr: np.ndarray, dtype=np.float32) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


class EigenObjectRecognizer:
    """
    人脸识别引擎：特征脸（PCA）最近邻匹配 + 3D 特征点随机森林。

    All enrolled state is built once in the constructor and never mutated,
    so concurrent recognition calls on one instance are safe. Re-enrollment
    means building a new instance.
    """

    def __init__(
        self,
        target_faces: Iterable[TargetFace],
        eigen_distance_threshold: float = DEFAULT_EIGEN_DISTANCE_THRESHOLD,
        max_iter: Optional[int] = None,
        eps: float = DEFAULT_EPS,
        pca_backend: Optional[PCABackend] = None,
        forest_backend: Optional[ForestBackend] = None,
    ):
        """
        Args:
            target_faces: enrollment records; all images must share one size
            eigen_distance_threshold: reject matches at or beyond this eigen distance (<= 0 accepts everything)
            max_iter: eigen basis size cap, defaults to the gallery size
            eps: relative eigenvalue cut-off for the PCA primitive
        """
        faces = list(target_faces)
        if not faces:
            raise InputShapeError("Cannot enroll an empty gallery")

        if max_iter is None:
            max_iter = len(faces)

        images = [f.image for f in faces]
        eigen_images, average_image = build_eigenspace(images, int(max_iter), float(eps), backend=pca_backend)
        eigen_values = np.stack(
            [decompose(img, eigen_images, average_image, backend=pca_backend) for img in images], axis=0
        )

        self._assign(
            eigen_images=eigen_images,
            average_image=average_image,
            eigen_values=eigen_values,
            labels=[f.key for f in faces],
            eigen_distance_threshold=eigen_distance_threshold,
            name_lookup=IdentityTable.from_pairs((f.id, f.key) for f in faces),
            pca_backend=pca_backend,
        )
        self._forest = self._train_forest(faces, forest_backend)

        logger.info(
            f"已注册图库: {len(faces)} 张人脸, K={self._eigen_images.shape[0]}, "
            f"{len(self._name_lookup)} 个身份, 特征点森林={'是' if self.has_landmark_model else '否'}"
        )

    @classmethod
    def from_state(cls, state: RecognizerState, pca_backend: Optional[PCABackend] = None) -> "EigenObjectRecognizer":
        """Rebuild an image-only recognizer from saved state (no landmark forest)."""
        eigen_images = np.asarray(state.eigen_images, dtype=np.float32)
        eigen_values = np.asarray(state.eigen_values, dtype=np.float32)
        if eigen_values.ndim != 2 or eigen_values.shape[0] != len(state.labels):
            raise InputShapeError(f"{eigen_values.shape} eigen values for {len(state.labels)} labels")
        if eigen_values.shape[1] != eigen_images.shape[0]:
            raise InputShapeError(f"Coefficient length {eigen_values.shape[1]} != basis size {eigen_images.shape[0]}")

        obj = cls.__new__(cls)
        obj._assign(
            eigen_images=eigen_images,
            average_image=state.average_image,
            eigen_values=eigen_values,
            labels=state.labels,
            eigen_distance_threshold=state.eigen_distance_threshold,
            name_lookup=IdentityTable(state.name_lookup),
            pca_backend=pca_backend,
        )
        obj._forest = None
        return obj

    def _assign(
        self,
        eigen_images: np.ndarray,
        average_image: np.ndarray,
        eigen_values: np.ndarray,
        labels: List[str],
        eigen_distance_threshold: float,
        name_lookup: IdentityTable,
        pca_backend: Optional[PCABackend],
    ) -> None:
        self._eigen_images = _frozen(eigen_images)
        self._average_image = _frozen(average_image)
        self._eigen_values = _frozen(eigen_values)
        self._labels: Tuple[str, ...] = tuple(str(x) for x in labels)
        self._name_lookup = name_lookup
        self._pca_backend = pca_backend
        self._matcher = EigenDistanceMatcher(MatcherConfig(threshold=float(eigen_distance_threshold)))

    @staticmethod
    def _train_forest(
        faces: List[TargetFace], backend: Optional[ForestBackend]
    ) -> Optional[LandmarkForestClassifier]:
        missing = sum(1 for f in faces if f.face_3d_points is None)
        if missing:
            logger.warning(f"{missing}/{len(faces)} 个注册记录缺少 3D 特征点，仅启用图像识别")
            return None

        forest = LandmarkForestClassifier(backend=backend)
        trained = forest.train([f.face_3d_points for f in faces], [shorten(f.id) for f in faces])
        return forest if trained else None

    # ------------------------------------------------------------------
    # Enrolled state (read-only)
    # ------------------------------------------------------------------
    @property
    def eigen_images(self) -> np.ndarray:
        return self._eigen_images

    @property
    def average_image(self) -> np.ndarray:
        return self._average_image

    @property
    def eigen_values(self) -> np.ndarray:
        """Eigen coefficients of each enrolled image, (num_faces, K)."""
        return self._eigen_values

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    @property
    def eigen_distance_threshold(self) -> float:
        return float(self._matcher.config.threshold)

    @property
    def name_lookup(self) -> IdentityTable:
        return self._name_lookup

    @property
    def has_landmark_model(self) -> bool:
        return self._forest is not None and self._forest.is_trained

    @property
    def state(self) -> RecognizerState:
        return RecognizerState(
            eigen_images=np.array(self._eigen_images),
            average_image=np.array(self._average_image),
            eigen_values=np.array(self._eigen_values),
            labels=list(self._labels),
            eigen_distance_threshold=self.eigen_distance_threshold,
            name_lookup=self._name_lookup.to_dict(),
        )

    def get_gallery_info(self) -> Dict:
        """获取图库信息"""
        return {
            "total_faces": len(self._labels),
            "labels": list(self._labels),
            "identities": len(self._name_lookup),
            "basis_size": int(self._eigen_images.shape[0]),
            "image_size": [int(self._average_image.shape[1]), int(self._average_image.shape[0])],
            "eigen_distance_threshold": self.eigen_distance_threshold,
            "landmark_model": self.has_landmark_model,
        }

    # ------------------------------------------------------------------
    # Image recognition
    # ------------------------------------------------------------------
    def decompose(self, image: np.ndarray) -> np.ndarray:
        return decompose(image, self._eigen_images, self._average_image, backend=self._pca_backend)

    def get_eigen_distances(self, image: np.ndarray) -> np.ndarray:
        """Eigen distance from `image` to every enrolled image, in enrollment order."""
        return self._matcher.distances(self.decompose(image), self._eigen_values)

    def find_most_similar_object(self, image: np.ndarray) -> Tuple[int, float, str]:
        """Return (index, eigen_distance, label) of the closest enrolled image."""
        return self._matcher.nearest(self.decompose(image), self._eigen_values, self._labels)

    def recognize(self, image: np.ndarray, debug: bool = False, topk: int = 5) -> Tuple[str, float]:
        """
        图像识别

        Returns:
            (label, eigen_distance); label is "" when the nearest face is
            rejected by the threshold, the distance is always reported.
        """
        _, label, distance = self.recognize_with_index(image, debug=debug, topk=topk)
        return label, distance

    def recognize_with_index(
        self, image: np.ndarray, debug: bool = False, topk: int = 5
    ) -> Tuple[int, str, float]:
        """Like `recognize`, also returning the index of the nearest enrolled image."""
        coeffs = self.decompose(image)
        index, label, distance = self._matcher.match_with_index(coeffs, self._eigen_values, self._labels)

        if debug:
            dist = self._matcher.distances(coeffs, self._eigen_values)
            logger.info(
                f"recognize debug: thr={self.eigen_distance_threshold:.1f}, top{int(topk)}={rank(dist, list(self._labels), topk)}"
            )

        return int(index), label, float(distance)

    # ------------------------------------------------------------------
    # Landmark recognition
    # ------------------------------------------------------------------
    def recognize_landmarks(self, face_3d_points) -> str:
        """
        3D 特征点识别

        Raises:
            UntrainedModelError: no landmark forest was trained at enrollment
            UnknownIdentityError: the predicted class has no enrolled name
        """
        if not self.has_landmark_model:
            raise UntrainedModelError("Landmark recognition is unavailable: no forest was trained at enrollment")

        class_key = self._forest.predict(face_3d_points)
        logger.debug(f"Recognized shortened id = {class_key}")
        return self._name_lookup.resolve(class_key)
