"""Enrollment records, directory loading and persistence of enrolled state."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import cv2
import numpy as np

from src.config import IMAGE_EXTENSIONS, LANDMARK_SUFFIX, STATE_FILENAME, STATE_SCHEMA_VERSION
from src.face.eigenspace import as_gray_image
from src.face.forest import as_landmark_array
from src.face.identity import generate_hash
from src.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class TargetFace:
    """One enrolled face.

    `face_3d_points` is an optional (N, 3) array of feature points. `id` need
    not be unique, but ids sharing a shortened form are one class.
    """

    key: str
    image: np.ndarray
    id: int = 0
    face_3d_points: Optional[np.ndarray] = None

    def __post_init__(self):
        self.key = str(self.key)
        self.image = as_gray_image(self.image)
        self.id = int(self.id)
        if self.face_3d_points is not None:
            self.face_3d_points = as_landmark_array(self.face_3d_points)


@dataclass
class RecognizerState:
    """Everything needed to rebuild the image matcher without re-enrolling."""

    eigen_images: np.ndarray
    average_image: np.ndarray
    # Per-enrollee eigen coefficients, (num_faces, K), order matches labels.
    eigen_values: np.ndarray
    labels: List[str]
    eigen_distance_threshold: float
    name_lookup: Dict[int, str] = field(default_factory=dict)


@dataclass
class GalleryConfig:
    # File name for persisted recognizer state.
    filename: str = STATE_FILENAME
    # Schema version to support future migrations.
    schema_version: str = STATE_SCHEMA_VERSION


class Gallery:
    """Pickle persistence for `RecognizerState`."""

    def __init__(self, config: Optional[GalleryConfig] = None):
        self.config = config or GalleryConfig()

    def save(self, gallery_dir: Path, state: RecognizerState) -> Path:
        import pickle

        gallery_dir = Path(gallery_dir)
        gallery_dir.mkdir(parents=True, exist_ok=True)
        fp = gallery_dir / self.config.filename
        data = {
            "schema_version": self.config.schema_version,
            "eigen_images": np.asarray(state.eigen_images, dtype=np.float32),
            "average_image": np.asarray(state.average_image, dtype=np.float32),
            "eigen_values": np.asarray(state.eigen_values, dtype=np.float32),
            "labels": list(state.labels),
            "eigen_distance_threshold": float(state.eigen_distance_threshold),
            "name_lookup": dict(state.name_lookup),
        }
        with open(fp, "wb") as f:
            pickle.dump(data, f)
        return fp

    def load(self, gallery_dir: Path) -> Optional[RecognizerState]:
        import pickle

        fp = Path(gallery_dir) / self.config.filename
        if not fp.exists():
            return None
        with open(fp, "rb") as f:
            data = pickle.load(f)

        if not isinstance(data, dict) or data.get("schema_version") != self.config.schema_version:
            logger.warning(f"Unsupported recognizer state in {fp}, ignoring")
            return None

        return RecognizerState(
            eigen_images=np.asarray(data["eigen_images"], dtype=np.float32),
            average_image=np.asarray(data["average_image"], dtype=np.float32),
            eigen_values=np.asarray(data["eigen_values"], dtype=np.float32),
            labels=[str(x) for x in data["labels"]],
            eigen_distance_threshold=float(data["eigen_distance_threshold"]),
            name_lookup={int(k): str(v) for k, v in (data.get("name_lookup") or {}).items()},
        )


def _load_landmarks(image_file: Path) -> Optional[np.ndarray]:
    sidecar = image_file.with_suffix(LANDMARK_SUFFIX)
    if not sidecar.exists():
        return None
    try:
        return as_landmark_array(np.load(str(sidecar)))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring landmark file {sidecar}: {e}")
        return None


def load_target_faces(gallery_dir: Path) -> List[TargetFace]:
    """Read an enrollment gallery laid out as `<gallery_dir>/<person>/<image>`.

    Every image of a person gets label `<person>` and id `generate_hash(<person>)`.
    A `<image stem>.npy` file next to an image supplies its (N, 3) landmarks.
    """
    gallery_dir = Path(gallery_dir)
    faces: List[TargetFace] = []

    for person_dir in sorted(p for p in gallery_dir.iterdir() if p.is_dir()):
        person_name = person_dir.name
        face_id = generate_hash(person_name)
        # 不区分大小写的后缀匹配，避免漏掉 0001.PNG 这类文件
        image_files = sorted(
            p for p in person_dir.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        )
        logger.info(f"处理 {person_name}: {len(image_files)} 张图像")

        for img_file in image_files:
            image = cv2.imread(str(img_file), cv2.IMREAD_GRAYSCALE)
            if image is None:
                logger.warning(f"无法读取图像: {img_file}")
                continue
            faces.append(
                TargetFace(
                    key=person_name,
                    image=image,
                    id=face_id,
                    face_3d_points=_load_landmarks(img_file),
                )
            )

    return faces
