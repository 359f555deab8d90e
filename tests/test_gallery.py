from __future__ import annotations

from pathlib import Path
import sys

import cv2
import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.face.gallery import Gallery, GalleryConfig, TargetFace, load_target_faces
from src.face.identity import generate_hash
from src.face.recognizer import EigenObjectRecognizer
from src.utils.serializer import serialize_result


def _write_gallery(root: Path, with_landmarks: bool = False, seed: int = 0):
    rng = np.random.default_rng(seed)
    written = {}
    for person, offset in (("alice", 0.0), ("bob", 30.0)):
        person_dir = root / person
        person_dir.mkdir(parents=True)
        for i in range(3):
            img = rng.integers(0, 256, size=(32, 28)).astype(np.uint8)
            fp = person_dir / f"{i:04d}.png"
            assert cv2.imwrite(str(fp), img)
            written[fp] = img
            if with_landmarks:
                np.save(str(fp.with_suffix(".npy")), rng.normal(size=(5, 3)) + offset)
    (root / "notes.txt").write_text("not a person directory", encoding="utf-8")
    return written


def test_load_target_faces_from_directories(tmp_path: Path):
    written = _write_gallery(tmp_path)
    faces = load_target_faces(tmp_path)

    assert [f.key for f in faces] == ["alice"] * 3 + ["bob"] * 3
    assert {f.id for f in faces} == {generate_hash("alice"), generate_hash("bob")}
    assert all(f.face_3d_points is None for f in faces)
    assert all(f.image.shape == (32, 28) for f in faces)

    recognizer = EigenObjectRecognizer(faces)
    query = written[tmp_path / "bob" / "0001.png"]
    label, distance = recognizer.recognize(query)
    assert label == "bob"
    assert distance == pytest.approx(0.0, abs=1e-3)


def test_landmark_sidecars_enable_forest(tmp_path: Path):
    _write_gallery(tmp_path, with_landmarks=True)
    faces = load_target_faces(tmp_path)

    assert all(f.face_3d_points is not None and f.face_3d_points.shape == (5, 3) for f in faces)
    recognizer = EigenObjectRecognizer(faces)
    assert recognizer.has_landmark_model
    assert recognizer.recognize_landmarks(np.full((5, 3), 30.0)) == "bob"


def test_unreadable_image_is_skipped(tmp_path: Path):
    _write_gallery(tmp_path)
    (tmp_path / "alice" / "broken.png").write_bytes(b"not an image")

    faces = load_target_faces(tmp_path)
    assert len(faces) == 6


def test_state_save_and_load(tmp_path: Path):
    rng = np.random.default_rng(3)
    faces = [TargetFace(name, rng.integers(0, 256, size=(16, 16)), 100 * (i + 1)) for i, name in enumerate("xyz")]
    recognizer = EigenObjectRecognizer(faces, eigen_distance_threshold=900)

    store = Gallery(GalleryConfig(filename="state.pkl"))
    fp = store.save(tmp_path / "out", recognizer.state)
    assert fp.exists()

    state = store.load(tmp_path / "out")
    assert state is not None
    assert state.labels == ["x", "y", "z"]
    assert state.eigen_distance_threshold == 900
    assert state.name_lookup == {1: "x", 2: "y", 3: "z"}

    restored = EigenObjectRecognizer.from_state(state)
    assert restored.recognize(faces[2].image)[0] == "z"


def test_load_missing_or_foreign_state(tmp_path: Path):
    import pickle

    store = Gallery()
    assert store.load(tmp_path) is None

    with open(tmp_path / store.config.filename, "wb") as f:
        pickle.dump({"schema_version": "v0"}, f)
    assert store.load(tmp_path) is None


def test_serialize_result():
    res = serialize_result(
        {"image": Path("q.png"), "label": "", "eigen_distance": np.float32(12.5), "index": np.int64(2),
         "distances": np.array([1.23456, 12.5])},
        image_shape=(24, 20),
    )
    assert res == {
        "image": "q.png",
        "label": "",
        "recognized": False,
        "eigen_distance": 12.5,
        "index": 2,
        "distances": [1.2346, 12.5],
        "image_size": [20, 24],
    }
