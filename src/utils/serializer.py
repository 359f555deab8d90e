from typing import Dict, Optional

import numpy as np

from src.config import UNRECOGNIZED_LABEL


def serialize_result(res: Dict, image_shape: Optional[tuple] = None) -> Dict:
    """Serialize a recognition result dict into JSON-safe form.

    res: dict with keys like 'image', 'label', 'eigen_distance', 'index', 'distances', 'landmark_label'
    image_shape: (h, w) of the query image
    """
    ed = dict(res)

    label = ed.get("label")
    ed["label"] = str(label) if label is not None else UNRECOGNIZED_LABEL
    ed["recognized"] = ed["label"] != UNRECOGNIZED_LABEL

    if ed.get("eigen_distance") is not None:
        ed["eigen_distance"] = float(ed["eigen_distance"])

    if ed.get("index") is not None:
        ed["index"] = int(ed["index"])

    dists = ed.pop("distances", None)
    if dists is not None:
        arr = np.asarray(dists, dtype=np.float64).reshape(-1)
        ed["distances"] = [round(float(d), 4) for d in arr]

    if "image" in ed and ed["image"] is not None:
        ed["image"] = str(ed["image"])

    if image_shape is not None:
        ed["image_size"] = [int(image_shape[1]), int(image_shape[0])]

    return ed
