"""命令行入口：用特征脸图库识别查询图像。"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import cv2

from src.config import DEFAULT_EIGEN_DISTANCE_THRESHOLD, DEFAULT_EPS
from src.face.errors import RecognitionError
from src.face.gallery import Gallery, load_target_faces
from src.face.recognizer import EigenObjectRecognizer
from src.utils.log import get_logger
from src.utils.serializer import serialize_result

logger = get_logger(__name__)


def build_recognizer(args) -> EigenObjectRecognizer:
    store = Gallery()
    state_dir = Path(args.state) if args.state else None

    if state_dir is not None and not args.rebuild_gallery:
        state = store.load(state_dir)
        if state is not None:
            recognizer = EigenObjectRecognizer.from_state(state)
            logger.info(f"已加载识别状态: {len(recognizer.labels)} 张人脸")
            return recognizer

    faces = load_target_faces(Path(args.gallery))
    recognizer = EigenObjectRecognizer(
        faces,
        eigen_distance_threshold=float(args.threshold),
        max_iter=args.max_iter,
        eps=float(args.eps),
    )
    if state_dir is not None:
        fp = store.save(state_dir, recognizer.state)
        logger.info(f"识别状态已保存至: {fp}")
    return recognizer


def main() -> None:
    parser = argparse.ArgumentParser(description="特征脸人脸识别：查询图像与注册图库比对")
    parser.add_argument("images", nargs="+", help="查询图像路径（已裁剪、灰度、与图库同尺寸）")
    parser.add_argument("--gallery", "-g", help="图库路径（每人一个子目录）", default="data/gallery")
    parser.add_argument(
        "--threshold", "-t", type=float, default=DEFAULT_EIGEN_DISTANCE_THRESHOLD, help="特征距离阈值，<=0 表示不拒识"
    )
    parser.add_argument("--max-iter", type=int, default=None, help="特征脸数量上限（默认等于图库大小）")
    parser.add_argument("--eps", type=float, default=DEFAULT_EPS, help="PCA 收敛精度")
    parser.add_argument("--state", "-s", default=None, help="识别状态保存/加载目录")
    parser.add_argument("--rebuild-gallery", action="store_true", help="忽略已保存状态，强制重新注册")
    parser.add_argument("--output-json", "-j", default=None, help="输出识别结果 JSON 路径")
    parser.add_argument("--debug", action="store_true", help="输出 top-k 特征距离用于调试")
    args = parser.parse_args()

    recognizer = build_recognizer(args)
    results = []

    for img_path in args.images:
        image = cv2.imread(img_path, cv2.IMREAD_GRAYSCALE)
        if image is None:
            logger.warning(f"无法读取图像: {img_path}")
            continue

        try:
            index, label, distance = recognizer.recognize_with_index(image, debug=args.debug)
        except RecognitionError as e:
            logger.error(f"识别失败 {img_path}: {e}")
            continue

        res = serialize_result(
            {"image": img_path, "label": label, "eigen_distance": distance, "index": index},
            image_shape=image.shape,
        )
        results.append(res)

        if res["recognized"]:
            logger.info(f"{img_path}: {label} (特征距离: {distance:.4f}) ✅")
        else:
            logger.info(f"{img_path}: 未识别 (最近特征距离: {distance:.4f})")

    if args.output_json:
        payload = {"gallery": recognizer.get_gallery_info(), "results": results}
        Path(args.output_json).write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info(f"识别结果已保存至: {args.output_json}")


if __name__ == "__main__":
    main()
