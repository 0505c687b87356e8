from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import List, Optional, Sequence

import cv2

from .backends.onnxruntime_backend import BackendKind
from .config import DetectorConfig, load_detector_config
from .errors import InvalidImageError, RTMDetError
from .metadata import coco_class_names, load_class_names
from .postprocess import DECODERS
from .runtime import initialize
from .visualize import draw_detections

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run RTMDet detection on an image and print the detections.")
    parser.add_argument("--image", required=True, help="Path to an input image.")
    parser.add_argument("--model", default=None, help="Path to an RTMDet ONNX model (overrides config 'model').")
    parser.add_argument("--config", default=None, help="Detector config JSON.")
    parser.add_argument("--metadata", default=None, help="Class names (.json / .txt / names: yaml). Default: COCO.")
    parser.add_argument("--backend", default=None, choices=[k.value for k in BackendKind], help="Backend kind.")
    parser.add_argument("--imgsz", type=int, default=None, help="Square model input size (e.g., 640).")
    parser.add_argument("--decoder", default=None, choices=sorted(DECODERS), help="Box decoding convention.")
    parser.add_argument("--conf", type=float, default=None, help="Score threshold.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--max-det", type=int, default=None, help="Maximum number of detections.")
    parser.add_argument("--no-nms", action="store_true", help="Disable NMS and only keep top-K detections by score.")
    parser.add_argument("--out", default=None, help="Optional output image path for the visualization.")
    parser.add_argument("--json", action="store_true", help="Print detections as JSON.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


def _apply_overrides(cfg: DetectorConfig, args: argparse.Namespace) -> DetectorConfig:
    if args.backend is not None:
        cfg = replace(cfg, onnx=replace(cfg.onnx, kind=args.backend))
    if args.imgsz is not None:
        cfg = replace(cfg, preprocess=replace(cfg.preprocess, input_size=(args.imgsz, args.imgsz)))
    if args.decoder is not None and args.decoder != cfg.decoder:
        cfg = replace(cfg, decoder=args.decoder, decoder_params={})

    option_overrides = {}
    if args.conf is not None:
        option_overrides["score_threshold"] = args.conf
    if args.iou is not None:
        option_overrides["iou_threshold"] = args.iou
    if args.max_det is not None:
        option_overrides["max_detections"] = args.max_det
    if args.no_nms:
        option_overrides["apply_nms"] = False
    if option_overrides:
        cfg = replace(cfg, options=replace(cfg.options, **option_overrides))
    return cfg


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_detector_config(args.config) if args.config else DetectorConfig()
        cfg = _apply_overrides(cfg, args)
        class_names = load_class_names(args.metadata) if args.metadata else coco_class_names()

        image = cv2.imread(args.image)
        if image is None:
            raise InvalidImageError(f"Could not read image at path: {args.image}")

        with initialize(args.model, cfg) as pipeline:
            detections = pipeline.detect(image)
    except RTMDetError as exc:
        LOGGER.error("%s: %s", type(exc).__name__, exc)
        return 2

    if args.json:
        payload: List[dict] = []
        for det in detections:
            item = det.to_dict()
            item["label"] = class_names.get(det.class_id, str(det.class_id))
            payload.append(item)
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        for det in detections:
            name = class_names.get(det.class_id, str(det.class_id))
            x, y, w, h = det.as_xywh()
            print(f"{name} {det.score:.3f} x={x:.1f} y={y:.1f} w={w:.1f} h={h:.1f}")

    if args.out:
        vis = draw_detections(image, detections, class_names=class_names, show_score=True)
        if not cv2.imwrite(args.out, vis):
            raise RuntimeError(f"Failed to write output image: {args.out}")
        LOGGER.info("Wrote visualization to %s", args.out)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
