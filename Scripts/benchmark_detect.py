from __future__ import annotations

import argparse
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List

import cv2
import numpy as np

from rtmdet_kit import Candidates, DetectorConfig, initialize, load_detector_config, suppress
from rtmdet_kit.nms import select_topk


@dataclass(frozen=True)
class StageTiming:
    stage: str
    n: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p99_ms: float

    def __str__(self) -> str:
        return (
            f"{self.stage:<12} n={self.n} mean={self.mean_ms:.3f}ms p50={self.p50_ms:.3f}ms "
            f"p90={self.p90_ms:.3f}ms p99={self.p99_ms:.3f}ms"
        )


class StageClock:
    """
    Collects per-stage wall times; the first `warmup` rounds are discarded.
    """

    def __init__(self, warmup: int):
        self.warmup = warmup
        self.round = 0
        self.samples: Dict[str, List[float]] = defaultdict(list)

    def time(self, stage: str, fn: Callable, *args):
        t0 = time.perf_counter()
        result = fn(*args)
        if self.round >= self.warmup:
            self.samples[stage].append(time.perf_counter() - t0)
        return result

    def next_round(self) -> None:
        self.round += 1

    def summary(self) -> List[StageTiming]:
        rows = []
        for stage, values in self.samples.items():
            ms = np.asarray(values, dtype=np.float64) * 1000.0
            p50, p90, p99 = np.percentile(ms, [50, 90, 99])
            rows.append(StageTiming(stage, int(ms.size), float(ms.mean()), float(p50), float(p90), float(p99)))
        return rows


def _synthetic_candidates(n: int, n_classes: int) -> Candidates:
    rng = np.random.default_rng(0)
    x1y1 = rng.uniform(0, 600, size=(n, 2)).astype(np.float32)
    wh = rng.uniform(5, 80, size=(n, 2)).astype(np.float32)
    return Candidates(
        boxes=np.concatenate([x1y1, x1y1 + wh], axis=1),
        scores=rng.uniform(0.0, 1.0, size=(n,)).astype(np.float32),
        class_ids=rng.integers(0, n_classes, size=(n,)).astype(np.int64),
        indices=np.arange(n, dtype=np.int64),
    )


def _bench_synthetic(args: argparse.Namespace, clock: StageClock) -> None:
    if args.synthetic_boxes < 1 or args.synthetic_classes < 1:
        raise ValueError("--synthetic-boxes and --synthetic-classes must be >= 1")
    cands = _synthetic_candidates(int(args.synthetic_boxes), int(args.synthetic_classes))
    for _ in range(args.warmup + args.repeats):
        clock.time("nms", suppress, cands, args.iou)
        clock.time("topk", select_topk, cands, args.max_det)
        clock.next_round()


def _bench_model(args: argparse.Namespace, clock: StageClock) -> None:
    img = cv2.imread(args.image)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {args.image}")

    cfg = load_detector_config(args.config) if args.config else DetectorConfig()
    with initialize(args.model, cfg) as pipeline:
        opts = pipeline.default_options

        def postprocess(raw):
            return suppress(pipeline.post.decode(raw, opts.score_threshold), opts.iou_threshold)

        for _ in range(args.warmup + args.repeats):
            encoded = clock.time("preprocess", pipeline.preprocess, img)
            raw = clock.time("inference", pipeline.manager.run, pipeline.handle, encoded.tensor)
            clock.time("postprocess", postprocess, raw)
            clock.time("end_to_end", pipeline.detect, img)
            clock.next_round()


def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark RTMDet pipeline stages (preprocess / inference / postprocess).")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image (repeated N times).")
    src.add_argument(
        "--synthetic-boxes",
        type=int,
        default=None,
        help="Model-free benchmark of NMS vs top-K over N synthetic candidates.",
    )
    parser.add_argument("--model", default=None, help="Path to an RTMDet ONNX model (overrides config 'model').")
    parser.add_argument("--config", default=None, help="Detector config JSON.")
    parser.add_argument("--iou", type=float, default=0.45, help="IoU threshold for NMS.")
    parser.add_argument("--max-det", type=int, default=300, help="Max detections for top-K.")
    parser.add_argument("--synthetic-classes", type=int, default=1, help="For --synthetic-boxes: number of classes.")
    parser.add_argument("--warmup", type=int, default=10, help="Iterations to run but not record.")
    parser.add_argument("--repeats", type=int, default=50, help="Recorded iterations.")
    args = parser.parse_args()

    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")
    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")

    clock = StageClock(args.warmup)
    if args.synthetic_boxes is not None:
        _bench_synthetic(args, clock)
    else:
        _bench_model(args, clock)

    for row in clock.summary():
        print(row)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
