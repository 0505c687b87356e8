from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import ConfigError
from .types import Candidates


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    max_detections: Optional[int] = None


def box_iou(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Pairwise IoU between (N, 4) and (M, 4) xyxy boxes -> (N, M).
    """
    a = np.asarray(a, dtype=np.float32).reshape(-1, 4)
    b = np.asarray(b, dtype=np.float32).reshape(-1, 4)

    xx1 = np.maximum(a[:, None, 0], b[None, :, 0])
    yy1 = np.maximum(a[:, None, 1], b[None, :, 1])
    xx2 = np.minimum(a[:, None, 2], b[None, :, 2])
    yy2 = np.minimum(a[:, None, 3], b[None, :, 3])
    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)

    area_a = np.maximum(0.0, a[:, 2] - a[:, 0]) * np.maximum(0.0, a[:, 3] - a[:, 1])
    area_b = np.maximum(0.0, b[:, 2] - b[:, 0]) * np.maximum(0.0, b[:, 3] - b[:, 1])
    union = area_a[:, None] + area_b[None, :] - inter
    return np.where(union > 0, inter / np.maximum(union, 1e-12), 0.0)


def nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    class_ids: Optional[np.ndarray] = None,
    cfg: NMSConfig = NMSConfig(),
) -> np.ndarray:
    """
    Greedy per-class NMS. Expects boxes shape (N, 4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, ordered by descending score.

    Ties in score keep their original order, so the result is deterministic.
    Boxes of different classes never suppress each other; pass class_ids=None
    for class-agnostic NMS.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    if class_ids is None:
        class_ids = np.zeros((boxes.shape[0],), dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)

    order = np.argsort(-scores, kind="stable")
    keep = []

    while order.size > 0 and (cfg.max_detections is None or len(keep) < cfg.max_detections):
        i = order[0]
        keep.append(i)
        rest = order[1:]

        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[rest] - inter
        iou = np.where(union > 0, inter / np.maximum(union, 1e-12), 0.0)

        suppressed = (class_ids[rest] == class_ids[i]) & (iou > cfg.iou_threshold)
        order = rest[~suppressed]

    return np.array(keep, dtype=np.int64)


def suppress(candidates: Candidates, iou_threshold: float, max_detections: Optional[int] = None) -> Candidates:
    """
    Per-class NMS over candidates; the result is sorted by descending score.
    """
    if isinstance(iou_threshold, bool) or not isinstance(iou_threshold, (int, float)) or not 0.0 <= iou_threshold <= 1.0:
        raise ConfigError(f"iou_threshold must be a number in [0, 1], got {iou_threshold!r}")
    if len(candidates) == 0:
        return candidates

    keep = nms(
        candidates.boxes,
        candidates.scores,
        candidates.class_ids,
        NMSConfig(iou_threshold=float(iou_threshold), max_detections=max_detections),
    )
    return candidates.take(keep)


def select_topk(candidates: Candidates, max_detections: int) -> Candidates:
    """
    Sort by descending score without suppression and keep the first `max_detections`.
    """
    if len(candidates) == 0:
        return candidates
    order = np.argsort(-candidates.scores, kind="stable")[:max_detections]
    return candidates.take(order)
