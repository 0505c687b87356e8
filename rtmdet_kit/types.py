from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Detection:
    """
    Final detection in original image coordinates (top-left x/y, width, height).
    """

    x: float
    y: float
    w: float
    h: float
    score: float
    class_id: int
    contours: Tuple[Tuple[float, ...], ...] = ()
    centroid: Optional[Tuple[float, float]] = None

    def __post_init__(self) -> None:
        if not (self.w > 0 and self.h > 0):
            raise ValueError(f"Detection box must have w > 0 and h > 0, got w={self.w}, h={self.h}")
        if not (0.0 <= self.score <= 1.0):
            raise ValueError(f"Detection score must be in [0, 1], got {self.score}")

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.w, self.y + self.h

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.w, self.h

    def to_dict(self) -> dict:
        payload = {
            "x": self.x,
            "y": self.y,
            "w": self.w,
            "h": self.h,
            "score": self.score,
            "class_id": self.class_id,
        }
        if self.contours:
            payload["contours"] = [list(c) for c in self.contours]
        if self.centroid is not None:
            payload["centroid"] = list(self.centroid)
        return payload


@dataclass(frozen=True)
class Candidates:
    """
    Struct-of-arrays view of candidate detections in model input (padded) space.

    - boxes: (N, 4) xyxy float32
    - scores: (N,) float32
    - class_ids: (N,) int64
    - indices: (N,) anchor index each candidate was decoded from
    - masks: optional (N, Hm, Wm) float32 instance masks
    """

    boxes: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray
    indices: np.ndarray
    masks: Optional[np.ndarray] = field(default=None)

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    @classmethod
    def empty(cls) -> "Candidates":
        return cls(
            boxes=np.zeros((0, 4), dtype=np.float32),
            scores=np.zeros((0,), dtype=np.float32),
            class_ids=np.zeros((0,), dtype=np.int64),
            indices=np.zeros((0,), dtype=np.int64),
        )

    def take(self, keep: Sequence[int]) -> "Candidates":
        keep = np.asarray(keep, dtype=np.int64)
        return Candidates(
            boxes=self.boxes[keep],
            scores=self.scores[keep],
            class_ids=self.class_ids[keep],
            indices=self.indices[keep],
            masks=None if self.masks is None else self.masks[keep],
        )
