from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Reversible mapping between original image space and padded model input space.

    padded = original * scale + pad
    original = (padded - pad) / scale
    """

    scale_x: float
    scale_y: float
    pad_x: int
    pad_y: int
    src_size: Tuple[int, int]  # (width, height) of the original image
    dst_size: Tuple[int, int]  # (width, height) of the model input

    @property
    def content_region(self) -> Tuple[int, int, int, int]:
        """xyxy of the resized image inside the padded canvas."""
        src_w, src_h = self.src_size
        x1, y1 = self.pad_x, self.pad_y
        return x1, y1, x1 + int(round(src_w * self.scale_x)), y1 + int(round(src_h * self.scale_y))

    def forward_boxes(self, boxes: np.ndarray) -> np.ndarray:
        out = np.array(boxes, dtype=np.float32, copy=True).reshape(-1, 4)
        out[:, [0, 2]] = out[:, [0, 2]] * self.scale_x + self.pad_x
        out[:, [1, 3]] = out[:, [1, 3]] * self.scale_y + self.pad_y
        return out

    def inverse_boxes(self, boxes: np.ndarray, clip: bool = True) -> np.ndarray:
        out = np.array(boxes, dtype=np.float32, copy=True).reshape(-1, 4)
        out[:, [0, 2]] = (out[:, [0, 2]] - self.pad_x) / self.scale_x
        out[:, [1, 3]] = (out[:, [1, 3]] - self.pad_y) / self.scale_y
        if clip:
            src_w, src_h = self.src_size
            out[:, [0, 2]] = np.clip(out[:, [0, 2]], 0, src_w)
            out[:, [1, 3]] = np.clip(out[:, [1, 3]], 0, src_h)
        return out

    def inverse_points(self, points: np.ndarray, clip: bool = True) -> np.ndarray:
        out = np.array(points, dtype=np.float32, copy=True).reshape(-1, 2)
        out[:, 0] = (out[:, 0] - self.pad_x) / self.scale_x
        out[:, 1] = (out[:, 1] - self.pad_y) / self.scale_y
        if clip:
            src_w, src_h = self.src_size
            out[:, 0] = np.clip(out[:, 0], 0, src_w)
            out[:, 1] = np.clip(out[:, 1], 0, src_h)
        return out


def letterbox(
    image: np.ndarray,
    new_shape: Union[int, Tuple[int, int]] = (640, 640),
    color: Tuple[int, int, int] = (114, 114, 114),
    *,
    scaleup: bool = True,
    stretch: bool = False,
    center: bool = True,
) -> Tuple[np.ndarray, LetterboxTransform]:
    """
    Resize and pad image to `new_shape` (width, height) while preserving aspect ratio.

    Args:
        stretch: resize to `new_shape` directly with independent x/y scale (no padding)
        center: split padding evenly on both sides; otherwise pad right/bottom only

    Returns:
        padded: resized + padded image
        transform: the LetterboxTransform that maps boxes between the two spaces
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if isinstance(new_shape, int):
        new_shape = (new_shape, new_shape)

    h, w = image.shape[:2]
    new_w, new_h = new_shape

    if stretch:
        resized_w, resized_h = new_w, new_h
    else:
        r = min(new_w / w, new_h / h)
        if not scaleup:  # only scale down
            r = min(r, 1.0)
        resized_w = max(1, int(round(w * r)))
        resized_h = max(1, int(round(h * r)))

    dw, dh = new_w - resized_w, new_h - resized_h
    if center:
        left, top = dw // 2, dh // 2
    else:
        left, top = 0, 0
    right, bottom = dw - left, dh - top

    if (w, h) != (resized_w, resized_h):
        image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    if dw or dh:
        image = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=color)

    transform = LetterboxTransform(
        scale_x=resized_w / w,
        scale_y=resized_h / h,
        pad_x=left,
        pad_y=top,
        src_size=(w, h),
        dst_size=(new_w, new_h),
    )
    return image, transform
