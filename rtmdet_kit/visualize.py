from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from .types import Detection

_GOLDEN_RATIO = 0.618033988749895


def color_for_class_id(class_id: int) -> Tuple[int, int, int]:
    """
    Deterministic BGR color for a class id: hues spread by the golden ratio so
    neighbouring ids stay distinguishable.
    """
    import cv2  # type: ignore

    hue = int(((int(class_id) * _GOLDEN_RATIO) % 1.0) * 179)
    hsv = np.array([[[hue, 220, 255]]], dtype=np.uint8)
    b, g, r = cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR)[0, 0]
    return int(b), int(g), int(r)


def _contour_polys(det: Detection):
    return [np.round(np.asarray(c, dtype=np.float32).reshape(-1, 1, 2)).astype(np.int32) for c in det.contours]


def _put_label(cv2, out: np.ndarray, text: str, anchor: Tuple[int, int], color, font_scale: float, thickness: int) -> None:
    h, w = out.shape[:2]
    x, y = anchor
    (tw, th), baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, thickness)
    top = y - th - baseline if y - th - baseline >= 0 else y
    bottom = min(top + th + baseline, h - 1)
    cv2.rectangle(out, (x, top), (min(x + tw, w - 1), bottom), color, thickness=-1)
    cv2.putText(
        out,
        text,
        (x, min(top + th, h - 1)),
        cv2.FONT_HERSHEY_SIMPLEX,
        font_scale,
        (255, 255, 255),
        thickness=thickness,
        lineType=cv2.LINE_AA,
    )


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    class_names: Optional[Dict[int, str]] = None,
    show_score: bool = True,
    draw_contours: bool = True,
    mask_alpha: float = 0.35,
    box_thickness: int = 1,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Render detections onto a copy of an OpenCV BGR image.

    Instance contours, when present, are filled with `mask_alpha` opacity and
    outlined; the centroid gets a small marker. Set `mask_alpha=0` to outline only.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")
    if not 0.0 <= mask_alpha <= 1.0:
        raise ValueError(f"mask_alpha must be in [0, 1], got {mask_alpha}")

    detections = list(detections)
    out = image_bgr.copy()
    h, w = out.shape[:2]

    if draw_contours and mask_alpha > 0 and any(d.contours for d in detections):
        fill = out.copy()
        for det in detections:
            if det.contours:
                cv2.fillPoly(fill, _contour_polys(det), color_for_class_id(det.class_id))
        out = cv2.addWeighted(fill, mask_alpha, out, 1.0 - mask_alpha, 0.0)

    for det in detections:
        color = color_for_class_id(det.class_id)
        x1, y1, x2, y2 = (int(round(v)) for v in det.as_xyxy())
        p1 = (min(max(x1, 0), w - 1), min(max(y1, 0), h - 1))
        p2 = (min(max(x2, 0), w - 1), min(max(y2, 0), h - 1))
        cv2.rectangle(out, p1, p2, color, thickness=box_thickness)

        if draw_contours and det.contours:
            cv2.polylines(out, _contour_polys(det), isClosed=True, color=color, thickness=box_thickness)
            if det.centroid is not None:
                cx, cy = det.centroid
                cv2.circle(out, (int(round(cx)), int(round(cy))), 3, color, thickness=-1)

        name = class_names.get(det.class_id, str(det.class_id)) if class_names else str(det.class_id)
        text = f"{name} {det.score:.2f}" if show_score else name
        _put_label(cv2, out, text, p1, color, font_scale, font_thickness)

    return out
