from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np


def mask_contours(
    mask: np.ndarray,
    threshold: float = 0.5,
) -> Tuple[List[np.ndarray], Optional[Tuple[float, float]]]:
    """
    Trace the outer contours of a soft instance mask.

    Returns:
        contours: list of (K, 2) float32 point arrays in mask pixel coordinates
        centroid: (x, y) of the binarized mask, or None if the mask is empty
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for mask_contours(). Install with `pip install opencv-python`.") from e

    m = np.asarray(mask)
    if m.ndim != 2:
        raise ValueError(f"Expected a 2-D mask, got shape {m.shape}")

    binary = (m >= threshold).astype(np.uint8)
    if not binary.any():
        return [], None

    found, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    contours = [c.reshape(-1, 2).astype(np.float32) for c in found]

    moments = cv2.moments(binary, binaryImage=True)
    if moments["m00"] == 0:
        return contours, None
    return contours, (float(moments["m10"] / moments["m00"]), float(moments["m01"] / moments["m00"]))
