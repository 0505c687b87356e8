from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np

from .errors import ConfigError, InferenceError
from .tensor_adapter import flatten_level, split_head_outputs
from .types import Candidates


@dataclass(frozen=True)
class DecodedHead:
    """
    Every anchor of one forward pass, before thresholding.

    masks/mask_index are set by decoders whose model emits instance masks:
    candidate i uses masks[mask_index[i]].
    """

    boxes: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray
    masks: Optional[np.ndarray] = None
    mask_index: Optional[np.ndarray] = None


class BoxDecoder(Protocol):
    def decode(self, outputs: Mapping[str, np.ndarray]) -> DecodedHead: ...


def _sigmoid(x: np.ndarray) -> np.ndarray:
    # tanh form does not overflow for large negative logits
    return 0.5 * (1.0 + np.tanh(0.5 * x))


def _best_class(class_scores: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    if class_scores.ndim != 2 or class_scores.shape[1] == 0:
        raise InferenceError(f"Expected (A, C) class scores with C >= 1, got {class_scores.shape}")
    class_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(class_scores.shape[0]), class_ids]
    return scores, class_ids


def _grid_priors(h: int, w: int, stride: int, offset: float) -> np.ndarray:
    """Point priors (H*W, 2) as (x, y), row-major over feature-map cells."""
    ys, xs = np.meshgrid(np.arange(h, dtype=np.float32), np.arange(w, dtype=np.float32), indexing="ij")
    return np.stack([(xs.reshape(-1) + offset) * stride, (ys.reshape(-1) + offset) * stride], axis=1)


class DistancePointDecoder:
    """
    RTMDet anchor-free head: per-level class scores and (left, top, right, bottom)
    distances from a point prior at each feature-map cell.

    Accepts per-level feature maps (1, C, H, W) / (1, 4, H, W) or the flattened
    (1, A, C) / (1, A, 4) form, where A covers all levels in stride order.
    """

    def __init__(
        self,
        strides: Sequence[int] = (8, 16, 32),
        input_size: Tuple[int, int] = (640, 640),
        offset: float = 0.0,
        score_activation: str = "sigmoid",
        scale_by_stride: bool = False,
        score_names: Optional[Sequence[str]] = None,
        box_names: Optional[Sequence[str]] = None,
    ):
        if not strides or any(int(s) <= 0 for s in strides):
            raise ConfigError(f"strides must be positive integers, got {strides}")
        if score_activation not in ("sigmoid", "none"):
            raise ConfigError(f"score_activation must be 'sigmoid' or 'none', got {score_activation!r}")
        self.strides = tuple(int(s) for s in strides)
        self.input_size = (int(input_size[0]), int(input_size[1]))
        self.offset = float(offset)
        self.score_activation = score_activation
        self.scale_by_stride = scale_by_stride
        self.score_names = score_names
        self.box_names = box_names

    def decode(self, outputs: Mapping[str, np.ndarray]) -> DecodedHead:
        score_raws, box_raws = split_head_outputs(outputs, self.score_names, self.box_names)
        if len(score_raws) != len(box_raws):
            raise InferenceError(f"Got {len(score_raws)} score outputs but {len(box_raws)} box outputs")

        priors: List[np.ndarray] = []
        prior_strides: List[np.ndarray] = []

        if len(score_raws) == 1 and np.asarray(score_raws[0]).ndim == 3:
            # Flattened over all levels
            in_w, in_h = self.input_size
            for stride in self.strides:
                grid = _grid_priors(math.ceil(in_h / stride), math.ceil(in_w / stride), stride, self.offset)
                priors.append(grid)
                prior_strides.append(np.full((grid.shape[0],), stride, dtype=np.float32))
            class_scores = flatten_level(score_raws[0])
            dists = flatten_level(box_raws[0])
        else:
            if len(score_raws) != len(self.strides):
                raise InferenceError(f"Expected {len(self.strides)} head levels, got {len(score_raws)}")
            score_rows, box_rows = [], []
            for stride, s_raw, b_raw in zip(self.strides, score_raws, box_raws):
                s_arr = np.asarray(s_raw)
                if s_arr.ndim != 4:
                    raise InferenceError(f"Expected (1, C, H, W) score map, got {s_arr.shape}")
                h, w = s_arr.shape[2:]
                grid = _grid_priors(h, w, stride, self.offset)
                priors.append(grid)
                prior_strides.append(np.full((grid.shape[0],), stride, dtype=np.float32))
                score_rows.append(flatten_level(s_arr))
                box_rows.append(flatten_level(b_raw))
            class_scores = np.concatenate(score_rows, axis=0)
            dists = np.concatenate(box_rows, axis=0)

        points = np.concatenate(priors, axis=0)
        if dists.ndim != 2 or dists.shape[1] != 4:
            raise InferenceError(f"Expected (A, 4) box distances, got {dists.shape}")
        if class_scores.shape[0] != points.shape[0] or dists.shape[0] != points.shape[0]:
            raise InferenceError(
                f"Anchor count mismatch: priors={points.shape[0]} scores={class_scores.shape[0]} boxes={dists.shape[0]}"
            )

        dists = dists.astype(np.float32)
        if self.scale_by_stride:
            dists = dists * np.concatenate(prior_strides)[:, None]

        px, py = points[:, 0], points[:, 1]
        boxes = np.stack([px - dists[:, 0], py - dists[:, 1], px + dists[:, 2], py + dists[:, 3]], axis=1)

        class_scores = class_scores.astype(np.float32)
        if self.score_activation == "sigmoid":
            class_scores = _sigmoid(class_scores)
        scores, class_ids = _best_class(class_scores)
        return DecodedHead(boxes=boxes, scores=scores, class_ids=class_ids)


class CenterSizeDecoder:
    """
    YOLO-style single output: (1, 4 + C, A) or (1, A, 4 + C) rows of
    [cx, cy, w, h, (obj), class_scores...].
    """

    def __init__(
        self,
        has_objectness: bool = False,
        channels_first: Optional[bool] = None,
        output_name: Optional[str] = None,
    ):
        self.has_objectness = has_objectness
        self.channels_first = channels_first
        self.output_name = output_name

    def decode(self, outputs: Mapping[str, np.ndarray]) -> DecodedHead:
        if self.output_name is not None:
            if self.output_name not in outputs:
                raise InferenceError(f"Model output {self.output_name!r} not found; available: {list(outputs)}")
            p = np.asarray(outputs[self.output_name])
        else:
            if not outputs:
                raise InferenceError("Model returned no outputs")
            p = np.asarray(next(iter(outputs.values())))

        if p.ndim == 3:
            if p.shape[0] != 1:
                raise InferenceError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
            p = p[0]
        if p.ndim != 2:
            raise InferenceError(f"Unsupported center-size output shape: {p.shape}")

        channels_first = self.channels_first
        if channels_first is None:
            # channel dimension is the small one
            channels_first = p.shape[0] < p.shape[1]
        if channels_first:
            p = p.T

        min_cols = 6 if self.has_objectness else 5
        if p.shape[1] < min_cols:
            raise InferenceError(f"Expected at least {min_cols} values per anchor, got shape {p.shape}")

        p = p.astype(np.float32)
        cx, cy, w_box, h_box = p[:, 0], p[:, 1], p[:, 2], p[:, 3]
        boxes = np.stack([cx - w_box / 2, cy - h_box / 2, cx + w_box / 2, cy + h_box / 2], axis=1)

        if self.has_objectness:
            scores, class_ids = _best_class(p[:, 5:])
            scores = p[:, 4] * scores
        else:
            scores, class_ids = _best_class(p[:, 4:])
        return DecodedHead(boxes=boxes, scores=scores, class_ids=class_ids)


class End2EndDecoder:
    """
    RTMDet deploy export with NMS inside the graph:

    - dets: (1, N, 5) [x1, y1, x2, y2, score]
    - labels: (1, N) int64 class ids
    - masks (optional): (1, N, Hm, Wm) per detection, or (1, Hm, Wm) shared
    """

    def __init__(self, dets_name: str = "dets", labels_name: str = "labels", masks_name: Optional[str] = "masks"):
        self.dets_name = dets_name
        self.labels_name = labels_name
        self.masks_name = masks_name

    def decode(self, outputs: Mapping[str, np.ndarray]) -> DecodedHead:
        for name in (self.dets_name, self.labels_name):
            if name not in outputs:
                raise InferenceError(f"Missing {name!r} output; available: {list(outputs)}")

        dets = np.asarray(outputs[self.dets_name])
        labels = np.asarray(outputs[self.labels_name])
        if dets.ndim != 3 or dets.shape[0] != 1 or dets.shape[2] != 5:
            raise InferenceError(f"Expected dets shape (1, N, 5), got {dets.shape}")
        if labels.ndim != 2 or labels.shape[0] != 1 or labels.shape[1] != dets.shape[1]:
            raise InferenceError(f"Expected labels shape (1, {dets.shape[1]}), got {labels.shape}")

        dets = dets[0].astype(np.float32)
        n = dets.shape[0]
        masks = None
        mask_index = None
        if self.masks_name is not None and self.masks_name in outputs:
            raw = np.asarray(outputs[self.masks_name])
            if raw.ndim == 4 and raw.shape[0] == 1:
                masks = raw[0]
            elif raw.ndim == 3 and raw.shape[0] == 1:
                masks = raw
            else:
                raise InferenceError(f"Unexpected mask shape: {raw.shape}")
            if masks.shape[0] == 0:
                masks = None
            else:
                mask_index = np.minimum(np.arange(n), masks.shape[0] - 1)

        return DecodedHead(
            boxes=dets[:, :4],
            scores=dets[:, 4],
            class_ids=labels[0].astype(np.int64),
            masks=masks,
            mask_index=mask_index,
        )


DECODERS: Dict[str, Callable[..., BoxDecoder]] = {
    "distance": DistancePointDecoder,
    "center_size": CenterSizeDecoder,
    "end2end": End2EndDecoder,
}


def build_decoder(name: str, **params: object) -> BoxDecoder:
    try:
        factory = DECODERS[name]
    except KeyError:
        raise ConfigError(f"Unknown decoder {name!r}; choose from {sorted(DECODERS)}") from None
    try:
        return factory(**params)
    except TypeError as exc:
        raise ConfigError(f"Invalid parameters for decoder {name!r}: {exc}") from exc


def check_threshold(name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= float(value) <= 1.0:
        raise ConfigError(f"{name} must be a number in [0, 1], got {value!r}")
    return float(value)


class Postprocessor:
    """
    Raw model outputs -> thresholded candidates in model input space.

    The box-encoding convention is delegated to a decoder (see DECODERS), so
    the same postprocessor serves RTMDet raw heads, YOLO-style exports and
    end-to-end exports.
    """

    def __init__(self, decoder: BoxDecoder, class_ids: Optional[Sequence[int]] = None):
        self.decoder = decoder
        self.class_ids = None if class_ids is None else np.asarray(list(class_ids), dtype=np.int64)

    def decode(self, raw_outputs: Mapping[str, np.ndarray], score_threshold: float) -> Candidates:
        threshold = check_threshold("score_threshold", score_threshold)
        head = self.decoder.decode(raw_outputs)

        scores = np.clip(np.asarray(head.scores, dtype=np.float32), 0.0, 1.0)
        boxes = np.asarray(head.boxes, dtype=np.float32)
        class_ids = np.asarray(head.class_ids).astype(np.int64)

        # scores are clipped to 1.0, so a threshold of 1.0 keeps nothing
        passed = scores > threshold if threshold >= 1.0 else scores >= threshold
        mask = passed & np.isfinite(boxes).all(axis=1)
        if self.class_ids is not None:
            mask &= np.isin(class_ids, self.class_ids)

        keep = np.nonzero(mask)[0]
        if keep.size == 0:
            return Candidates.empty()

        masks = None
        if head.masks is not None and head.mask_index is not None:
            masks = np.asarray(head.masks)[head.mask_index[keep]].astype(np.float32)

        return Candidates(
            boxes=boxes[keep],
            scores=scores[keep],
            class_ids=class_ids[keep],
            indices=keep.astype(np.int64),
            masks=masks,
        )
