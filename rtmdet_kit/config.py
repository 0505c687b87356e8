from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .backends.onnxruntime_backend import OnnxRuntimeConfig
from .errors import ConfigError
from .tensor_adapter import PreprocessConfig


@dataclass(frozen=True)
class DetectOptions:
    score_threshold: float = 0.3
    iou_threshold: float = 0.45
    max_detections: int = 300
    # If False, skip NMS and only keep top `max_detections` by score.
    apply_nms: bool = True
    # Trace contours/centroids when the model emits instance masks.
    with_masks: bool = True

    def __post_init__(self) -> None:
        for name in ("score_threshold", "iou_threshold"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= float(value) <= 1.0:
                raise ConfigError(f"{name} must be a number in [0, 1], got {value!r}")
        if isinstance(self.max_detections, bool) or not isinstance(self.max_detections, int) or self.max_detections < 1:
            raise ConfigError(f"max_detections must be an integer >= 1, got {self.max_detections!r}")


@dataclass(frozen=True)
class DetectorConfig:
    model_path: Optional[str] = None
    onnx: OnnxRuntimeConfig = field(default_factory=OnnxRuntimeConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    decoder: str = "distance"
    decoder_params: Mapping[str, Any] = field(default_factory=dict)
    class_ids: Optional[Tuple[int, ...]] = None
    options: DetectOptions = field(default_factory=DetectOptions)


_ALLOWED_KEYS = {
    "model",
    "backend",
    "providers",
    "allow_fallback",
    "graph_optimization",
    "enable_mem_arena",
    "intra_op_threads",
    "input_name",
    "output_names",
    "input_size",
    "mean",
    "std",
    "input_order",
    "model_order",
    "pad_value",
    "resize_mode",
    "pad_position",
    "decoder",
    "decoder_params",
    "class_ids",
    "score_threshold",
    "iou_threshold",
    "max_detections",
    "apply_nms",
    "with_masks",
}


def _require_number(payload: Dict[str, Any], key: str, default: float) -> float:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    value = payload.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return int(value)


def _require_bool(payload: Dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _require_str(payload: Dict[str, Any], key: str, default: Optional[str]) -> Optional[str]:
    value = payload.get(key, default)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{key} must be a non-empty string")
    return value.strip()


def _require_numbers(payload: Dict[str, Any], key: str, default: Tuple, length: int) -> Tuple:
    value = payload.get(key, default)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and length == 2:
        value = [value, value]
    if (
        not isinstance(value, (list, tuple))
        or len(value) != length
        or any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in value)
    ):
        raise ConfigError(f"{key} must be a list of {length} numbers")
    return tuple(value)


def _require_str_list(payload: Dict[str, Any], key: str) -> Optional[Tuple[str, ...]]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        value = [p for p in value.split(",")]
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ConfigError(f"{key} must be a string or list of non-empty strings")
    return tuple(v.strip() for v in value)


def detector_config_from_dict(payload: Mapping[str, Any], base_dir: Optional[Path] = None) -> DetectorConfig:
    """
    Build a DetectorConfig from a flat mapping (the JSON config file format).

    A relative `model` path is resolved against `base_dir` when given.
    """
    if not isinstance(payload, Mapping):
        raise ConfigError("Detector config must be a JSON object")
    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise ConfigError(f"Unknown detector config keys: {unknown}")
    payload = dict(payload)

    model = _require_str(payload, "model", None)
    if model is not None and base_dir is not None and not Path(model).is_absolute():
        model = str((base_dir / model).resolve())

    intra = _require_int(payload, "intra_op_threads", None)
    onnx = OnnxRuntimeConfig(
        kind=_require_str(payload, "backend", "cpu"),
        providers=_require_str_list(payload, "providers"),
        allow_fallback=_require_bool(payload, "allow_fallback", False),
        graph_optimization=_require_str(payload, "graph_optimization", "basic"),
        enable_mem_arena=_require_bool(payload, "enable_mem_arena", False),
        intra_op_threads=intra,
        input_name=_require_str(payload, "input_name", None),
        output_names=_require_str_list(payload, "output_names"),
    )

    defaults = PreprocessConfig()
    input_size = _require_numbers(payload, "input_size", defaults.input_size, 2)
    if any(float(v) != int(v) for v in input_size):
        raise ConfigError("input_size must contain integers")
    preprocess = PreprocessConfig(
        input_size=(int(input_size[0]), int(input_size[1])),
        mean=tuple(float(v) for v in _require_numbers(payload, "mean", defaults.mean, 3)),
        std=tuple(float(v) for v in _require_numbers(payload, "std", defaults.std, 3)),
        input_order=_require_str(payload, "input_order", defaults.input_order),
        model_order=_require_str(payload, "model_order", defaults.model_order),
        pad_value=_require_int(payload, "pad_value", defaults.pad_value),
        resize_mode=_require_str(payload, "resize_mode", defaults.resize_mode),
        pad_position=_require_str(payload, "pad_position", defaults.pad_position),
    )

    decoder_params = payload.get("decoder_params", {})
    if not isinstance(decoder_params, dict):
        raise ConfigError("decoder_params must be an object")

    class_ids = payload.get("class_ids")
    if class_ids is not None:
        if not isinstance(class_ids, list) or any(isinstance(c, bool) or not isinstance(c, int) for c in class_ids):
            raise ConfigError("class_ids must be a list of integers")
        class_ids = tuple(class_ids)

    option_defaults = DetectOptions()
    options = DetectOptions(
        score_threshold=_require_number(payload, "score_threshold", option_defaults.score_threshold),
        iou_threshold=_require_number(payload, "iou_threshold", option_defaults.iou_threshold),
        max_detections=_require_int(payload, "max_detections", option_defaults.max_detections),
        apply_nms=_require_bool(payload, "apply_nms", option_defaults.apply_nms),
        with_masks=_require_bool(payload, "with_masks", option_defaults.with_masks),
    )

    return DetectorConfig(
        model_path=model,
        onnx=onnx,
        preprocess=preprocess,
        decoder=_require_str(payload, "decoder", "distance"),
        decoder_params=dict(decoder_params),
        class_ids=class_ids,
        options=options,
    )


def load_detector_config(path: Union[str, Path]) -> DetectorConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid detector config JSON: {path}") from exc
    return detector_config_from_dict(payload, base_dir=path.parent)
