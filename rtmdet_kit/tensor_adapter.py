from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigError, InferenceError, InvalidImageError
from .letterbox import LetterboxTransform, letterbox

# RTMDet (mmdet) defaults, BGR order.
RTMDET_MEAN = (103.53, 116.28, 123.675)
RTMDET_STD = (57.375, 57.12, 58.395)

_COLOR_ORDERS = ("bgr", "rgb")


@dataclass(frozen=True)
class PreprocessConfig:
    """
    How an image becomes the model input tensor.

    - input_size: (width, height) of the model input
    - mean/std: per-channel normalization, given in `model_order`
    - input_order/model_order: channel order of caller images and of the model input
    - resize_mode: "letterbox" (keep aspect ratio, pad) or "stretch"
    - pad_position: "center" or "top_left" (pad right/bottom only)
    """

    input_size: Tuple[int, int] = (640, 640)
    mean: Tuple[float, float, float] = RTMDET_MEAN
    std: Tuple[float, float, float] = RTMDET_STD
    input_order: str = "bgr"
    model_order: str = "bgr"
    pad_value: int = 114
    resize_mode: str = "letterbox"
    pad_position: str = "center"
    scaleup: bool = True

    def __post_init__(self) -> None:
        if len(self.input_size) != 2 or any(int(v) < 1 for v in self.input_size):
            raise ConfigError(f"input_size must be (width, height) with positive values, got {self.input_size}")
        if len(self.mean) != 3 or len(self.std) != 3:
            raise ConfigError("mean and std must have exactly 3 values")
        if any(float(s) == 0.0 for s in self.std):
            raise ConfigError("std values must be non-zero")
        if self.input_order not in _COLOR_ORDERS or self.model_order not in _COLOR_ORDERS:
            raise ConfigError(f"color orders must be one of {_COLOR_ORDERS}")
        if self.resize_mode not in ("letterbox", "stretch"):
            raise ConfigError(f"resize_mode must be 'letterbox' or 'stretch', got {self.resize_mode!r}")
        if self.pad_position not in ("center", "top_left"):
            raise ConfigError(f"pad_position must be 'center' or 'top_left', got {self.pad_position!r}")
        if not 0 <= int(self.pad_value) <= 255:
            raise ConfigError("pad_value must be in [0, 255]")


@dataclass(frozen=True)
class EncodedImage:
    tensor: np.ndarray
    transform: LetterboxTransform


def validate_image(image: np.ndarray) -> np.ndarray:
    """
    Check an (H, W, 3) or (H, W, 4) image and return its 3-channel view.
    """
    if image is None or not isinstance(image, np.ndarray):
        raise InvalidImageError("image must be a NumPy array of shape (H, W, 3).")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise InvalidImageError(f"Expected image shape (H, W, 3) or (H, W, 4), got {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidImageError(f"Image has zero width or height: {image.shape}")
    if image.shape[2] == 4:
        image = np.ascontiguousarray(image[:, :, :3])
    return image


def image_from_buffer(
    data: Union[bytes, bytearray, memoryview, np.ndarray, Sequence[float]],
    width: int,
    height: int,
    *,
    channels: int = 3,
    color_order: str = "bgr",
    dtype: Union[str, np.dtype] = np.uint8,
    flip_y: bool = False,
) -> np.ndarray:
    """
    Build an (H, W, C) uint8 BGR(A) image from a flat interleaved pixel buffer.

    - color_order: channel order of the buffer ("rgb" or "bgr", alpha last);
      RGB buffers are converted to the OpenCV BGR order
    - flip_y: the buffer stores rows bottom-up (texture readbacks)

    Float buffers are expected in [0, 1] and are scaled to [0, 255].
    """
    if color_order not in _COLOR_ORDERS:
        raise ConfigError(f"color_order must be one of {_COLOR_ORDERS}, got {color_order!r}")
    if width <= 0 or height <= 0:
        raise InvalidImageError(f"width and height must be > 0, got {width}x{height}")
    if channels not in (3, 4):
        raise InvalidImageError(f"channels must be 3 or 4, got {channels}")

    dtype = np.dtype(dtype)
    if isinstance(data, (bytes, bytearray, memoryview)):
        flat = np.frombuffer(data, dtype=dtype)
    else:
        flat = np.asarray(data, dtype=dtype).reshape(-1)

    expected = width * height * channels
    if flat.size != expected:
        raise InvalidImageError(f"Buffer has {flat.size} values, expected {expected} ({width}x{height}x{channels})")

    pixels = flat.reshape(height, width, channels)
    if np.issubdtype(dtype, np.floating):
        pixels = np.clip(np.rint(pixels * 255.0), 0, 255).astype(np.uint8)
    elif dtype != np.uint8:
        pixels = np.clip(pixels, 0, 255).astype(np.uint8)
    else:
        pixels = pixels.copy()

    if flip_y:
        pixels = pixels[::-1]
    if color_order == "rgb":
        pixels[:, :, :3] = pixels[:, :, 2::-1].copy()
    return np.ascontiguousarray(pixels)


class TensorAdapter:
    """
    Image -> NCHW float32 tensor, plus the transform needed to map boxes back.
    """

    def __init__(self, cfg: PreprocessConfig = PreprocessConfig()):
        self.cfg = cfg
        self._mean = np.asarray(cfg.mean, dtype=np.float32).reshape(1, 1, 3)
        self._std = np.asarray(cfg.std, dtype=np.float32).reshape(1, 1, 3)

    def encode(self, image: np.ndarray, target_shape: Optional[Tuple[int, int]] = None) -> EncodedImage:
        img = validate_image(image)
        if img.dtype != np.uint8:
            img = img.astype(np.float32)

        cfg = self.cfg
        new_shape = tuple(int(v) for v in (target_shape or cfg.input_size))
        if len(new_shape) != 2 or min(new_shape) < 1:
            raise ConfigError(f"target_shape must be (width, height) with positive values, got {target_shape}")

        pad = int(cfg.pad_value)
        padded, transform = letterbox(
            img,
            new_shape=new_shape,
            color=(pad, pad, pad),
            scaleup=cfg.scaleup,
            stretch=cfg.resize_mode == "stretch",
            center=cfg.pad_position == "center",
        )

        if cfg.input_order != cfg.model_order:
            padded = padded[:, :, ::-1]

        blob = (padded.astype(np.float32) - self._mean) / self._std
        # HWC -> CHW, add batch
        tensor = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...], dtype=np.float32)
        return EncodedImage(tensor=tensor, transform=transform)


def flatten_level(tensor: np.ndarray) -> np.ndarray:
    """
    Reshape a raw head output into per-anchor rows (A, C).

    - (1, C, H, W): feature map, flattened row-major over cells
    - (1, A, C) or (A, C): already flattened
    """
    t = np.asarray(tensor)
    if t.ndim == 4:
        if t.shape[0] != 1:
            raise InferenceError(f"Batch > 1 is not supported (got shape {t.shape}).")
        c = t.shape[1]
        return t[0].reshape(c, -1).T
    if t.ndim == 3:
        if t.shape[0] != 1:
            raise InferenceError(f"Batch > 1 is not supported (got shape {t.shape}).")
        return t[0]
    if t.ndim == 2:
        return t
    raise InferenceError(f"Unsupported head output shape: {t.shape}")


def split_head_outputs(
    outputs: Mapping[str, np.ndarray],
    score_names: Optional[Sequence[str]] = None,
    box_names: Optional[Sequence[str]] = None,
) -> Tuple[List[np.ndarray], List[np.ndarray]]:
    """
    Split raw model outputs into (score tensors, box tensors), one pair per level.

    Without explicit names, outputs are taken in model order: the first half are
    class scores and the second half box regressions (mmdet export order).
    """
    if score_names is not None or box_names is not None:
        if score_names is None or box_names is None:
            raise ConfigError("score_names and box_names must be given together")
        missing = [n for n in (*score_names, *box_names) if n not in outputs]
        if missing:
            raise InferenceError(f"Model outputs missing {missing}; available: {list(outputs)}")
        return [outputs[n] for n in score_names], [outputs[n] for n in box_names]

    values = list(outputs.values())
    if not values or len(values) % 2 != 0:
        raise InferenceError(f"Expected an even number of head outputs (scores + boxes), got {len(values)}")
    half = len(values) // 2
    return values[:half], values[half:]
