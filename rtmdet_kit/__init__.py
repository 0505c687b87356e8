"""
RTMDet object detection on ONNX Runtime.

Image -> letterboxed NCHW tensor -> ONNX Runtime forward pass -> pluggable box
decoding -> per-class NMS -> detections in original image coordinates.
Relies on NumPy, OpenCV (resize/pad/contours) and onnxruntime.
"""

from .backends.onnxruntime_backend import BackendKind, OnnxRuntimeConfig
from .config import DetectOptions, DetectorConfig, load_detector_config
from .errors import (
    ConfigError,
    InferenceError,
    InvalidImageError,
    ModelLoadError,
    RTMDetError,
    SessionClosedError,
)
from .letterbox import LetterboxTransform, letterbox
from .masks import mask_contours
from .metadata import COCO_CLASSES, coco_class_names, load_class_names
from .nms import NMSConfig, box_iou, nms, suppress
from .postprocess import (
    BoxDecoder,
    CenterSizeDecoder,
    DistancePointDecoder,
    End2EndDecoder,
    Postprocessor,
    build_decoder,
)
from .runtime import RTMDetPipeline, detect, find_project_root, initialize, resolve_path, shutdown
from .session import ModelHandle, SessionManager
from .tensor_adapter import EncodedImage, PreprocessConfig, TensorAdapter, image_from_buffer
from .types import Candidates, Detection
from .visualize import draw_detections

__all__ = [
    "BackendKind",
    "OnnxRuntimeConfig",
    "DetectOptions",
    "DetectorConfig",
    "load_detector_config",
    "ConfigError",
    "InferenceError",
    "InvalidImageError",
    "ModelLoadError",
    "RTMDetError",
    "SessionClosedError",
    "LetterboxTransform",
    "letterbox",
    "mask_contours",
    "COCO_CLASSES",
    "coco_class_names",
    "load_class_names",
    "NMSConfig",
    "box_iou",
    "nms",
    "suppress",
    "BoxDecoder",
    "CenterSizeDecoder",
    "DistancePointDecoder",
    "End2EndDecoder",
    "Postprocessor",
    "build_decoder",
    "RTMDetPipeline",
    "detect",
    "find_project_root",
    "initialize",
    "resolve_path",
    "shutdown",
    "ModelHandle",
    "SessionManager",
    "EncodedImage",
    "PreprocessConfig",
    "TensorAdapter",
    "image_from_buffer",
    "Candidates",
    "Detection",
    "draw_detections",
]
