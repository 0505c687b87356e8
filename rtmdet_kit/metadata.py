from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Union

from .errors import ConfigError

# RTMDet checkpoints are trained on COCO (80 classes).
COCO_CLASSES = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat",
    "traffic light", "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat", "dog",
    "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella",
    "handbag", "tie", "suitcase", "frisbee", "skis", "snowboard", "sports ball", "kite",
    "baseball bat", "baseball glove", "skateboard", "surfboard", "tennis racket", "bottle",
    "wine glass", "cup", "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch", "potted plant",
    "bed", "dining table", "toilet", "tv", "laptop", "mouse", "remote", "keyboard", "cell phone",
    "microwave", "oven", "toaster", "sink", "refrigerator", "book", "clock", "vase", "scissors",
    "teddy bear", "hair drier", "toothbrush",
)


def coco_class_names() -> Dict[int, str]:
    return dict(enumerate(COCO_CLASSES))


def _names_from_json(payload: object) -> Dict[int, str]:
    if isinstance(payload, dict) and "names" in payload:
        payload = payload["names"]
    elif isinstance(payload, dict) and "classes" in payload:
        payload = payload["classes"]

    if isinstance(payload, list):
        return {i: str(name) for i, name in enumerate(payload)}
    if isinstance(payload, dict):
        names: Dict[int, str] = {}
        for key, value in payload.items():
            if not str(key).strip().isdigit():
                raise ConfigError(f"Class id keys must be integers, got {key!r}")
            names[int(key)] = str(value)
        return names
    raise ConfigError("Class names JSON must be a list or an {id: name} object")


def _names_from_yaml_block(text: str) -> Dict[int, str]:
    """
    Parse the simple `names:` mapping used by detector metadata files:

        names:
          0: person
          1: bicycle
    """
    names: Dict[int, str] = {}
    in_names = False
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names or ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        if not left.isdigit():
            continue
        names[int(left)] = right.strip().strip("'").strip('"')
    return names


def load_class_names(path: Union[str, Path]) -> Dict[int, str]:
    """
    Load {class_id: name} from a .json (list or mapping), a .txt (one name per
    line) or a YAML-style metadata file with a `names:` block.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Class names file not found: {path}")
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()

    if suffix == ".json":
        try:
            return _names_from_json(json.loads(text))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid class names JSON: {path}") from exc
    if suffix == ".txt":
        lines = [line.strip() for line in text.splitlines()]
        return {i: name for i, name in enumerate(n for n in lines if n)}
    return _names_from_yaml_block(text)
