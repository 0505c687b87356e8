from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from .config import DetectOptions, DetectorConfig
from .errors import ConfigError
from .letterbox import LetterboxTransform
from .masks import mask_contours
from .nms import select_topk, suppress
from .postprocess import Postprocessor, build_decoder
from .session import ModelHandle, SessionManager
from .tensor_adapter import EncodedImage, TensorAdapter
from .types import Candidates, Detection

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery, so `models/rtmdet-m.onnx` resolves the
    same way regardless of the working directory.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths that exist from the working directory resolve from there.
    - Other relative paths resolve against `root`, or the project root ("auto").
    """

    p = Path(path)
    if p.is_absolute():
        return p
    if p.exists():
        return p.resolve()

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


class RTMDetPipeline:
    """
    Plug-and-play pipeline: encode (letterbox) -> inference -> decode -> NMS -> rescale.

    The pipeline owns one model handle; `detect` may be called from several
    threads, each call working on its own buffers.
    """

    def __init__(
        self,
        *,
        adapter: TensorAdapter,
        manager: SessionManager,
        handle: ModelHandle,
        postprocessor: Postprocessor,
        default_options: DetectOptions = DetectOptions(),
    ):
        self.adapter = adapter
        self.manager = manager
        self.handle = handle
        self.post = postprocessor
        self.default_options = default_options

    def preprocess(self, image: np.ndarray) -> EncodedImage:
        return self.adapter.encode(image)

    def detect(self, image: np.ndarray, options: Optional[DetectOptions] = None) -> List[Detection]:
        opts = options or self.default_options
        encoded = self.adapter.encode(image)
        raw = self.manager.run(self.handle, encoded.tensor)
        candidates = self.post.decode(raw, opts.score_threshold)

        if opts.apply_nms:
            candidates = suppress(candidates, opts.iou_threshold)
        else:
            candidates = select_topk(candidates, opts.max_detections)

        detections = self._to_detections(candidates, encoded.transform, opts)
        LOGGER.debug("Detected %d objects (%d candidates)", len(detections), len(candidates))
        return detections

    __call__ = detect

    def _to_detections(
        self,
        candidates: Candidates,
        transform: LetterboxTransform,
        opts: DetectOptions,
    ) -> List[Detection]:
        if len(candidates) == 0:
            return []

        boxes = transform.inverse_boxes(candidates.boxes)
        use_masks = opts.with_masks and candidates.masks is not None
        detections: List[Detection] = []

        # candidates are already sorted by descending score
        for i, (x1, y1, x2, y2) in enumerate(boxes):
            w, h = float(x2) - float(x1), float(y2) - float(y1)
            if w <= 0 or h <= 0:
                continue

            contours, centroid = (), None
            if use_masks:
                contours, centroid = self._mask_geometry(candidates.masks[i], transform)

            detections.append(
                Detection(
                    x=float(x1),
                    y=float(y1),
                    w=w,
                    h=h,
                    score=float(candidates.scores[i]),
                    class_id=int(candidates.class_ids[i]),
                    contours=contours,
                    centroid=centroid,
                )
            )
            if len(detections) >= opts.max_detections:
                break
        return detections

    def _mask_geometry(self, mask: np.ndarray, transform: LetterboxTransform):
        contours, centroid = mask_contours(mask)
        if not contours:
            return (), None

        # mask pixels -> model input pixels -> original image pixels
        dst_w, dst_h = transform.dst_size
        to_input = np.array([dst_w / mask.shape[1], dst_h / mask.shape[0]], dtype=np.float32)
        mapped = tuple(
            tuple(float(v) for v in transform.inverse_points(c * to_input).reshape(-1)) for c in contours
        )
        if centroid is not None:
            cx, cy = transform.inverse_points(np.asarray(centroid, dtype=np.float32) * to_input)[0]
            centroid = (float(cx), float(cy))
        return mapped, centroid

    def shutdown(self) -> None:
        self.manager.close(self.handle)

    @property
    def closed(self) -> bool:
        return self.handle.closed

    def __enter__(self) -> "RTMDetPipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()


def build_postprocessor(config: DetectorConfig) -> Postprocessor:
    params = dict(config.decoder_params)
    if config.decoder == "distance":
        params.setdefault("input_size", config.preprocess.input_size)
    return Postprocessor(build_decoder(config.decoder, **params), class_ids=config.class_ids)


def initialize(
    model_path: Optional[PathLike] = None,
    config: Optional[DetectorConfig] = None,
    *,
    root: Optional[PathLike] = "auto",
    concurrent_runs: Optional[bool] = None,
) -> RTMDetPipeline:
    """
    Load a model and build the pipeline around it.

    Typical usage:
        pipe = initialize("models/rtmdet-m.onnx")  # resolves from project root by default
        detections = pipe.detect(image)
        pipe.shutdown()

    Raises ModelLoadError for load failures and ConfigError for bad configuration.
    """
    cfg = config or DetectorConfig()
    chosen = model_path if model_path is not None else cfg.model_path
    if chosen is None:
        raise ConfigError("No model path given (argument or config 'model').")

    # Build everything that can fail on configuration before touching the engine.
    adapter = TensorAdapter(cfg.preprocess)
    post = build_postprocessor(cfg)

    manager = SessionManager(concurrent_runs=concurrent_runs)
    handle = manager.load(resolve_path(chosen, root=root), cfg.onnx)
    return RTMDetPipeline(
        adapter=adapter,
        manager=manager,
        handle=handle,
        postprocessor=post,
        default_options=cfg.options,
    )


def detect(pipeline: RTMDetPipeline, image: np.ndarray, options: Optional[DetectOptions] = None) -> List[Detection]:
    return pipeline.detect(image, options)


def shutdown(pipeline: RTMDetPipeline) -> None:
    pipeline.shutdown()
