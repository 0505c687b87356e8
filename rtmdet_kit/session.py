from __future__ import annotations

import contextlib
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from .backends.onnxruntime_backend import BackendKind, OnnxRuntimeConfig, create_session
from .errors import InferenceError, ModelLoadError, SessionClosedError

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _static_dim(dim: Any) -> Optional[int]:
    # ORT reports symbolic dims as strings/None
    if isinstance(dim, (int, np.integer)) and int(dim) > 0:
        return int(dim)
    return None


@dataclass
class ModelHandle:
    """
    A loaded model: the engine session plus what `run` needs to feed it.

    `engine` is anything exposing ORT's InferenceSession surface
    (`get_inputs()`, `get_outputs()`, `run(output_names, feeds)`).
    """

    engine: Any
    kind: BackendKind
    input_name: str
    input_shape: Tuple[Optional[int], ...]
    output_names: Tuple[str, ...]
    concurrent_runs: bool
    model_path: Optional[Path] = None
    closed: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def from_engine(
        cls,
        engine: Any,
        *,
        kind: BackendKind = BackendKind.CPU,
        concurrent_runs: Optional[bool] = None,
        model_path: Optional[PathLike] = None,
        input_name: Optional[str] = None,
        output_names: Optional[Sequence[str]] = None,
    ) -> "ModelHandle":
        inputs = engine.get_inputs()
        if not inputs:
            raise ModelLoadError("Model has no inputs")
        by_name = {node.name: node for node in inputs}
        name = input_name or inputs[0].name
        if name not in by_name:
            raise ModelLoadError(f"Input name {name!r} not found. Available: {list(by_name)}")

        available_outputs = [node.name for node in engine.get_outputs()]
        names = tuple(output_names) if output_names else tuple(available_outputs)
        unknown = [n for n in names if n not in available_outputs]
        if unknown:
            raise ModelLoadError(f"Output names {unknown} not found. Available: {available_outputs}")

        kind = BackendKind.parse(kind)
        return cls(
            engine=engine,
            kind=kind,
            input_name=name,
            input_shape=tuple(_static_dim(d) for d in (by_name[name].shape or ())),
            output_names=names,
            concurrent_runs=kind.concurrent_safe if concurrent_runs is None else bool(concurrent_runs),
            model_path=None if model_path is None else Path(model_path),
        )


class SessionManager:
    """
    Loads models and runs forward passes against them.

    Runs against one handle are serialized with the handle's lock unless the
    handle permits concurrent runs (explicit `concurrent_runs`, else the
    backend kind's documented thread-safety).
    """

    def __init__(self, concurrent_runs: Optional[bool] = None):
        self.concurrent_runs = concurrent_runs

    def load(self, model_path: PathLike, cfg: OnnxRuntimeConfig = OnnxRuntimeConfig()) -> ModelHandle:
        engine = create_session(model_path, cfg)
        handle = ModelHandle.from_engine(
            engine,
            kind=cfg.kind,
            concurrent_runs=self.concurrent_runs,
            model_path=model_path,
            input_name=cfg.input_name,
            output_names=cfg.output_names,
        )
        LOGGER.info(
            "Model handle ready: backend=%s input=%s%s outputs=%s concurrent_runs=%s",
            handle.kind.value,
            handle.input_name,
            list(handle.input_shape),
            list(handle.output_names),
            handle.concurrent_runs,
        )
        return handle

    def run(self, handle: ModelHandle, tensor: np.ndarray) -> Dict[str, np.ndarray]:
        """
        One forward pass. Returns outputs keyed by name, in model output order.
        """
        if handle.closed:
            raise SessionClosedError("Model handle has been shut down; initialize again.")
        if not isinstance(tensor, np.ndarray) or tensor.dtype != np.float32:
            raise InferenceError(f"Input tensor must be a float32 NumPy array, got {getattr(tensor, 'dtype', type(tensor))}")
        expected = handle.input_shape
        if expected:
            if tensor.ndim != len(expected) or any(
                e is not None and e != actual for e, actual in zip(expected, tensor.shape)
            ):
                raise InferenceError(
                    f"Input shape mismatch for {handle.input_name!r}: expected {list(expected)}, got {list(tensor.shape)}"
                )

        guard = contextlib.nullcontext() if handle.concurrent_runs else handle._lock
        with guard:
            engine = handle.engine
            if handle.closed or engine is None:
                raise SessionClosedError("Model handle has been shut down; initialize again.")
            try:
                outputs = engine.run(list(handle.output_names), {handle.input_name: tensor})
            except Exception as exc:
                raise InferenceError(f"Inference failed: {exc}") from exc

        if len(outputs) != len(handle.output_names):
            raise InferenceError(f"Engine returned {len(outputs)} outputs, expected {len(handle.output_names)}")
        return {name: np.asarray(value) for name, value in zip(handle.output_names, outputs)}

    def close(self, handle: ModelHandle) -> None:
        with handle._lock:
            if handle.closed:
                return
            handle.closed = True
            handle.engine = None
        LOGGER.info("Model handle closed (%s)", handle.model_path or handle.input_name)
