from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

from ..errors import ConfigError, ModelLoadError

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]

_COREML_OPTIONS = {
    "ModelFormat": "MLProgram",
    "MLComputeUnits": "ALL",
    "RequireStaticInputShapes": "1",
    "EnableOnSubgraphs": "1",
}

_GRAPH_OPTIMIZATION = ("disable", "basic", "extended", "all")


class BackendKind(str, enum.Enum):
    """
    Hardware backend a model handle runs on, resolved once at load time.
    """

    CPU = "cpu"
    CUDA = "cuda"
    COREML = "coreml"

    @classmethod
    def parse(cls, value: Union[str, "BackendKind"]) -> "BackendKind":
        if isinstance(value, BackendKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigError(f"Unknown backend {value!r}; choose from {[k.value for k in cls]}") from None

    @property
    def primary_provider(self) -> str:
        return {
            BackendKind.CPU: "CPUExecutionProvider",
            BackendKind.CUDA: "CUDAExecutionProvider",
            BackendKind.COREML: "CoreMLExecutionProvider",
        }[self]

    @property
    def concurrent_safe(self) -> bool:
        # ORT documents InferenceSession.run as thread-safe for CPU/CUDA;
        # CoreML-partitioned graphs are run one at a time.
        return self is not BackendKind.COREML

    def providers(self) -> List[Any]:
        if self is BackendKind.CPU:
            return ["CPUExecutionProvider"]
        if self is BackendKind.COREML:
            return [("CoreMLExecutionProvider", dict(_COREML_OPTIONS)), "CPUExecutionProvider"]
        return [self.primary_provider, "CPUExecutionProvider"]


@dataclass(frozen=True)
class OnnxRuntimeConfig:
    """
    Configuration for ONNX Runtime inference.

    - kind: backend kind (cpu / cuda / coreml); selects the execution providers
    - providers: explicit ORT provider list, overrides `kind`'s defaults
    - allow_fallback: use CPU when the kind's provider is not available
    - graph_optimization: disable / basic / extended / all
    - enable_mem_arena: ORT CPU memory arena; off keeps memory flat under continuous inference
    - input_name/output_names: override auto-selected I/O names if needed
    """

    kind: BackendKind = BackendKind.CPU
    providers: Optional[Sequence[Any]] = None
    allow_fallback: bool = False
    graph_optimization: str = "basic"
    enable_mem_arena: bool = False
    intra_op_threads: Optional[int] = None
    input_name: Optional[str] = None
    output_names: Optional[Sequence[str]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", BackendKind.parse(self.kind))
        if self.graph_optimization not in _GRAPH_OPTIMIZATION:
            raise ConfigError(f"graph_optimization must be one of {_GRAPH_OPTIMIZATION}, got {self.graph_optimization!r}")
        if self.intra_op_threads is not None and int(self.intra_op_threads) < 1:
            raise ConfigError("intra_op_threads must be >= 1")


def _provider_name(provider: Any) -> str:
    return provider[0] if isinstance(provider, (tuple, list)) else str(provider)


def resolve_providers(cfg: OnnxRuntimeConfig, available: Sequence[str]) -> List[Any]:
    """
    Pick the provider list for `cfg` given the providers this ORT build offers.
    """
    if cfg.providers is not None:
        providers = list(cfg.providers)
        missing = [_provider_name(p) for p in providers if _provider_name(p) not in available]
        if missing:
            raise ModelLoadError(f"ONNX Runtime providers not available: {missing}. Available: {list(available)}")
        return providers

    providers = cfg.kind.providers()
    if cfg.kind.primary_provider in available:
        return providers
    if cfg.allow_fallback:
        LOGGER.warning(
            "%s is not available in this onnxruntime build; falling back to CPUExecutionProvider",
            cfg.kind.primary_provider,
        )
        return ["CPUExecutionProvider"]
    raise ModelLoadError(
        f"Backend {cfg.kind.value!r} requires {cfg.kind.primary_provider}, which is not available. "
        f"Available: {list(available)}"
    )


def create_session(model_path: PathLike, cfg: OnnxRuntimeConfig = OnnxRuntimeConfig()):
    """
    Load an ONNX model into an `onnxruntime.InferenceSession`.

    Raises ModelLoadError when the file is missing, the provider is unavailable
    or the runtime rejects the graph.
    """
    try:
        import onnxruntime as ort  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError(
            "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
            "(or `onnxruntime-gpu`)."
        ) from e

    path = Path(model_path)
    if not path.is_file():
        raise ModelLoadError(f"Model file not found: {path}")

    sess_opts = ort.SessionOptions()
    sess_opts.enable_cpu_mem_arena = bool(cfg.enable_mem_arena)
    sess_opts.graph_optimization_level = {
        "disable": ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
        "basic": ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
        "extended": ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
        "all": ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
    }[cfg.graph_optimization]
    sess_opts.log_severity_level = 2  # warning
    if cfg.intra_op_threads is not None:
        sess_opts.intra_op_num_threads = int(cfg.intra_op_threads)

    providers = resolve_providers(cfg, ort.get_available_providers())
    try:
        session = ort.InferenceSession(str(path), sess_options=sess_opts, providers=providers)
    except Exception as exc:
        raise ModelLoadError(f"ONNX Runtime could not load {path}: {exc}") from exc

    LOGGER.info("Loaded ONNX model %s (providers: %s)", path, ", ".join(session.get_providers()))
    for node in session.get_inputs():
        LOGGER.info("Model input %s shape=%s type=%s", node.name, node.shape, node.type)
    for node in session.get_outputs():
        LOGGER.info("Model output %s shape=%s type=%s", node.name, node.shape, node.type)
    return session
