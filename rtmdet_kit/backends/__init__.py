"""
Inference backends for rtmdet_kit.

Backends are kept in a separate module so core functionality (pre/post-processing)
stays importable without touching the inference runtime.
"""

from __future__ import annotations

from .onnxruntime_backend import BackendKind, OnnxRuntimeConfig, create_session, resolve_providers

__all__ = ["BackendKind", "OnnxRuntimeConfig", "create_session", "resolve_providers"]
