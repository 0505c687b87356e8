"""
Error taxonomy for the detection pipeline.

Load-time failures (`ModelLoadError` and subclasses) are fatal: the pipeline
must be re-initialized. Per-call failures (`InvalidImageError`,
`InferenceError`) leave the loaded model usable, so callers may retry with a
new image.
"""

from __future__ import annotations


class RTMDetError(Exception):
    fatal: bool = False


class ConfigError(RTMDetError, ValueError):
    """Option out of range or malformed configuration."""


class InvalidImageError(RTMDetError, ValueError):
    """Image is empty, has the wrong rank or an unsupported channel count."""


class ModelLoadError(RTMDetError, RuntimeError):
    """Model file missing/corrupt, provider unavailable, or graph rejected."""

    fatal = True


class SessionClosedError(ModelLoadError):
    """The model handle was shut down."""


class InferenceError(RTMDetError, RuntimeError):
    """Engine failure or input/output shape mismatch during a forward pass."""
