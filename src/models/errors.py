"""
Error taxonomy for the perception pipeline.

Startup errors (device open, model load, config load) are fatal.
Per-frame errors are split into recoverable (InvalidFrame) and fatal
(MalformedTensor, which recurs on every frame once it happens).
"""

from __future__ import annotations


class PerceptionError(Exception):
    """Base class for all pipeline errors."""


class DeviceError(PerceptionError):
    """The acquisition source is unavailable or a read failed."""


class ModelLoadError(PerceptionError):
    """Model config or model artifact is missing or invalid."""


class InvalidFrame(PerceptionError):
    """A frame with zero dimension or no pixel data reached preprocessing."""


class MalformedTensor(PerceptionError):
    """Inference output shape does not match the model configuration."""


class ChannelClosed(PerceptionError):
    """The frame channel was closed (and, for receive, fully drained)."""
