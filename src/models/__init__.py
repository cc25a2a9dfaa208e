"""
Typed models for the perception pipeline.
"""

from .frame import FrameData
from .detection import DetectionBox, Detections, ScaleInfo, detections_to_numpy
from .errors import (
    PerceptionError,
    DeviceError,
    ModelLoadError,
    InvalidFrame,
    MalformedTensor,
    ChannelClosed,
)
from .config import (
    Config,
    CameraConfig,
    ModelConfig,
    PipelineConfig,
    load_model_config,
)

__all__ = [
    # Frame
    "FrameData",
    # Detection
    "DetectionBox",
    "Detections",
    "ScaleInfo",
    "detections_to_numpy",
    # Errors
    "PerceptionError",
    "DeviceError",
    "ModelLoadError",
    "InvalidFrame",
    "MalformedTensor",
    "ChannelClosed",
    # Config
    "Config",
    "CameraConfig",
    "ModelConfig",
    "PipelineConfig",
    "load_model_config",
]
