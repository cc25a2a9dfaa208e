"""
Observation layer for frame acquisition.

Each source implements the ObservationSource interface and returns
FrameData objects, raising DeviceError when the device fails.
"""

from .base import ObservationSource, ObservationConfig
from .opencv_source import OpenCVSource, OpenCVSourceConfig

__all__ = [
    "ObservationSource",
    "ObservationConfig",
    "OpenCVSource",
    "OpenCVSourceConfig",
]
