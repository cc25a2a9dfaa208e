"""
Pipeline module for the perception system.

The pipeline moves frames from an observation source through a bounded
channel to the inference stage:
- Frame acquisition (acquisition thread)
- Backpressure via BoundedFrameChannel
- Preprocess, inference and decode (processing thread)
- Throughput reporting via RateMonitor on both sides
"""

from .channel import BoundedFrameChannel, DEFAULT_CAPACITY
from .engine import PerceptionPipeline, PipelineStats, create_pipeline_from_config
from .rate import RateMonitor
from .sink import DetectionSink, LatestDetections

__all__ = [
    "BoundedFrameChannel",
    "DEFAULT_CAPACITY",
    "PerceptionPipeline",
    "PipelineStats",
    "create_pipeline_from_config",
    "RateMonitor",
    "DetectionSink",
    "LatestDetections",
]
