"""
Hand-off points between the pipeline and the motion collaborator.

The pipeline does not decide how detections turn into motion. It calls
every registered sink with each frame's Detections (empty ones included)
on the processing thread; the steering policy lives in the sink.
"""

from __future__ import annotations

import threading
import time
from typing import Optional, Protocol, Tuple

from models.detection import Detections
from models.frame import FrameData


class DetectionSink(Protocol):
    def __call__(self, frame: FrameData, detections: Detections) -> None:
        ...


class LatestDetections:
    """
    Sink that keeps only the most recent result.

    Lets a consumer running at its own cadence (e.g. a motion sequencer
    issuing timed velocity commands) poll the freshest detections. This is
    the one object shared across threads, so it is lock-protected.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._detections: Optional[Detections] = None
        self._received_at: Optional[float] = None

    def __call__(self, frame: FrameData, detections: Detections) -> None:
        with self._lock:
            self._detections = detections
            self._received_at = time.monotonic()

    def get(self) -> Tuple[Optional[Detections], Optional[float]]:
        """Return (detections, age_seconds), or (None, None) before the first frame."""
        with self._lock:
            if self._detections is None:
                return None, None
            return self._detections, time.monotonic() - self._received_at
