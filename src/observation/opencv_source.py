"""
cv2.VideoCapture backed source.

Integer device ids are cameras. On Linux they are opened through V4L2 and
asked for MJPG, which is what lets USB cameras reach their rated frame
rate at 720p. String ids are stream URLs or video file paths.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import cv2

from models.errors import ChannelClosed, DeviceError
from models.frame import FrameData
from .base import ObservationConfig, ObservationSource

MAX_OPEN_BACKOFF = 10


@dataclass
class OpenCVSourceConfig(ObservationConfig):
    """
    Attributes:
        device_id: Camera index, stream URL or video file path.
        fourcc: Pixel format requested from cameras; None leaves it alone.
        use_v4l: Use the V4L2 capture backend for camera indices on Linux.
        buffer_size: Driver-side frame buffer; 1 keeps latency lowest.
        max_retries: Open attempts before giving up.
    """
    device_id: Union[int, str] = 0
    fourcc: Optional[str] = "MJPG"
    use_v4l: bool = True
    buffer_size: int = 1
    max_retries: int = 3

    @classmethod
    def from_camera_config(cls, camera: Dict[str, Any], source_id: str = "camera") -> "OpenCVSourceConfig":
        """Build from the `camera` section of the YAML config."""
        size = camera.get("resolution")
        return cls(
            source_id=source_id,
            resolution=tuple(size) if size else None,
            fps=camera.get("fps"),
            device_id=camera.get("device_id", 0),
            fourcc=camera.get("fourcc", "MJPG"),
            use_v4l=camera.get("use_v4l", True),
            buffer_size=camera.get("buffer_size", 1),
            max_retries=camera.get("max_retries", 3),
        )


class OpenCVSource(ObservationSource):
    """Camera, stream or video file read through OpenCV."""

    def __init__(self, config: OpenCVSourceConfig):
        super().__init__(config)
        self.settings = config
        self._capture: Optional[cv2.VideoCapture] = None

    @property
    def device_id(self) -> Union[int, str]:
        return self.settings.device_id

    @property
    def is_camera(self) -> bool:
        return isinstance(self.device_id, int)

    @property
    def is_file(self) -> bool:
        return isinstance(self.device_id, str) and os.path.exists(self.device_id)

    def open(self) -> None:
        if self._is_open:
            return
        self._capture = self._connect()
        if self.is_camera:
            self._configure_camera(self._capture)
        self._is_open = True
        self._frame_index = 0
        logging.info(f"Source {self.source_id} opened on device {self.device_id}")

    def _new_capture(self) -> cv2.VideoCapture:
        if self.is_camera and self.settings.use_v4l and sys.platform.startswith("linux"):
            return cv2.VideoCapture(self.device_id, cv2.CAP_V4L2)
        return cv2.VideoCapture(self.device_id)

    def _connect(self) -> cv2.VideoCapture:
        """Open the device, backing off 2, 4, 8... seconds between attempts."""
        attempts = max(1, self.settings.max_retries)
        for attempt in range(attempts):
            if attempt:
                delay = min(2 ** attempt, MAX_OPEN_BACKOFF)
                logging.warning(
                    f"Device {self.device_id} did not open, retry {attempt + 1}/{attempts} in {delay}s"
                )
                self._backoff(delay)
            capture = self._new_capture()
            if capture.isOpened():
                return capture
            capture.release()
        raise DeviceError(f"Could not open device {self.device_id} after {attempts} attempts")

    def _backoff(self, delay: float) -> None:
        if self._cancel is None:
            time.sleep(delay)
        elif self._cancel.wait(delay):
            raise ChannelClosed(f"Opening device {self.device_id} cancelled")

    def _configure_camera(self, capture: cv2.VideoCapture) -> None:
        s = self.settings
        if s.fourcc:
            capture.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*s.fourcc))
        if s.resolution:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, s.resolution[0])
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, s.resolution[1])
        if s.fps:
            capture.set(cv2.CAP_PROP_FPS, s.fps)
        capture.set(cv2.CAP_PROP_BUFFERSIZE, s.buffer_size)

        # Drivers silently fall back when a mode is unsupported.
        info = self.describe()
        logging.info(f"Camera negotiated {info['width']}x{info['height']} at {info['fps']} fps")

    def read(self) -> Optional[FrameData]:
        if not self._is_open or self._capture is None:
            raise DeviceError(f"Source {self.source_id} is not open")

        ok, image = self._capture.read()
        if not ok or image is None:
            if self.is_file:
                logging.info(f"Source {self.source_id} reached end of file")
                return None
            raise DeviceError(f"Read from device {self.device_id} failed")

        self._frame_index += 1
        return FrameData.from_numpy(
            image,
            timestamp=time.time(),
            frame_index=self._frame_index,
            source=self.source_id,
        )

    def close(self) -> None:
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()
        if self._is_open:
            logging.info(f"Source {self.source_id} closed")
        self._is_open = False

    def describe(self) -> Dict[str, Any]:
        """Properties the driver actually reports; empty when not open."""
        if self._capture is None or not self._capture.isOpened():
            return {}
        get = self._capture.get
        return {
            "width": int(get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": get(cv2.CAP_PROP_FPS),
            "fourcc": int(get(cv2.CAP_PROP_FOURCC)),
            "frame_count": int(get(cv2.CAP_PROP_FRAME_COUNT)) if self.is_file else None,
        }
