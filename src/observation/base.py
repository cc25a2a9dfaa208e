"""
Frame acquisition contract.

The pipeline's acquisition thread is the only caller of a source: it opens
the device, pulls frames until read() reports the end of the stream, and
closes it again. Sources therefore hold no locks.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from models.frame import FrameData


@dataclass
class ObservationConfig:
    """
    Settings shared by every source.

    Attributes:
        source_id: Name stamped on every FrameData (e.g. "front-cam").
        resolution: Requested (width, height); None keeps the device default.
        fps: Requested capture rate; None keeps the device default.
    """
    source_id: str = "default"
    resolution: Optional[Tuple[int, int]] = None
    fps: Optional[int] = None


class ObservationSource(ABC):
    """
    A device or file that yields FrameData.

    Subclasses set `_is_open` in open()/close() and advance `_frame_index`
    for each delivered frame, so indices start at 1 after every open().

    Usage:
        with OpenCVSource(OpenCVSourceConfig(device_id=0)) as camera:
            for frame_data in camera:
                channel.send(frame_data)
    """

    def __init__(self, config: ObservationConfig):
        self._config = config
        self._is_open = False
        self._frame_index = 0
        self._cancel: Optional[threading.Event] = None

    @property
    def source_id(self) -> str:
        return self._config.source_id

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def frame_index(self) -> int:
        """Index of the last delivered frame; 0 before the first read."""
        return self._frame_index

    def bind_cancel(self, event: threading.Event) -> None:
        """
        Share the owner's shutdown event.

        Sources that wait internally (open retries) wake on it and raise
        ChannelClosed instead of finishing the wait.
        """
        self._cancel = event

    @property
    def cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    @abstractmethod
    def open(self) -> None:
        """
        Acquire the device.

        Raises:
            DeviceError: If the device cannot be acquired.
            ChannelClosed: If the bound cancel event fired while waiting.
        """

    @abstractmethod
    def read(self) -> Optional[FrameData]:
        """
        Block until the device delivers the next frame.

        Returns:
            The frame, or None once a finite source (file, replay) runs out.

        Raises:
            DeviceError: If the device is not open or the read failed.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the device. Calling it twice is harmless."""

    def __enter__(self) -> "ObservationSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[FrameData]:
        if not self._is_open:
            raise RuntimeError(f"Source {self.source_id} is not open")
        frame_data = self.read()
        while frame_data is not None:
            yield frame_data
            frame_data = self.read()
