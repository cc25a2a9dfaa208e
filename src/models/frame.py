"""
Captured image plus the metadata that travels with it through the channel.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class FrameData:
    """
    One captured image.

    Instances are immutable and from_numpy() flags the pixel buffer
    read-only, so a frame handed from the acquisition thread to the
    processing thread needs neither a copy nor a lock.

    Attributes:
        frame: BGR pixels, HxWxC (or HxW for grayscale).
        width: Pixels per row; 0 for an empty buffer.
        height: Rows; 0 for an empty buffer.
        timestamp: Wall-clock capture time (time.time()).
        frame_index: 1-based position in the source's stream.
        source: source_id of the producing ObservationSource.
    """
    frame: np.ndarray
    width: int
    height: int
    timestamp: float
    frame_index: int = 0
    source: Optional[str] = None

    @classmethod
    def from_numpy(
        cls,
        image: np.ndarray,
        timestamp: float,
        frame_index: int = 0,
        source: Optional[str] = None,
    ) -> "FrameData":
        """
        Wrap an array, deriving width/height.

        The frame holds a read-only view of the pixels; the caller's array
        keeps its own flags.
        """
        image = np.asarray(image).view()
        height, width = image.shape[:2] if image.ndim >= 2 else (0, 0)
        image.setflags(write=False)
        return cls(image, width, height, timestamp, frame_index, source)

    @property
    def channels(self) -> int:
        return self.frame.shape[2] if self.frame.ndim == 3 else 1

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.frame.shape

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height), the order cv2 uses for sizes."""
        return (self.width, self.height)

    @property
    def is_empty(self) -> bool:
        return self.frame.size == 0 or self.width <= 0 or self.height <= 0
