"""
Detection models for object detection results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class ScaleInfo:
    """
    Geometry carried from preprocessing to decoding.

    With letterboxing the frame sits in the top-left corner of a
    max(width, height) square, so both axes share one scale. Without it the
    frame was stretched to the square and each axis scales on its own.

    Attributes:
        width: Original frame width.
        height: Original frame height.
        scaled_size: Square model input size the frame was resized to.
        letterboxed: Whether the frame was padded to a square before resizing.
    """
    width: float
    height: float
    scaled_size: float
    letterboxed: bool = True

    @property
    def padded_side(self) -> float:
        return max(self.width, self.height)

    @property
    def x_scale(self) -> float:
        if self.letterboxed:
            return self.padded_side / self.scaled_size
        return self.width / self.scaled_size

    @property
    def y_scale(self) -> float:
        if self.letterboxed:
            return self.padded_side / self.scaled_size
        return self.height / self.scaled_size


@dataclass(frozen=True)
class DetectionBox:
    """
    A single decoded detection in original-frame pixel coordinates.

    Attributes:
        xmin: Left edge x coordinate.
        ymin: Top edge y coordinate.
        xmax: Right edge x coordinate.
        ymax: Bottom edge y coordinate.
        class_id: Index into the model's class_names.
        confidence: Detection confidence score (0-1).
    """
    xmin: int
    ymin: int
    xmax: int
    ymax: int
    class_id: int
    confidence: float

    @property
    def width(self) -> int:
        return self.xmax - self.xmin

    @property
    def height(self) -> int:
        return self.ymax - self.ymin

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.xmin + self.xmax) / 2, (self.ymin + self.ymax) / 2)

    @property
    def area(self) -> int:
        return self.width * self.height

    def as_tuple(self) -> Tuple[int, int, int, int]:
        """Return as (xmin, ymin, xmax, ymax) tuple."""
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    def label(self, class_names: Sequence[str]) -> str:
        """Human-readable class name, falling back to the numeric id."""
        if 0 <= self.class_id < len(class_names):
            return class_names[self.class_id]
        return str(self.class_id)

    def to_dict(self, class_names: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "xmin": self.xmin,
            "ymin": self.ymin,
            "xmax": self.xmax,
            "ymax": self.ymax,
            "class": self.class_id,
            "conf": self.confidence,
        }
        if class_names is not None:
            d["class_name"] = self.label(class_names)
        return d

    def to_numpy(self) -> np.ndarray:
        """Convert to numpy array [xmin, ymin, xmax, ymax, confidence, class_id]."""
        return np.array([
            self.xmin, self.ymin, self.xmax, self.ymax,
            self.confidence, self.class_id,
        ])


@dataclass(frozen=True)
class Detections(Sequence[DetectionBox]):
    """
    Result of decoding one frame, in NMS survivor order.

    Empty results are valid values, not errors.
    """
    boxes: Tuple[DetectionBox, ...] = ()
    frame_index: int = 0
    timestamp: Optional[float] = None
    source: Optional[str] = field(default=None, compare=False)

    def __getitem__(self, index):
        return self.boxes[index]

    def __len__(self) -> int:
        return len(self.boxes)

    def __iter__(self) -> Iterator[DetectionBox]:
        return iter(self.boxes)

    def best(self) -> Optional[DetectionBox]:
        """Highest-confidence box, or None when nothing was detected."""
        if not self.boxes:
            return None
        return max(self.boxes, key=lambda b: b.confidence)

    def of_class(self, class_id: int) -> List[DetectionBox]:
        return [b for b in self.boxes if b.class_id == class_id]

    def to_dict(self, class_names: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        return {
            "frame_index": self.frame_index,
            "timestamp": self.timestamp,
            "detections": [b.to_dict(class_names) for b in self.boxes],
        }


def detections_to_numpy(detections: Sequence[DetectionBox]) -> np.ndarray:
    """
    Convert detections to a numpy array.

    Returns:
        Array of shape (N, 6) with [xmin, ymin, xmax, ymax, confidence, class_id].
    """
    if not detections:
        return np.zeros((0, 6))
    return np.array([d.to_numpy() for d in detections])
