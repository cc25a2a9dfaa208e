"""
Frame preprocessing for square-input detection models.

The frame is letterboxed into the top-left corner of a black square, resized
to the model input size, converted to RGB and scaled to [0, 1]. Top-left
placement means the decoder can map model coordinates back to the frame with
a plain per-axis scale and no offset.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from models.detection import ScaleInfo
from models.errors import InvalidFrame
from models.frame import FrameData


@dataclass(frozen=True)
class PreparedInput:
    """
    Preprocessed model input.

    Attributes:
        tensor: float32 array of shape (input_size, input_size, 3), RGB, [0, 1].
        scale: Geometry needed to rescale decoded boxes to the original frame.
    """
    tensor: np.ndarray
    scale: ScaleInfo

    def to_blob(self) -> np.ndarray:
        """Return the tensor in NCHW layout, shape (1, 3, S, S)."""
        return np.ascontiguousarray(self.tensor.transpose(2, 0, 1)[np.newaxis, ...])


def letterbox(image: np.ndarray) -> np.ndarray:
    """
    Pad an image with black to a max(width, height) square, top-left aligned.

    Square inputs are returned unchanged.
    """
    height, width = image.shape[:2]
    if width == height:
        return image
    side = max(width, height)
    padded = np.zeros((side, side) + image.shape[2:], dtype=image.dtype)
    padded[:height, :width] = image
    return padded


def preprocess(frame: FrameData, input_size: int, letterboxed: bool = True) -> PreparedInput:
    """
    Turn a frame into a normalized square model input.

    With letterboxed=False the frame is stretched to the square instead of
    padded; the returned ScaleInfo records which geometry was used.

    Raises:
        InvalidFrame: If the frame has no pixel data or a zero dimension.
    """
    image = frame.frame
    if image is None or image.ndim < 2 or frame.is_empty:
        raise InvalidFrame(
            f"Frame {frame.frame_index} has unusable shape "
            f"{getattr(image, 'shape', None)}"
        )

    if image.ndim == 2 or image.shape[2] == 1:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    elif image.shape[2] != 3:
        raise InvalidFrame(f"Frame {frame.frame_index} has {image.shape[2]} channels")

    padded = letterbox(image) if letterboxed else image
    resized = cv2.resize(padded, (input_size, input_size), interpolation=cv2.INTER_LINEAR)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
    tensor = rgb.astype(np.float32) / 255.0

    return PreparedInput(
        tensor=tensor,
        scale=ScaleInfo(
            width=float(frame.width),
            height=float(frame.height),
            scaled_size=float(input_size),
            letterboxed=letterboxed,
        ),
    )
