"""
Pytest configuration and shared fixtures.
"""

import os
import sys
import time

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models.config import ModelConfig
from models.frame import FrameData


CLASS_NAMES = [
    "person", "bicycle", "car", "motorcycle", "bus",
    "truck", "traffic light", "stop sign", "bench", "dog",
]


class FakeBackend:
    """Backend returning a canned output tensor and recording its inputs."""

    def __init__(self, output):
        self.output = output
        self.blobs = []

    def forward(self, blob):
        self.blobs.append(blob)
        if callable(self.output):
            return self.output(blob)
        return self.output


def make_frame(width=640, height=480, index=0, value=0):
    """Build a read-only BGR FrameData."""
    array = np.full((height, width, 3), value, dtype=np.uint8)
    return FrameData.from_numpy(array, timestamp=time.time(), frame_index=index, source="test")


def make_output(anchors, num_classes=len(CLASS_NAMES), num_anchors=None):
    """
    Build a (1, 4 + K, N) output tensor.

    Args:
        anchors: List of (cx, cy, w, h, {class_id: score}) tuples.
        num_anchors: Total anchors; extra ones are all-zero.
    """
    n = num_anchors if num_anchors is not None else max(len(anchors), 1)
    out = np.zeros((1, 4 + num_classes, n), dtype=np.float32)
    for i, (cx, cy, w, h, scores) in enumerate(anchors):
        out[0, 0:4, i] = (cx, cy, w, h)
        for class_id, score in scores.items():
            out[0, 4 + class_id, i] = score
    return out


@pytest.fixture
def class_names():
    return list(CLASS_NAMES)


@pytest.fixture
def model_file(tmp_path):
    """An existing (not necessarily loadable) model artifact path."""
    path = tmp_path / "detector.onnx"
    path.write_bytes(b"\x00")
    return path


@pytest.fixture
def model_config(model_file):
    return ModelConfig(model_path=str(model_file), class_names=list(CLASS_NAMES), input_size=640)


@pytest.fixture
def valid_config(model_file):
    """Return a valid configuration dictionary."""
    return {
        "camera": {
            "device_id": 0,
            "resolution": [1280, 720],
            "fps": 30,
        },
        "model": {
            "model_path": str(model_file),
            "class_names": list(CLASS_NAMES),
            "input_size": 640,
        },
        "pipeline": {
            "channel_capacity": 100,
            "conf_thresh": 0.5,
            "nms_thresh": 0.5,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
