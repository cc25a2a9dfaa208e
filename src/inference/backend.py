"""
Inference backend interface.

Backends take a preprocessed NCHW blob and return the raw output tensor
unchanged; decoding to boxes happens in inference.decode so every backend
shares one post-processing path.
"""

from __future__ import annotations

import logging
from typing import Protocol

import cv2
import numpy as np

from models.errors import ModelLoadError


class InferenceBackend(Protocol):
    def forward(self, blob: np.ndarray) -> np.ndarray:
        ...


class OpenCVDnnBackend:
    """ONNX model executed with the OpenCV dnn module on the CPU."""

    def __init__(self, model_path: str):
        self.model_path = model_path
        try:
            self._net = cv2.dnn.readNetFromONNX(model_path)
        except cv2.error as e:
            raise ModelLoadError(f"Invalid ONNX model {model_path}: {e}") from e
        if self._net.empty():
            raise ModelLoadError(f"Invalid ONNX model {model_path}: network is empty")

        self._net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
        self._net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)
        self._out_names = self._net.getUnconnectedOutLayersNames()
        logging.info(f"ONNX model loaded: {model_path}")

    def forward(self, blob: np.ndarray) -> np.ndarray:
        self._net.setInput(blob)
        outs = self._net.forward(self._out_names)
        return np.asarray(outs[0])
