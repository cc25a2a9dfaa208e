"""
InferenceSession: a loaded detection model plus its configuration.

A session is owned by exactly one thread (the pipeline's processing
thread). It holds no locks; callers must not share one across threads.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from models.config import ModelConfig, load_model_config
from models.detection import Detections
from models.frame import FrameData
from .backend import InferenceBackend, OpenCVDnnBackend
from .decode import decode_detections, expected_anchor_count
from .preprocess import preprocess

_AUTO = object()


class InferenceSession:
    """
    Runs preprocess -> forward -> decode for single frames.

    Example:
        session = InferenceSession.load(load_model_config("data/config.json"))
        detections = session.detect(frame_data, conf_thresh=0.5, nms_thresh=0.5)
    """

    def __init__(
        self,
        backend: InferenceBackend,
        model_config: ModelConfig,
        num_anchors=_AUTO,
        letterboxed: bool = True,
    ):
        self.backend = backend
        self.model_config = model_config
        self.letterboxed = letterboxed
        # None disables the anchor-count check for non-pyramid heads.
        if num_anchors is _AUTO:
            num_anchors = expected_anchor_count(model_config.input_size)
        self.num_anchors: Optional[int] = num_anchors

    @classmethod
    def load(cls, model_config: ModelConfig, **kwargs) -> "InferenceSession":
        """
        Validate the config and load its model with the OpenCV dnn backend.

        Raises:
            ModelLoadError: If the config or model artifact is invalid.
        """
        model_config.validate()
        backend = OpenCVDnnBackend(model_config.model_path)
        logging.info(
            f"Inference session ready: model={os.path.basename(model_config.model_path)}, "
            f"input_size={model_config.input_size}, classes={model_config.num_classes}"
        )
        return cls(backend, model_config, **kwargs)

    @property
    def class_names(self):
        return self.model_config.class_names

    def detect(
        self,
        frame: FrameData,
        conf_thresh: float,
        nms_thresh: float,
        clip: bool = False,
    ) -> Detections:
        """
        Detect objects in one frame.

        Raises:
            InvalidFrame: If the frame cannot be preprocessed.
            MalformedTensor: If the model output does not match the config.
        """
        prepared = preprocess(frame, self.model_config.input_size, letterboxed=self.letterboxed)
        output = self.backend.forward(prepared.to_blob())
        return decode_detections(
            output,
            prepared.scale,
            conf_thresh=conf_thresh,
            nms_thresh=nms_thresh,
            num_classes=self.model_config.num_classes,
            num_anchors=self.num_anchors,
            clip=clip,
            frame_index=frame.frame_index,
            timestamp=frame.timestamp,
        )


def load_session(config_path: str, **kwargs) -> InferenceSession:
    """Load a model config file and build a session from it."""
    return InferenceSession.load(load_model_config(config_path), **kwargs)
