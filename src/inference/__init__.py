"""
Inference layer: preprocessing, model execution and output decoding.
"""

from .backend import InferenceBackend, OpenCVDnnBackend
from .decode import (
    CANDIDATE_SCORE_FLOOR,
    Candidates,
    box_iou,
    decode_candidates,
    decode_detections,
    expected_anchor_count,
    non_max_suppression,
)
from .preprocess import PreparedInput, letterbox, preprocess
from .session import InferenceSession, load_session

__all__ = [
    "InferenceBackend",
    "OpenCVDnnBackend",
    "CANDIDATE_SCORE_FLOOR",
    "Candidates",
    "box_iou",
    "decode_candidates",
    "decode_detections",
    "expected_anchor_count",
    "non_max_suppression",
    "PreparedInput",
    "letterbox",
    "preprocess",
    "InferenceSession",
    "load_session",
]
