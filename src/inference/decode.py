"""
Decoding of dense anchor-grid detector output.

The model emits a float tensor of shape (1, 4 + K, N): for each of the N
anchors, (cx, cy, w, h) in model input coordinates followed by K class
scores. Decoding runs in three steps:

1. Per-anchor decode. Anchors whose best class score is not above the fixed
   CANDIDATE_SCORE_FLOOR are discarded; the rest become (x, y, w, h) boxes
   rescaled to the original frame.
2. Greedy non-max suppression with a caller-supplied score floor and IoU
   threshold.
3. Export of survivors as corner-form DetectionBox values.

The fixed floor in step 1 and the caller's conf_thresh in step 2 are two
separate filters and both always apply.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from models.detection import DetectionBox, Detections, ScaleInfo
from models.errors import MalformedTensor

# Pre-filter applied to every anchor before NMS. Not configurable.
CANDIDATE_SCORE_FLOOR = 0.25

BOX_PARAMS = 4

DEFAULT_STRIDES = (8, 16, 32)


@dataclass(frozen=True)
class Candidates:
    """
    Anchors that passed the per-anchor floor.

    Attributes:
        boxes: int64 array (K, 4) of [x, y, width, height] in frame pixels.
        scores: float32 array (K,) of max class scores.
        class_ids: int64 array (K,) of argmax class indices.
        anchor_indices: int64 array (K,) of source anchor positions.
    """
    boxes: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray
    anchor_indices: np.ndarray

    def __len__(self) -> int:
        return len(self.scores)


def expected_anchor_count(input_size: int, strides: Sequence[int] = DEFAULT_STRIDES) -> int:
    """Number of anchors a stride-pyramid detector emits (8400 at 640)."""
    return sum((input_size // s) ** 2 for s in strides)


def round_half_away(values: np.ndarray) -> np.ndarray:
    """Round to nearest integer with halves going away from zero."""
    values = np.asarray(values, dtype=np.float64)
    return (np.sign(values) * np.floor(np.abs(values) + 0.5)).astype(np.int64)


def _check_shape(
    output: np.ndarray,
    num_classes: Optional[int],
    num_anchors: Optional[int],
) -> np.ndarray:
    if output.ndim != 3 or output.shape[0] != 1:
        raise MalformedTensor(f"Expected output of shape (1, M, N), got {output.shape}")
    rows, anchors = output.shape[1], output.shape[2]
    if rows <= BOX_PARAMS:
        raise MalformedTensor(f"Output has {rows} rows, need box params plus class scores")
    if num_classes is not None and rows != BOX_PARAMS + num_classes:
        raise MalformedTensor(
            f"Output has {rows} rows, expected {BOX_PARAMS + num_classes} "
            f"for {num_classes} classes"
        )
    if num_anchors is not None and anchors != num_anchors:
        raise MalformedTensor(f"Output has {anchors} anchors, expected {num_anchors}")
    return output[0]


def decode_candidates(
    output: np.ndarray,
    scale: ScaleInfo,
    num_classes: Optional[int] = None,
    num_anchors: Optional[int] = None,
) -> Candidates:
    """
    Decode every anchor and keep those whose best class score exceeds the floor.

    Raises:
        MalformedTensor: If the output shape does not match the expected
            (1, 4 + num_classes, num_anchors) layout.
    """
    preds = _check_shape(np.asarray(output), num_classes, num_anchors)

    class_scores = preds[BOX_PARAMS:]
    max_scores = class_scores.max(axis=0)
    max_index = class_scores.argmax(axis=0)

    keep = np.flatnonzero(max_scores > CANDIDATE_SCORE_FLOOR)
    if keep.size == 0:
        empty = np.zeros((0,), dtype=np.int64)
        return Candidates(
            boxes=np.zeros((0, 4), dtype=np.int64),
            scores=np.zeros((0,), dtype=np.float32),
            class_ids=empty,
            anchor_indices=empty,
        )

    cx, cy, w, h = (preds[i, keep].astype(np.float64) for i in range(BOX_PARAMS))
    x_scale, y_scale = scale.x_scale, scale.y_scale

    boxes = np.stack([
        round_half_away((cx - w / 2.0) * x_scale),
        round_half_away((cy - h / 2.0) * y_scale),
        round_half_away(w * x_scale),
        round_half_away(h * y_scale),
    ], axis=1)

    # A negative size flips the box; keep (x, y) as the top-left corner.
    for pos, size in ((0, 2), (1, 3)):
        flipped = boxes[:, size] < 0
        boxes[flipped, pos] += boxes[flipped, size]
        boxes[flipped, size] = -boxes[flipped, size]

    return Candidates(
        boxes=boxes,
        scores=max_scores[keep].astype(np.float32),
        class_ids=max_index[keep].astype(np.int64),
        anchor_indices=keep.astype(np.int64),
    )


def box_iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    IoU between one [x, y, w, h] box and an (N, 4) array of boxes.

    Areas are width * height; disjoint or degenerate pairs give 0.
    """
    box = np.asarray(box, dtype=np.float64)
    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)

    x1 = np.maximum(box[0], boxes[:, 0])
    y1 = np.maximum(box[1], boxes[:, 1])
    x2 = np.minimum(box[0] + box[2], boxes[:, 0] + boxes[:, 2])
    y2 = np.minimum(box[1] + box[3], boxes[:, 1] + boxes[:, 3])

    inter = np.clip(x2 - x1, 0, None) * np.clip(y2 - y1, 0, None)
    union = box[2] * box[3] + boxes[:, 2] * boxes[:, 3] - inter

    iou = np.zeros(len(boxes), dtype=np.float64)
    valid = union > 0
    iou[valid] = inter[valid] / union[valid]
    return iou


def non_max_suppression(
    boxes: np.ndarray,
    scores: np.ndarray,
    score_threshold: float,
    iou_threshold: float,
) -> List[int]:
    """
    Greedy NMS over [x, y, w, h] boxes.

    Candidates with score <= score_threshold are ignored. The rest are visited
    in descending score order (ties keep input order); each selected box
    suppresses remaining boxes whose IoU with it is greater than iou_threshold.

    Returns:
        Indices into boxes/scores, in selection order.
    """
    scores = np.asarray(scores)
    if len(scores) == 0:
        return []
    boxes = np.asarray(boxes).reshape(-1, 4)

    eligible = np.flatnonzero(scores > score_threshold)
    order = eligible[np.argsort(-scores[eligible], kind="stable")]

    selected: List[int] = []
    while order.size > 0:
        best = int(order[0])
        selected.append(best)
        rest = order[1:]
        if rest.size == 0:
            break
        overlaps = box_iou(boxes[best], boxes[rest])
        order = rest[overlaps <= iou_threshold]
    return selected


def decode_detections(
    output: np.ndarray,
    scale: ScaleInfo,
    conf_thresh: float,
    nms_thresh: float,
    num_classes: Optional[int] = None,
    num_anchors: Optional[int] = None,
    clip: bool = False,
    frame_index: int = 0,
    timestamp: Optional[float] = None,
) -> Detections:
    """
    Full decode: per-anchor floor, NMS, and export to corner boxes.

    Args:
        output: Raw model output, shape (1, 4 + K, N).
        scale: Geometry from preprocessing.
        conf_thresh: Score floor applied inside NMS.
        nms_thresh: IoU above which a lower-scoring box is suppressed.
        num_classes: Expected K; checked when given.
        num_anchors: Expected N; checked when given.
        clip: Clamp corners into the frame, [0, width - 1] x [0, height - 1].

    Raises:
        MalformedTensor: On a shape mismatch.
    """
    candidates = decode_candidates(output, scale, num_classes, num_anchors)
    if len(candidates) == 0:
        return Detections(frame_index=frame_index, timestamp=timestamp)

    keep = non_max_suppression(candidates.boxes, candidates.scores, conf_thresh, nms_thresh)

    out: List[DetectionBox] = []
    for i in keep:
        x, y, w, h = (int(v) for v in candidates.boxes[i])
        xmin, ymin, xmax, ymax = x, y, x + w, y + h
        if clip:
            right, bottom = int(scale.width) - 1, int(scale.height) - 1
            xmin, xmax = (min(max(v, 0), right) for v in (xmin, xmax))
            ymin, ymax = (min(max(v, 0), bottom) for v in (ymin, ymax))
        out.append(
            DetectionBox(
                xmin=xmin,
                ymin=ymin,
                xmax=xmax,
                ymax=ymax,
                class_id=int(candidates.class_ids[i]),
                confidence=float(candidates.scores[i]),
            )
        )

    logging.debug(
        f"Decoded frame {frame_index}: candidates={len(candidates)} survivors={len(out)}"
    )
    return Detections(boxes=tuple(out), frame_index=frame_index, timestamp=timestamp)
