"""
Tests for detector output decoding and non-max suppression.
"""

import numpy as np
import pytest

from conftest import make_output
from inference.decode import (
    CANDIDATE_SCORE_FLOOR,
    box_iou,
    decode_candidates,
    decode_detections,
    expected_anchor_count,
    non_max_suppression,
    round_half_away,
)
from models.detection import DetectionBox, ScaleInfo
from models.errors import MalformedTensor


HD = ScaleInfo(width=1280, height=720, scaled_size=640)
IDENTITY = ScaleInfo(width=640, height=640, scaled_size=640)


class TestRounding:
    def test_half_away_from_zero(self):
        values = np.array([0.5, 1.5, 2.5, -0.5, -2.5, 2.4, -2.6])
        assert list(round_half_away(values)) == [1, 2, 3, -1, -3, 2, -3]


class TestExpectedAnchorCount:
    def test_reference_sizes(self):
        assert expected_anchor_count(640) == 8400
        assert expected_anchor_count(320) == 2100


class TestDecodeCandidates:
    def test_hd_frame_scenario(self):
        output = make_output([(320, 320, 100, 80, {5: 0.9, 1: 0.3})])
        candidates = decode_candidates(output, HD, num_classes=10)
        assert len(candidates) == 1
        assert list(candidates.boxes[0]) == [540, 560, 200, 160]
        assert candidates.class_ids[0] == 5
        assert candidates.scores[0] == pytest.approx(0.9)
        assert candidates.anchor_indices[0] == 0

    def test_floor_is_strict(self):
        output = make_output([
            (10, 10, 5, 5, {0: CANDIDATE_SCORE_FLOOR}),
            (20, 20, 5, 5, {0: 0.2500001}),
        ])
        candidates = decode_candidates(output, IDENTITY)
        assert list(candidates.anchor_indices) == [1]

    def test_no_anchor_at_or_below_floor_survives(self):
        rng = np.random.default_rng(0)
        for _ in range(20):
            num_classes, anchors = 6, 300
            output = np.zeros((1, 4 + num_classes, anchors), dtype=np.float32)
            output[0, :2] = rng.uniform(0, 640, size=(2, anchors))
            output[0, 2:4] = rng.uniform(1, 200, size=(2, anchors))
            output[0, 4:] = rng.uniform(0, 0.5, size=(num_classes, anchors))

            candidates = decode_candidates(output, IDENTITY, num_classes=num_classes)
            max_scores = output[0, 4:].max(axis=0)

            expected = set(np.flatnonzero(max_scores > 0.25))
            assert set(candidates.anchor_indices.tolist()) == expected
            assert np.all(candidates.scores > 0.25)

    def test_argmax_picks_first_of_equal_scores(self):
        output = make_output([(50, 50, 10, 10, {3: 0.7, 7: 0.7})])
        candidates = decode_candidates(output, IDENTITY)
        assert candidates.class_ids[0] == 3

    def test_coordinate_rescale_square_frame(self):
        # 960x960 frame, 640 input: both axes scale by 1.5
        scale = ScaleInfo(width=960, height=960, scaled_size=640)
        cx, cy, w, h = 101, 51, 33, 21
        output = make_output([(cx, cy, w, h, {0: 0.8})])
        box = decode_candidates(output, scale).boxes[0]
        assert list(box) == [
            round_half_away((cx - w / 2) * 960 / 640),
            round_half_away((cy - h / 2) * 960 / 640),
            round_half_away(w * 960 / 640),
            round_half_away(h * 960 / 640),
        ]
        assert list(box) == [127, 61, 50, 32]

    def test_coordinate_rescale_stretched_frame(self):
        # Stretched input scales x by W/S and y by H/S independently
        scale = ScaleInfo(width=1280, height=720, scaled_size=640, letterboxed=False)
        output = make_output([(320, 320, 100, 80, {0: 0.8})])
        box = decode_candidates(output, scale).boxes[0]
        assert list(box) == [540, 315, 200, 90]

    @pytest.mark.parametrize("shape", [(10, 8400), (2, 14, 8400), (1, 4, 8400), (1, 14)])
    def test_malformed_shapes(self, shape):
        with pytest.raises(MalformedTensor):
            decode_candidates(np.zeros(shape, dtype=np.float32), IDENTITY)

    def test_class_count_mismatch(self):
        output = np.zeros((1, 4 + 80, 16), dtype=np.float32)
        with pytest.raises(MalformedTensor, match="expected 14"):
            decode_candidates(output, IDENTITY, num_classes=10)

    def test_anchor_count_mismatch(self):
        output = np.zeros((1, 14, 16), dtype=np.float32)
        with pytest.raises(MalformedTensor, match="anchors"):
            decode_candidates(output, IDENTITY, num_classes=10, num_anchors=8400)


class TestBoxIou:
    def test_identical(self):
        assert box_iou([0, 0, 10, 10], [[0, 0, 10, 10]])[0] == pytest.approx(1.0)

    def test_disjoint_and_touching(self):
        ious = box_iou([0, 0, 10, 10], [[20, 20, 5, 5], [10, 0, 10, 10]])
        assert list(ious) == [0.0, 0.0]

    def test_partial_overlap(self):
        # intersection 50, union 150
        assert box_iou([0, 0, 10, 10], [[5, 0, 10, 10]])[0] == pytest.approx(1 / 3)

    def test_degenerate_boxes(self):
        assert box_iou([0, 0, 0, 0], [[0, 0, 0, 0]])[0] == 0.0


class TestNonMaxSuppression:
    def test_overlapping_pair_keeps_higher_score(self):
        boxes = np.array([[0, 0, 100, 100], [0, 0, 100, 90]])
        scores = np.array([0.9, 0.6])
        assert box_iou(boxes[0], boxes[1:])[0] == pytest.approx(0.9)
        assert non_max_suppression(boxes, scores, 0.5, 0.5) == [0]

    def test_order_is_descending_score(self):
        boxes = np.array([[0, 0, 10, 10], [100, 100, 10, 10], [200, 200, 10, 10]])
        scores = np.array([0.6, 0.95, 0.8])
        assert non_max_suppression(boxes, scores, 0.5, 0.5) == [1, 2, 0]

    def test_score_floor(self):
        boxes = np.array([[0, 0, 10, 10], [100, 100, 10, 10]])
        scores = np.array([0.5, 0.51])
        assert non_max_suppression(boxes, scores, 0.5, 0.5) == [1]

    def test_iou_equal_to_threshold_is_kept(self):
        boxes = np.array([[0, 0, 10, 10], [5, 0, 10, 10]])
        scores = np.array([0.9, 0.8])
        iou = box_iou(boxes[0], boxes[1:])[0]
        assert non_max_suppression(boxes, scores, 0.0, iou) == [0, 1]

    def test_ties_keep_input_order(self):
        boxes = np.array([[0, 0, 10, 10], [50, 50, 10, 10]])
        scores = np.array([0.7, 0.7])
        assert non_max_suppression(boxes, scores, 0.5, 0.5) == [0, 1]

    def test_suppressed_box_does_not_suppress(self):
        # B overlaps A and C; A removes B, so C survives
        boxes = np.array([[0, 0, 10, 10], [4, 0, 10, 10], [8, 0, 10, 10]])
        scores = np.array([0.9, 0.8, 0.7])
        assert non_max_suppression(boxes, scores, 0.0, 0.3) == [0, 2]

    def test_empty(self):
        assert non_max_suppression(np.zeros((0, 4)), np.zeros((0,)), 0.5, 0.5) == []

    def test_idempotent(self):
        rng = np.random.default_rng(42)
        for _ in range(25):
            n = 60
            xy = rng.integers(0, 300, size=(n, 2))
            wh = rng.integers(5, 120, size=(n, 2))
            boxes = np.hstack([xy, wh])
            scores = rng.uniform(0.26, 1.0, size=n).astype(np.float32)

            keep = non_max_suppression(boxes, scores, 0.4, 0.45)
            again = non_max_suppression(boxes[keep], scores[keep], 0.4, 0.45)
            assert again == list(range(len(keep)))


class TestDecodeDetections:
    def test_hd_frame_scenario(self):
        output = make_output([(320, 320, 100, 80, {5: 0.9})])
        dets = decode_detections(output, HD, conf_thresh=0.5, nms_thresh=0.5, num_classes=10)
        assert len(dets) == 1
        box = dets[0]
        assert box.as_tuple() == (540, 560, 740, 720)
        assert box.class_id == 5
        assert box.confidence == pytest.approx(0.9)

    def test_overlapping_candidates(self):
        output = make_output([
            (50, 50, 100, 100, {0: 0.9}),
            (50, 45, 100, 90, {0: 0.6}),
        ])
        dets = decode_detections(output, IDENTITY, conf_thresh=0.5, nms_thresh=0.5)
        assert [b.confidence for b in dets] == [pytest.approx(0.9)]

    def test_empty_tensor_gives_empty_detections(self):
        output = make_output([], num_anchors=8400)
        dets = decode_detections(
            output, HD, conf_thresh=0.5, nms_thresh=0.5, num_classes=10, num_anchors=8400,
            frame_index=4, timestamp=1.5,
        )
        assert len(dets) == 0
        assert dets.frame_index == 4
        assert dets.timestamp == 1.5

    def test_both_floors_apply(self):
        # passes the fixed 0.25 floor but not the caller's conf_thresh
        output = make_output([(50, 50, 10, 10, {0: 0.4})])
        assert len(decode_detections(output, IDENTITY, conf_thresh=0.5, nms_thresh=0.5)) == 0
        # caller threshold below the fixed floor does not let weaker anchors in
        output = make_output([(50, 50, 10, 10, {0: 0.2})])
        assert len(decode_detections(output, IDENTITY, conf_thresh=0.1, nms_thresh=0.5)) == 0

    def test_corners_are_ordered(self):
        output = make_output([
            (100, 100, 40, 20, {1: 0.8}),
            (400, 300, 10, 60, {2: 0.7}),
        ])
        for box in decode_detections(output, HD, conf_thresh=0.5, nms_thresh=0.5):
            assert box.xmin <= box.xmax
            assert box.ymin <= box.ymax

    def test_negative_size_gives_same_box(self):
        flipped = make_output([(100, 100, -40, -20, {3: 0.8})])
        upright = make_output([(100, 100, 40, 20, {3: 0.8})])
        candidates = decode_candidates(flipped, IDENTITY)
        assert list(candidates.boxes[0]) == [80, 90, 40, 20]

        box = decode_detections(flipped, IDENTITY, conf_thresh=0.5, nms_thresh=0.5)[0]
        assert box.as_tuple() == (80, 90, 120, 110)
        assert box == decode_detections(upright, IDENTITY, conf_thresh=0.5, nms_thresh=0.5)[0]

    def test_clip_stays_inside_frame(self):
        output = make_output([(320, 320, 640, 640, {0: 0.9})])
        box = decode_detections(output, HD, conf_thresh=0.5, nms_thresh=0.5, clip=True)[0]
        assert box.as_tuple() == (0, 0, 1279, 719)
        assert 0 <= box.xmax < HD.width
        assert 0 <= box.ymax < HD.height

    def test_no_clipping_by_default(self):
        output = make_output([(630, 630, 40, 40, {0: 0.8})])
        box = decode_detections(output, HD, conf_thresh=0.5, nms_thresh=0.5)[0]
        assert box.xmax == 1300
        assert box.ymax == 1300

    def test_clip(self):
        output = make_output([(630, 630, 40, 40, {0: 0.8}), (5, 5, 20, 20, {0: 0.7})])
        boxes = decode_detections(output, HD, conf_thresh=0.5, nms_thresh=0.5, clip=True)
        assert boxes[0] == DetectionBox(1220, 719, 1279, 719, class_id=0, confidence=boxes[0].confidence)
        assert boxes[1].xmin == 0
        assert boxes[1].ymin == 0

    def test_malformed_propagates(self):
        with pytest.raises(MalformedTensor):
            decode_detections(np.zeros((1, 14, 10), dtype=np.float32), HD, 0.5, 0.5, num_classes=3)
