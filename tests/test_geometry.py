import itertools

import numpy as np
import pytest

from photoscan.data_types import BoundingBox, Candidate, DetectionQuality, DetectorKind
from photoscan.geometry import (
    assign_quality,
    box_iou,
    edge_lengths,
    order_corners,
    polygon_angles,
    polygon_iou,
)

from conftest import quad_xyxy


def _cand(corners, conf):
    return Candidate(corners=np.asarray(corners, np.float32), confidence=conf, source=DetectorKind.CLASSICAL)


def test_order_corners_any_permutation():
    expected = quad_xyxy(10, 20, 110, 80)
    for perm in itertools.permutations(range(4)):
        got = order_corners(expected[list(perm)])
        np.testing.assert_allclose(got, expected)


def test_order_corners_tilted_quad():
    quad = np.array([[12, 5], [100, 18], [92, 80], [3, 66]], np.float32)
    got = order_corners(quad[[2, 0, 3, 1]])
    np.testing.assert_allclose(got, quad)


def test_order_corners_diamond_falls_back_to_clockwise():
    diamond = np.array([[0, 50], [50, 100], [100, 50], [50, 0]], np.float32)
    got = order_corners(diamond)
    sums = got.sum(axis=1)
    assert sums[0] == sums.min()
    # clockwise on screen: top, right, bottom, left
    np.testing.assert_allclose(got, [[50, 0], [100, 50], [50, 100], [0, 50]])
    assert len({tuple(p) for p in got.tolist()}) == 4


def test_order_corners_returns_float32_copy():
    src = quad_xyxy(0, 0, 10, 10)
    got = order_corners(src)
    assert got.dtype == np.float32
    got[0, 0] = 99
    assert src[0, 0] == 0


def test_polygon_angles_rectangle():
    assert polygon_angles(quad_xyxy(0, 0, 40, 30)) == pytest.approx([90.0] * 4)


def test_edge_lengths():
    top, right, bottom, left = edge_lengths(quad_xyxy(0, 0, 40, 30))
    assert (top, right, bottom, left) == pytest.approx((40, 30, 40, 30))


def test_box_iou_no_overlap():
    assert box_iou(BoundingBox(0, 0, 10, 10), BoundingBox(20, 20, 30, 30)) == 0.0


def test_box_iou_identity_and_symmetry():
    a = BoundingBox(0, 0, 10, 10)
    b = BoundingBox(5, 5, 15, 15)
    assert box_iou(a, a) == pytest.approx(1.0)
    assert box_iou(a, b) == pytest.approx(box_iou(b, a))
    assert box_iou(a, b) == pytest.approx(25 / 175)


def test_box_iou_degenerate_box():
    assert box_iou(BoundingBox(0, 0, 0, 0), BoundingBox(0, 0, 0, 0)) == 0.0


def test_polygon_iou_uses_enclosing_boxes():
    a = quad_xyxy(0, 0, 10, 10)
    assert polygon_iou(a, a[::-1]) == pytest.approx(1.0)


def test_assign_quality_proper_overlapping_out_of_frame():
    strong = _cand(quad_xyxy(10, 10, 110, 110), 0.9)
    overlapping = _cand(quad_xyxy(60, 60, 160, 160), 0.8)
    outside = _cand(quad_xyxy(500, 300, 700, 400), 0.7)
    separate = _cand(quad_xyxy(300, 10, 400, 100), 0.6)

    cands = [strong, overlapping, outside, separate]
    assign_quality(cands, (480, 640, 3))

    assert strong.quality is DetectionQuality.PROPER
    assert overlapping.quality is DetectionQuality.OVERLAPPING
    assert outside.quality is DetectionQuality.OUT_OF_FRAME
    assert separate.quality is DetectionQuality.PROPER


def test_assign_quality_margin_allows_edge_corners():
    cand = _cand(quad_xyxy(-1.5, 0, 640.5, 479), 0.9)
    assign_quality([cand], (480, 640), frame_margin_px=2.0)
    assert cand.quality is DetectionQuality.PROPER
