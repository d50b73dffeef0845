import numpy as np
import pytest

from photoscan.config import ClassicalConfig
from photoscan.data_types import DetectionQuality, DetectorKind
from photoscan.detector import (
    ClassicalDetector,
    build_detector,
    canny_thresholds,
    detect_classical,
    score_candidate,
    texture_score,
)
from photoscan.preprocess import prepare

from conftest import quad_xyxy


def test_detects_synthetic_print(photo_scene):
    cands = ClassicalDetector().detect(photo_scene)

    assert len(cands) >= 1
    best = cands[0]
    assert best.source is DetectorKind.CLASSICAL
    assert best.quality is DetectionQuality.PROPER
    assert 0.0 <= best.confidence <= 1.0
    np.testing.assert_allclose(best.corners, quad_xyxy(170, 120, 470, 345), atol=4.0)


def test_corners_are_in_source_coordinates(make_scene):
    frame = make_scene(1280, 960, (340, 240, 940, 690))
    cands = ClassicalDetector().detect(frame)

    assert len(cands) >= 1
    np.testing.assert_allclose(cands[0].corners, quad_xyxy(340, 240, 940, 690), atol=8.0)


def test_blank_frame_has_no_candidates(blank_frame):
    assert ClassicalDetector().detect(blank_frame) == []


def test_empty_frame():
    assert ClassicalDetector().detect(np.zeros((0, 0, 3), np.uint8)) == []


def test_texture_filter_rejects_print(photo_scene):
    working, scale = prepare(photo_scene)
    strict = ClassicalConfig(min_texture=1e9)
    assert detect_classical(working, scale, photo_scene.shape, strict) == []


def test_aspect_filter_rejects_print(photo_scene):
    working, scale = prepare(photo_scene)
    square_only = ClassicalConfig(aspect_range=(0.9, 1.1))
    assert detect_classical(working, scale, photo_scene.shape, square_only) == []


def test_results_capped(photo_scene):
    working, scale = prepare(photo_scene)
    assert detect_classical(working, scale, photo_scene.shape, ClassicalConfig(max_results=0)) == []


def test_texture_score_flat_vs_textured(photo_scene):
    working, _ = prepare(photo_scene)
    inner = quad_xyxy(200, 150, 440, 315)
    assert texture_score(working, inner) > 30.0

    flat = np.full((100, 100), 128, np.uint8)
    assert texture_score(flat, quad_xyxy(10, 10, 90, 90)) == pytest.approx(0.0)


def test_texture_score_tiny_polygon():
    img = np.full((50, 50), 10, np.uint8)
    assert texture_score(img, quad_xyxy(10, 10, 12, 12), erode_px=3) == 0.0


def test_score_candidate_bounds():
    assert score_candidate(fill=1.0, aspect=1.33, texture=1000.0) == 1.0
    assert score_candidate(fill=0.0, aspect=10.0, texture=0.0) == 0.0
    mid = score_candidate(fill=0.8, aspect=1.5, texture=10.0)
    assert 0.0 < mid < 1.0


def test_score_candidate_prefers_target_aspect():
    assert score_candidate(0.9, 1.33, 15.0) > score_candidate(0.9, 1.7, 15.0)


def test_canny_thresholds_follow_median():
    img = np.full((10, 10), 100, np.uint8)
    assert canny_thresholds(img) == (66, 133)
    bright = np.full((10, 10), 250, np.uint8)
    assert canny_thresholds(bright)[1] == 255


def test_build_detector_requires_client_for_segmentation(config):
    assert isinstance(build_detector(DetectorKind.CLASSICAL, config), ClassicalDetector)
    with pytest.raises(ValueError):
        build_detector(DetectorKind.SEGMENTATION, config)
