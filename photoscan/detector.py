import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

import cv2
import numpy as np

from photoscan.config import ClassicalConfig, PipelineConfig, PreprocessConfig, QualityConfig, SegmentationConfig
from photoscan.data_types import Candidate, DetectorKind
from photoscan.geometry import EPS, assign_quality, order_corners, polygon_angles
from photoscan.integration_clients import BaseSegmentationClient
from photoscan.mask_decoder import decode
from photoscan.preprocess import prepare

logger = logging.getLogger(__name__)


class BaseDetector(ABC):
    """
    Abstract interface for all detectors.
    """

    kind: DetectorKind

    @abstractmethod
    def detect(self, frame: np.ndarray) -> List[Candidate]:
        """
        Find photo candidates in a source frame.
        Must return candidates sorted by descending confidence,
        corners in source-frame pixels.
        """
        raise NotImplementedError


# ----------------------------------------------------------------------------- #
# Classical path                                                                #
# ----------------------------------------------------------------------------- #

def score_candidate(fill: float, aspect: float, texture: float, target_aspect: float = 1.33) -> float:
    """
    Confidence in [0, 1]: rewards a full rectangle, a near-4:3 aspect and
    internal detail.
    """
    conf = (
        0.35 * (fill / 0.9)
        + 0.35 * (1.0 - abs(aspect - target_aspect) / target_aspect)
        + 0.30 * (texture / 30.0)
    )
    return float(min(1.0, max(0.0, conf)))


def canny_thresholds(image: np.ndarray, low_ratio: float = 0.66, high_ratio: float = 1.33) -> Tuple[int, int]:
    """Edge thresholds that follow the median brightness of the image."""
    v = float(np.median(image))
    low = int(max(0.0, low_ratio * v))
    high = int(min(255.0, high_ratio * v))
    return low, high


def texture_score(image: np.ndarray, polygon: np.ndarray, erode_px: int = 3) -> float:
    """
    Variance of the Laplacian inside the polygon. The mask is eroded so the
    polygon's own outline does not count as texture.
    """
    mask = np.zeros(image.shape[:2], np.uint8)
    cv2.fillPoly(mask, [np.asarray(polygon).reshape(-1, 1, 2).astype(np.int32)], 255)
    if erode_px > 0:
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (2 * erode_px + 1, 2 * erode_px + 1))
        mask = cv2.erode(mask, kernel)
    if cv2.countNonZero(mask) == 0:
        return 0.0
    lap = cv2.Laplacian(image, cv2.CV_64F)
    _, stddev = cv2.meanStdDev(lap, mask=mask)
    sd = float(stddev[0][0])
    return sd * sd


def _evaluate_contour(
    cnt: np.ndarray,
    image: np.ndarray,
    frame_area: float,
    config: ClassicalConfig,
) -> Optional[Tuple[np.ndarray, float]]:
    """Run the rectangle filters on one contour; return (box corners, confidence)."""
    area = cv2.contourArea(cnt)
    if area < frame_area * config.min_area_ratio or area > frame_area * config.max_area_ratio:
        return None

    peri = cv2.arcLength(cnt, True)
    approx = cv2.approxPolyDP(cnt, config.approx_epsilon_ratio * peri, True)
    if len(approx) != 4 or not cv2.isContourConvex(approx):
        return None

    angles = polygon_angles(approx.reshape(4, 2))
    if any(abs(a - 90.0) > config.angle_tolerance for a in angles):
        return None

    rect = cv2.minAreaRect(cnt)
    rw, rh = rect[1]
    if rw <= 0 or rh <= 0:
        return None
    aspect = max(rw, rh) / min(rw, rh)
    a_min, a_max = config.aspect_range
    if aspect < a_min or aspect > a_max:
        return None

    fill = area / (rw * rh + EPS)
    if fill < config.min_fill_ratio:
        return None

    tex = texture_score(image, approx, config.texture_erode_px)
    if tex < config.min_texture:
        return None

    conf = score_candidate(fill, aspect, tex, config.target_aspect)
    return cv2.boxPoints(rect), conf


def detect_classical(
    image: np.ndarray,
    scale: float = 1.0,
    source_shape: Optional[Tuple[int, ...]] = None,
    config: Optional[ClassicalConfig] = None,
    quality: Optional[QualityConfig] = None,
) -> List[Candidate]:
    """
    Find photo-like quadrilaterals in a prepared (grayscale, enhanced) image.

    scale is the factor returned by prepare(); corners are divided by it so
    they land in source-frame coordinates. Results are sorted by descending
    confidence and capped at config.max_results.
    """
    config = config or ClassicalConfig()
    quality = quality or QualityConfig()
    h, w = image.shape[:2]
    if h == 0 or w == 0:
        return []
    if source_shape is None:
        source_shape = (int(round(h / scale)), int(round(w / scale)))
    inv_scale = 1.0 / scale if scale > 0 else 1.0

    try:
        low, high = canny_thresholds(image, config.canny_low_ratio, config.canny_high_ratio)
        edges = cv2.Canny(image, low, high)
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (config.close_ksize, config.close_ksize))
        closed = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel)
        contours, _ = cv2.findContours(closed, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    except cv2.error as e:
        logger.warning("Edge/contour extraction failed: %s", e)
        return []

    frame_area = float(h * w)
    results: List[Candidate] = []

    # biggest shapes first
    for cnt in sorted(contours, key=cv2.contourArea, reverse=True):
        if len(results) >= config.max_results:
            break
        try:
            found = _evaluate_contour(cnt, image, frame_area, config)
        except cv2.error as e:
            logger.warning("Skipping contour: %s", e)
            continue
        if found is None:
            continue

        box, conf = found
        corners = (order_corners(box) * inv_scale).astype(np.float32)
        results.append(Candidate(corners=corners, confidence=conf, source=DetectorKind.CLASSICAL))

    results.sort(key=lambda c: c.confidence, reverse=True)
    assign_quality(results, source_shape, quality.overlap_iou, quality.frame_margin_px)
    logger.debug("Classical pass: %d contours, %d candidates", len(contours), len(results))
    return results


class ClassicalDetector(BaseDetector):
    """
    Edge/contour rectangle finder: prepare() then detect_classical().
    """

    kind = DetectorKind.CLASSICAL

    def __init__(
        self,
        config: Optional[ClassicalConfig] = None,
        preprocess: Optional[PreprocessConfig] = None,
        quality: Optional[QualityConfig] = None,
    ):
        self.config = config or ClassicalConfig()
        self.preprocess = preprocess or PreprocessConfig()
        self.quality = quality or QualityConfig()

    def detect(self, frame: np.ndarray) -> List[Candidate]:
        if frame.size == 0:
            return []
        working, scale = prepare(frame, self.preprocess)
        return detect_classical(working, scale, frame.shape, self.config, self.quality)


# ----------------------------------------------------------------------------- #
# Neural path                                                                   #
# ----------------------------------------------------------------------------- #

class SegmentationDetector(BaseDetector):
    """
    YOLO-seg based detector.

    Behavior:
      - Runs the inference client on the source frame.
      - Decodes each detection's mask into a rotated rectangle.
      - Any inference failure counts as "no candidates this frame".
    """

    kind = DetectorKind.SEGMENTATION

    def __init__(
        self,
        client: BaseSegmentationClient,
        config: Optional[SegmentationConfig] = None,
        quality: Optional[QualityConfig] = None,
    ):
        self.client = client
        self.config = config or SegmentationConfig()
        self.quality = quality or QualityConfig()

    def detect(self, frame: np.ndarray) -> List[Candidate]:
        if frame.size == 0:
            return []
        try:
            output = self.client.infer(frame)
        except Exception as e:
            logger.warning("Segmentation inference failed: %s", e)
            return []
        return decode(frame, output.prototypes, output.detections, self.config, self.quality)


def build_detector(
    kind: DetectorKind,
    config: PipelineConfig,
    client: Optional[BaseSegmentationClient] = None,
) -> BaseDetector:
    if kind is DetectorKind.CLASSICAL:
        return ClassicalDetector(config.classical, config.preprocess, config.quality)
    if client is None:
        raise ValueError("the segmentation detector needs an inference client")
    return SegmentationDetector(client, config.segmentation, config.quality)
