"""
Turn YOLO-seg style outputs into rotated photo rectangles.

Each detection carries K mask coefficients; the network also emits one
prototype tensor (H x W x K) per frame. A detection's mask is the sigmoid of
the per-cell dot product between the prototypes and its coefficients. The
largest blob of that mask is reduced to its minimum-area rotated rectangle.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from photoscan.config import QualityConfig, SegmentationConfig
from photoscan.data_types import Candidate, DetectionRaw, DetectorKind
from photoscan.geometry import assign_quality, order_corners

logger = logging.getLogger(__name__)


def sigmoid(x: np.ndarray) -> np.ndarray:
    # float32 exp overflows past ~88; the output is saturated well before 50
    return 1.0 / (1.0 + np.exp(-np.clip(x, -50.0, 50.0)))


def mask_probabilities(prototypes: np.ndarray, coefficients: np.ndarray) -> np.ndarray:
    """
    Low-resolution probability raster (H, W) for one detection.
    Only the first min(K, len(coefficients)) basis channels are used.
    """
    proto = np.asarray(prototypes, dtype=np.float32)
    coeffs = np.asarray(coefficients, dtype=np.float32).ravel()
    k = min(proto.shape[2], coeffs.shape[0])
    logits = np.tensordot(proto[:, :, :k], coeffs[:k], axes=([2], [0]))
    return sigmoid(logits).astype(np.float32)


def binary_mask(
    probabilities: np.ndarray,
    frame_size: Tuple[int, int],
    config: SegmentationConfig,
    box: Optional[Tuple[float, float, float, float]] = None,
) -> np.ndarray:
    """
    Upscale a probability raster to network resolution, binarize, despeckle
    and resize to frame_size (width, height). Returns a uint8 0/255 mask.
    box, when given, is a normalized (x1, y1, x2, y2) region outside which
    the mask is cleared.
    """
    size = config.input_size
    scaled = cv2.resize(probabilities, (size, size), interpolation=cv2.INTER_LINEAR)
    _, thresh = cv2.threshold(scaled, config.mask_threshold, 255.0, cv2.THRESH_BINARY)
    mask = thresh.astype(np.uint8)
    if config.median_ksize > 1:
        mask = cv2.medianBlur(mask, config.median_ksize)

    if box is not None:
        x1, y1, x2, y2 = [int(round(v * size)) for v in box]
        x1, y1 = max(0, x1), max(0, y1)
        x2, y2 = min(size, x2), min(size, y2)
        if x2 > x1 and y2 > y1:
            cropped = np.zeros_like(mask)
            cropped[y1:y2, x1:x2] = mask[y1:y2, x1:x2]
            mask = cropped

    w, h = frame_size
    return cv2.resize(mask, (w, h), interpolation=cv2.INTER_NEAREST)


def polygon_from_mask(mask: np.ndarray, min_area: float) -> Optional[np.ndarray]:
    """Ordered rotated-rectangle corners of the largest blob, or None."""
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        return None
    largest = max(contours, key=cv2.contourArea)
    if cv2.contourArea(largest) < min_area:
        return None
    rect = cv2.minAreaRect(largest)
    if rect[1][0] <= 0 or rect[1][1] <= 0:
        return None
    return order_corners(cv2.boxPoints(rect))


def decode(
    frame: Union[np.ndarray, Sequence[int]],
    prototypes: Optional[np.ndarray],
    detections: Sequence[DetectionRaw],
    config: Optional[SegmentationConfig] = None,
    quality: Optional[QualityConfig] = None,
) -> List[Candidate]:
    """
    Decode up to config.max_results candidates from raw detections.

    frame: the source frame or its shape (H, W[, C]); only the size is used.
    prototypes: (H, W, K) mask basis shared by all detections.
    """
    config = config or SegmentationConfig()
    quality = quality or QualityConfig()
    shape = frame.shape if isinstance(frame, np.ndarray) else tuple(frame)
    h, w = int(shape[0]), int(shape[1])

    results: List[Candidate] = []
    if not detections or prototypes is None or h <= 0 or w <= 0:
        return results
    if prototypes.ndim != 3:
        logger.warning("Prototype tensor has shape %s, expected (H, W, K)", prototypes.shape)
        return results

    for det in sorted(detections, key=lambda d: d.score, reverse=True):
        if len(results) >= config.max_results:
            break
        if det.score <= config.confidence_threshold:
            continue
        if det.coefficients is None or len(det.coefficients) == 0:
            continue

        try:
            probs = mask_probabilities(prototypes, det.coefficients)
            box = None
            if config.crop_to_box and det.box is not None and det.box.area > 0:
                box = (det.box.x1, det.box.y1, det.box.x2, det.box.y2)
            mask = binary_mask(probs, (w, h), config, box=box)
            corners = polygon_from_mask(mask, config.min_contour_area)
        except (cv2.error, MemoryError) as e:
            logger.warning("Skipping detection (score %.3f): %s", det.score, e)
            continue

        if corners is None:
            logger.debug("Detection with score %.3f has no usable mask", det.score)
            continue

        results.append(
            Candidate(
                corners=corners,
                confidence=float(det.score),
                source=DetectorKind.SEGMENTATION,
            )
        )

    assign_quality(results, (h, w), quality.overlap_iou, quality.frame_margin_px)
    return results
