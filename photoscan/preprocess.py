from typing import Optional, Tuple

import cv2
import numpy as np

from photoscan.config import PreprocessConfig


def to_gray(frame: np.ndarray) -> np.ndarray:
    """Grayscale view of a BGR, BGRA or single-channel frame."""
    if frame.ndim == 2:
        return frame
    if frame.ndim != 3:
        raise ValueError(f"expected a 2D or 3D image array, got shape {frame.shape}")
    channels = frame.shape[2]
    if channels == 1:
        return frame[:, :, 0]
    if channels == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)


def prepare(frame: np.ndarray, config: Optional[PreprocessConfig] = None) -> Tuple[np.ndarray, float]:
    """
    Normalize a frame for edge analysis.

    Returns (working_image, scale) where working_image is a contrast-enhanced,
    lightly blurred grayscale image whose longer side is at most
    config.processing_width, and scale = working size / source size.
    Divide working-image coordinates by scale to get source coordinates.
    """
    config = config or PreprocessConfig()
    gray = to_gray(frame)
    if gray.dtype != np.uint8:
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)

    h, w = gray.shape[:2]
    scale = 1.0
    longer = max(h, w)
    if longer > config.processing_width:
        scale = config.processing_width / float(longer)
        size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
        gray = cv2.resize(gray, size, interpolation=cv2.INTER_AREA)

    tiles = (config.clahe_tile_grid, config.clahe_tile_grid)
    clahe = cv2.createCLAHE(clipLimit=config.clahe_clip_limit, tileGridSize=tiles)
    enhanced = clahe.apply(gray)

    k = config.blur_ksize
    blurred = cv2.GaussianBlur(enhanced, (k, k), 0) if k > 1 else enhanced
    return blurred, scale
