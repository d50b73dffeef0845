import logging
from typing import List, Sequence, Tuple

import cv2
import numpy as np

from photoscan.geometry import edge_lengths, order_corners

logger = logging.getLogger(__name__)


def target_size(quad: np.ndarray) -> Tuple[int, int]:
    """
    (width, height) of the upright crop for an ordered quad: the longer of
    the top/bottom edges by the longer of the left/right edges.
    """
    top, right, bottom, left = edge_lengths(quad)
    width = max(1, int(round(max(top, bottom))))
    height = max(1, int(round(max(left, right))))
    return width, height


def rectify(
    image: np.ndarray,
    quad: np.ndarray,
    *,
    downscale: int = 4,
    mirror: bool = False,
    border_value: Tuple[int, int, int] = (255, 255, 255),
) -> np.ndarray:
    """
    Perspective-warp the quad region of image into an upright rectangle.

    Args:
        image: source image (any channel count).
        quad: 4x2 corners in image pixels, any order.
        downscale: integer divisor applied to the warped size (1 keeps it).
        mirror: flip the result horizontally (for mirrored previews).
        border_value: fill for samples that fall outside the image.

    Returns:
        The rectified image.
    """
    q = order_corners(quad)
    dst_w, dst_h = target_size(q)

    dst = np.array([[0, 0],
                    [dst_w - 1, 0],
                    [dst_w - 1, dst_h - 1],
                    [0, dst_h - 1]], dtype=np.float32)
    Hmat = cv2.getPerspectiveTransform(q, dst)
    rectified = cv2.warpPerspective(
        image,
        Hmat,
        (dst_w, dst_h),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border_value,
    )

    if downscale > 1:
        small = (max(1, dst_w // downscale), max(1, dst_h // downscale))
        rectified = cv2.resize(rectified, small, interpolation=cv2.INTER_AREA)

    if mirror:
        rectified = cv2.flip(rectified, 1)
    return rectified


def rectify_all(
    image: np.ndarray,
    quads: Sequence[np.ndarray],
    *,
    downscale: int = 4,
    mirror: bool = False,
    border_value: Tuple[int, int, int] = (255, 255, 255),
) -> List[np.ndarray]:
    """Crops for every quad; a crop that cannot be produced is skipped."""
    crops = []
    for quad in quads:
        try:
            crops.append(rectify(image, quad, downscale=downscale, mirror=mirror, border_value=border_value))
        except (cv2.error, MemoryError) as e:
            logger.warning("Crop failed: %s", e)
    return crops
