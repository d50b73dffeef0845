# Drawing photo outlines and the detection status dot on frames

from typing import Optional, Sequence

import cv2
import numpy as np

from photoscan.data_types import Candidate, DetectionQuality

_GREEN = (0, 255, 0)
_RED = (0, 0, 255)
_YELLOW = (0, 255, 255)


def is_quality_good(candidates: Sequence[Candidate]) -> bool:
    """True when at least one candidate exists and none are flagged."""
    return bool(candidates) and all(c.quality is DetectionQuality.PROPER for c in candidates)


def draw_polygons(
    frame: np.ndarray,
    polygons: Sequence[np.ndarray],
    quality_good: Optional[bool] = None,
    labels: Optional[Sequence[str]] = None,
) -> np.ndarray:
    """
    Draw closed outlines with corner dots, and a status dot in the top-right
    corner (green = good framing, red = not yet).

    frame: numpy array (BGR), drawn on in place and returned
    polygons: (4, 2) corner arrays in frame pixels
    quality_good: None hides the status dot
    labels: optional text drawn next to each polygon's first corner
    """
    h, w = frame.shape[:2]

    # ----- Draw polygons -----
    for i, poly in enumerate(polygons):
        pts = np.asarray(poly, dtype=np.float32).reshape(-1, 2)
        if len(pts) < 4:
            continue
        pts[:, 0] = np.clip(pts[:, 0], 0, w - 1)
        pts[:, 1] = np.clip(pts[:, 1], 0, h - 1)
        ipts = np.round(pts).astype(np.int32)

        cv2.polylines(frame, [ipts.reshape(-1, 1, 2)], True, _GREEN, 2, cv2.LINE_AA)
        for x, y in ipts:
            cv2.circle(frame, (int(x), int(y)), 6, _GREEN, 2, cv2.LINE_AA)

        if labels is not None and i < len(labels):
            x0, y0 = ipts[0]
            cv2.putText(
                frame,
                labels[i],
                (int(x0), max(0, int(y0) - 8)),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.5,
                _YELLOW,
                1,
                cv2.LINE_AA,
            )

    # ----- Draw status dot -----
    if quality_good is not None:
        cv2.circle(frame, (w - 18, 18), 10, _GREEN if quality_good else _RED, -1, cv2.LINE_AA)

    return frame
