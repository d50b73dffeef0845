from typing import List, Sequence, Tuple

import numpy as np

from photoscan.data_types import BoundingBox, Candidate, DetectionQuality

EPS = 1e-9


def order_corners(pts: np.ndarray) -> np.ndarray:
    """
    Return the 4 points as TL, TR, BR, BL (float32, shape (4, 2)).

    TL has the smallest x+y, BR the largest; TR has the largest x-y,
    BL the smallest. When the extremes collide (a quad rotated by ~45deg)
    the points are sorted clockwise around their centroid instead,
    starting from the smallest x+y.
    """
    p = np.asarray(pts, dtype=np.float32).reshape(4, 2)
    s = p.sum(axis=1)
    d = p[:, 0] - p[:, 1]
    idx = [int(np.argmin(s)), int(np.argmax(d)), int(np.argmax(s)), int(np.argmin(d))]
    if len(set(idx)) == 4:
        return p[idx].copy()

    center = p.mean(axis=0)
    # image y grows downwards, so ascending atan2 walks clockwise on screen
    angles = np.arctan2(p[:, 1] - center[1], p[:, 0] - center[0])
    cw = p[np.argsort(angles, kind="stable")]
    start = int(np.argmin(cw.sum(axis=1)))
    return np.roll(cw, -start, axis=0).copy()


def polygon_angles(pts: np.ndarray) -> List[float]:
    """Interior angle in degrees at each vertex of a closed polygon."""
    p = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    n = len(p)
    angles = []
    for i in range(n):
        p0, p1, p2 = p[i], p[(i + 1) % n], p[(i + 2) % n]
        v1 = p0 - p1
        v2 = p2 - p1
        n1 = float(np.hypot(*v1))
        n2 = float(np.hypot(*v2))
        cosang = float(np.dot(v1, v2)) / (n1 * n2 + EPS)
        angles.append(float(np.degrees(np.arccos(np.clip(cosang, -1.0, 1.0)))))
    return angles


def edge_lengths(quad: np.ndarray) -> Tuple[float, float, float, float]:
    """Lengths of the top, right, bottom and left edges of an ordered quad."""
    tl, tr, br, bl = np.asarray(quad, dtype=np.float64).reshape(4, 2)
    return (
        float(np.hypot(*(tr - tl))),
        float(np.hypot(*(br - tr))),
        float(np.hypot(*(br - bl))),
        float(np.hypot(*(bl - tl))),
    )


def box_iou(box_a: BoundingBox, box_b: BoundingBox) -> float:
    """
    Compute Intersection over Union of two boxes in xyxy format.
    """
    x1 = max(box_a.x1, box_b.x1)
    y1 = max(box_a.y1, box_b.y1)
    x2 = min(box_a.x2, box_b.x2)
    y2 = min(box_a.y2, box_b.y2)

    inter_w = max(0.0, x2 - x1)
    inter_h = max(0.0, y2 - y1)
    inter_area = inter_w * inter_h

    if inter_area <= 0.0:
        return 0.0

    union = box_a.area + box_b.area - inter_area
    if union <= EPS:
        return 0.0

    return float(inter_area / union)


def polygon_iou(a: np.ndarray, b: np.ndarray) -> float:
    """IoU of the axis-aligned boxes enclosing two polygons."""
    return box_iou(BoundingBox.from_points(a), BoundingBox.from_points(b))


def assign_quality(
    candidates: Sequence[Candidate],
    frame_shape: Tuple[int, ...],
    overlap_iou: float = 0.05,
    frame_margin_px: float = 2.0,
) -> None:
    """
    Tag candidates in place. Candidates must already be sorted by
    descending confidence: a candidate overlapping a stronger one is
    OVERLAPPING, one whose corners leave the frame is OUT_OF_FRAME.
    """
    h, w = frame_shape[:2]
    for i, cand in enumerate(candidates):
        c = cand.corners
        outside = (
            (c[:, 0] < -frame_margin_px).any()
            or (c[:, 1] < -frame_margin_px).any()
            or (c[:, 0] > w - 1 + frame_margin_px).any()
            or (c[:, 1] > h - 1 + frame_margin_px).any()
        )
        if outside:
            cand.quality = DetectionQuality.OUT_OF_FRAME
        elif any(polygon_iou(c, stronger.corners) > overlap_iou for stronger in candidates[:i]):
            cand.quality = DetectionQuality.OVERLAPPING
        else:
            cand.quality = DetectionQuality.PROPER
