"""
Map source-frame points into display coordinates.

The capture may be rotated relative to the screen, and the preview shows
it inside a region of fixed aspect ratio centred in the viewport
(letterboxing). Points are rotated first, then scaled and offset.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

_ROTATIONS = (0, 90, 180, 270)


@dataclass(frozen=True)
class ViewportTransform:
    rotation: int
    frame_width: int     # source frame, before rotation
    frame_height: int
    scale_x: float
    scale_y: float
    offset_x: float
    offset_y: float

    def rotate_points(self, points: np.ndarray) -> np.ndarray:
        """Rotate source points clockwise by self.rotation degrees."""
        p = np.asarray(points, dtype=np.float32).reshape(-1, 2)
        x, y = p[:, 0], p[:, 1]
        w, h = float(self.frame_width), float(self.frame_height)
        if self.rotation == 90:
            return np.stack([h - y, x], axis=1)
        if self.rotation == 180:
            return np.stack([w - x, h - y], axis=1)
        if self.rotation == 270:
            return np.stack([y, w - x], axis=1)
        return p.copy()

    def map_points(self, points: np.ndarray) -> np.ndarray:
        r = self.rotate_points(points)
        out = np.empty_like(r)
        out[:, 0] = r[:, 0] * self.scale_x + self.offset_x
        out[:, 1] = r[:, 1] * self.scale_y + self.offset_y
        return out


def rotated_size(rotation: int, frame_size: Tuple[int, int]) -> Tuple[int, int]:
    w, h = frame_size
    return (h, w) if rotation in (90, 270) else (w, h)


def compute_transform(
    rotation: int,
    frame_size: Tuple[int, int],
    viewport_size: Tuple[int, int],
    target_aspect: Optional[float] = None,
) -> ViewportTransform:
    """
    frame_size and viewport_size are (width, height). target_aspect is the
    width/height ratio of the visible preview region; it defaults to the
    rotated frame's own aspect. The frame is scaled uniformly to fit inside
    that region and centred in the viewport.
    """
    if rotation not in _ROTATIONS:
        raise ValueError(f"rotation must be one of {_ROTATIONS}, got {rotation!r}")
    fw, fh = frame_size
    vw, vh = viewport_size
    if fw <= 0 or fh <= 0 or vw <= 0 or vh <= 0:
        raise ValueError(f"degenerate sizes: frame={frame_size}, viewport={viewport_size}")

    rw, rh = rotated_size(rotation, frame_size)
    aspect = target_aspect if target_aspect and target_aspect > 0 else rw / float(rh)

    if vw / float(vh) > aspect:
        content_h = float(vh)
        content_w = vh * aspect
    else:
        content_w = float(vw)
        content_h = vw / aspect

    # one scale for both axes: the frame keeps its shape inside the region
    s = min(content_w / rw, content_h / rh)
    return ViewportTransform(
        rotation=rotation,
        frame_width=fw,
        frame_height=fh,
        scale_x=s,
        scale_y=s,
        offset_x=(vw - rw * s) / 2.0,
        offset_y=(vh - rh * s) / 2.0,
    )


def map_polygons(
    polygons: Sequence[np.ndarray],
    rotation: int,
    frame_size: Tuple[int, int],
    viewport_size: Tuple[int, int],
    target_aspect: Optional[float] = None,
) -> List[np.ndarray]:
    """Display-space copies of polygons; empty when any size is degenerate."""
    if min(frame_size) <= 0 or min(viewport_size) <= 0:
        return []
    t = compute_transform(rotation, frame_size, viewport_size, target_aspect)
    return [t.map_points(p) for p in polygons]
