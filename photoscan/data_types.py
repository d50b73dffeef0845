# Core data structures (boxes, candidates, raw network rows, tracks)

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np


class DetectorKind(Enum):
    """Which detection path produced a candidate (also the runtime selector)."""
    CLASSICAL = "classical"
    SEGMENTATION = "segmentation"


class DetectionQuality(Enum):
    PROPER = 0
    OVERLAPPING = 1
    OUT_OF_FRAME = 2


# box coordinates
@dataclass
class BoundingBox:
    """
    Axis-aligned bounding box.
    (x1, y1) = top-left, (x2, y2) = bottom-right
    """
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @classmethod
    def from_points(cls, pts: np.ndarray) -> "BoundingBox":
        p = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
        return cls(
            x1=float(p[:, 0].min()),
            y1=float(p[:, 1].min()),
            x2=float(p[:, 0].max()),
            y2=float(p[:, 1].max()),
        )


@dataclass
class Candidate:
    """
    One frame's unverified photo quadrilateral.

    corners: (4, 2) float32, ordered TL, TR, BR, BL in source-frame pixels.
    confidence: in [0, 1]. The classical path computes it from geometry and
    texture, the segmentation path passes the network score through.
    """
    corners: np.ndarray
    confidence: float
    source: DetectorKind
    quality: DetectionQuality = DetectionQuality.PROPER

    @property
    def box(self) -> BoundingBox:
        return BoundingBox.from_points(self.corners)


@dataclass
class DetectionRaw:
    """
    One row of segmentation network output.
    box is in normalized [0, 1] network-input coordinates,
    score = objectness * class score, coefficients has length K.
    """
    box: BoundingBox
    score: float
    coefficients: Optional[np.ndarray]
    class_id: int = 0


@dataclass
class SegmentationOutput:
    """
    Everything the network produced for one frame.
    prototypes: (H, W, K) float32 mask basis shared by all detections.
    """
    detections: List[DetectionRaw] = field(default_factory=list)
    prototypes: Optional[np.ndarray] = None


@dataclass
class Track:
    """
    A smoothed polygon followed across frames.
    """
    corners: np.ndarray
    miss_count: int = 0


@dataclass
class FrameResult:
    """
    Output of one processed frame.
    """
    frame_id: int
    detector: DetectorKind
    candidates: List[Candidate]
    polygons: List[np.ndarray]
    crops: List[np.ndarray] = field(default_factory=list)
    elapsed: float = 0.0
