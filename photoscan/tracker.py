import threading
from abc import ABC, abstractmethod
from typing import List, Sequence

import numpy as np

from photoscan.data_types import Track
from photoscan.geometry import polygon_iou


def _as_quad(polygon) -> np.ndarray:
    return np.asarray(polygon, dtype=np.float32).reshape(4, 2).copy()


class BaseTracker(ABC):
    """
    Abstract interface for all trackers.
    """

    @abstractmethod
    def stabilize(self, polygons: Sequence[np.ndarray]) -> List[np.ndarray]:
        """
        Update tracker with this frame's candidate polygons.
        Must return the polygons to draw for this frame.
        """
        raise NotImplementedError

    @abstractmethod
    def snapshot(self) -> List[np.ndarray]:
        """Read-only copy of the current polygons, safe from any thread."""
        raise NotImplementedError

    def reset(self) -> None:
        pass


class PassthroughTracker(BaseTracker):
    """
    Keeps no identity across frames: returns this frame's polygons as-is.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last: List[np.ndarray] = []

    def stabilize(self, polygons: Sequence[np.ndarray]) -> List[np.ndarray]:
        out = [_as_quad(p) for p in polygons]
        frozen = [p.copy() for p in out]
        for p in frozen:
            p.flags.writeable = False
        with self._lock:
            self._last = frozen
        return out

    def snapshot(self) -> List[np.ndarray]:
        with self._lock:
            return list(self._last)

    def reset(self) -> None:
        with self._lock:
            self._last = []


class BoxStabilizer(BaseTracker):
    """
    IoU-matched, EMA-smoothed polygon tracker.

    Logic:
      - For each candidate, in order, pick the not-yet-matched track whose
        bounding box has the highest IoU with the candidate's.
      - If IoU >= iou_threshold, blend corners: alpha * previous +
        (1 - alpha) * current, and reset the miss count.
      - Otherwise start a new track from the raw corners.
      - Tracks not matched this frame age by one; tracks with more than
        max_miss_frames misses are dropped.
      - An empty frame only ages tracks and returns the survivors, so the
        overlay survives short detection dropouts.

    Only the processing thread calls stabilize(); the render thread reads
    snapshot(). The track list is replaced under the lock, never edited
    in place while visible. reset() may come from any thread: a frame that
    was in flight when it happened is discarded instead of published.
    """

    def __init__(self, iou_threshold: float = 0.35, alpha: float = 0.75, max_miss_frames: int = 6):
        self.iou_threshold = iou_threshold
        self.alpha = alpha
        self.max_miss_frames = max_miss_frames

        self._lock = threading.Lock()
        self._tracks: List[Track] = []
        self._snapshot: List[np.ndarray] = []
        self._generation = 0

    @property
    def tracks(self) -> List[Track]:
        """Copies of the current tracks."""
        with self._lock:
            return [Track(corners=t.corners.copy(), miss_count=t.miss_count) for t in self._tracks]

    def _smooth(self, prev: np.ndarray, cur: np.ndarray) -> np.ndarray:
        return (self.alpha * prev + (1.0 - self.alpha) * cur).astype(np.float32)

    def _publish(self, tracks: List[Track], generation: int) -> None:
        frozen = []
        for t in tracks:
            c = t.corners.copy()
            c.flags.writeable = False
            frozen.append(c)
        with self._lock:
            if generation != self._generation:
                return
            self._tracks = tracks
            self._snapshot = frozen

    def stabilize(self, polygons: Sequence[np.ndarray]) -> List[np.ndarray]:
        with self._lock:
            generation = self._generation
            tracks = [Track(corners=t.corners.copy(), miss_count=t.miss_count) for t in self._tracks]

        if not polygons and not tracks:
            return []

        if not polygons:
            survivors = []
            for t in tracks:
                t.miss_count += 1
                if t.miss_count <= self.max_miss_frames:
                    survivors.append(t)
            self._publish(survivors, generation)
            return [t.corners.copy() for t in survivors]

        # only tracks that existed before this frame take part in matching
        existing = len(tracks)
        matched = [False] * existing
        out: List[np.ndarray] = []

        for polygon in polygons:
            cur = _as_quad(polygon)
            best_iou = 0.0
            best_idx = -1
            for idx in range(existing):
                if matched[idx]:
                    continue
                iou = polygon_iou(cur, tracks[idx].corners)
                if iou > best_iou:
                    best_iou = iou
                    best_idx = idx

            if best_idx >= 0 and best_iou >= self.iou_threshold:
                track = tracks[best_idx]
                track.corners = self._smooth(track.corners, cur)
                track.miss_count = 0
                matched[best_idx] = True
                out.append(track.corners.copy())
            else:
                tracks.append(Track(corners=cur, miss_count=0))
                out.append(cur.copy())

        survivors = []
        for idx, t in enumerate(tracks):
            if idx < existing and not matched[idx]:
                t.miss_count += 1
            if t.miss_count <= self.max_miss_frames:
                survivors.append(t)

        self._publish(survivors, generation)
        return out

    def snapshot(self) -> List[np.ndarray]:
        with self._lock:
            return list(self._snapshot)

    def reset(self) -> None:
        with self._lock:
            self._generation += 1
            self._tracks = []
            self._snapshot = []
