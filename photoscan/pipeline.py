"""
Per-frame orchestration: detector -> tracker -> rectifier.

FrameProcessor does the work for one frame on the calling thread.
ScanSession puts it behind a single worker thread with keep-latest
backpressure: a frame offered while another is in flight, or sooner than
the minimum interval after the last accepted one, is dropped.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

import numpy as np

from photoscan.config import PipelineConfig
from photoscan.data_types import DetectorKind, FrameResult
from photoscan.detector import BaseDetector, build_detector
from photoscan.integration_clients import BaseSegmentationClient
from photoscan.rectify import rectify_all
from photoscan.tracker import BaseTracker, BoxStabilizer, PassthroughTracker

logger = logging.getLogger(__name__)


def build_tracker(config: PipelineConfig) -> BaseTracker:
    t = config.tracker
    if not t.enabled:
        return PassthroughTracker()
    return BoxStabilizer(iou_threshold=t.iou_threshold, alpha=t.alpha, max_miss_frames=t.max_miss_frames)


def build_processor(
    config: PipelineConfig,
    client: Optional[BaseSegmentationClient] = None,
) -> "FrameProcessor":
    """
    Classical detector always; segmentation detector only when a client is given.
    """
    detectors: Dict[DetectorKind, BaseDetector] = {
        DetectorKind.CLASSICAL: build_detector(DetectorKind.CLASSICAL, config),
    }
    if client is not None:
        detectors[DetectorKind.SEGMENTATION] = build_detector(DetectorKind.SEGMENTATION, config, client)

    kind = DetectorKind(config.video.detector)
    if kind not in detectors:
        logger.warning("No segmentation client, starting with the classical detector")
        kind = DetectorKind.CLASSICAL
    return FrameProcessor(detectors, build_tracker(config), config, kind=kind, client=client)


class FrameProcessor:
    """
    Runs one frame through the selected detector, the tracker and
    (optionally) the rectifier.
    """

    def __init__(
        self,
        detectors: Dict[DetectorKind, BaseDetector],
        tracker: BaseTracker,
        config: Optional[PipelineConfig] = None,
        kind: DetectorKind = DetectorKind.CLASSICAL,
        client: Optional[BaseSegmentationClient] = None,
    ):
        if kind not in detectors:
            raise ValueError(f"no detector registered for {kind}")
        self.detectors = detectors
        self.tracker = tracker
        self.config = config or PipelineConfig()
        self.client = client
        self._kind = kind
        self._frame_id = 0

    @property
    def kind(self) -> DetectorKind:
        return self._kind

    def set_detector_kind(self, kind: DetectorKind) -> None:
        """Switch detection path; takes effect from the next frame."""
        if kind not in self.detectors:
            raise ValueError(f"no detector registered for {kind}")
        if kind is not self._kind:
            logger.info("Detector switched to %s", kind.value)
        self._kind = kind

    def process(self, frame: np.ndarray, export_crops: Optional[bool] = None) -> FrameResult:
        start = time.perf_counter()
        self._frame_id += 1
        kind = self._kind  # read once per frame
        detector = self.detectors[kind]

        if frame is None or frame.size == 0:
            candidates = []
        else:
            try:
                candidates = detector.detect(frame)
            except Exception as e:
                logger.warning("Detector %s failed on frame %d: %s", kind.value, self._frame_id, e)
                candidates = []

        polygons = self.tracker.stabilize([c.corners for c in candidates])

        if export_crops is None:
            export_crops = self.config.video.export_crops
        crops: List[np.ndarray] = []
        if export_crops and polygons and frame is not None and frame.size > 0:
            r = self.config.rectify
            crops = rectify_all(frame, polygons, downscale=r.downscale, mirror=r.mirror, border_value=r.border_value)

        elapsed = time.perf_counter() - start
        logger.debug(
            "Frame %d: %s found %d candidates, %d polygons in %.1f ms",
            self._frame_id, kind.value, len(candidates), len(polygons), elapsed * 1000.0,
        )
        return FrameResult(
            frame_id=self._frame_id,
            detector=kind,
            candidates=candidates,
            polygons=polygons,
            crops=crops,
            elapsed=elapsed,
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


class ScanSession:
    """
    Single-producer, single-consumer front end for a FrameProcessor.

    submit() never blocks: it returns False when the frame is dropped.
    """

    def __init__(
        self,
        processor: FrameProcessor,
        min_interval_ms: int = 200,
        on_result: Optional[Callable[[FrameResult], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.processor = processor
        self.min_interval = min_interval_ms / 1000.0
        self.on_result = on_result
        self._clock = clock

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="photoscan")
        self._busy = threading.Lock()
        self._state_lock = threading.Lock()
        self._last_accept: Optional[float] = None
        self._latest: Optional[FrameResult] = None
        self._closed = False
        self.dropped = 0

    def submit(self, frame: np.ndarray) -> bool:
        if self._closed:
            return False
        now = self._clock()
        with self._state_lock:
            if self._last_accept is not None and now - self._last_accept < self.min_interval:
                self.dropped += 1
                return False
            if not self._busy.acquire(blocking=False):
                self.dropped += 1
                return False
            self._last_accept = now

        try:
            self._executor.submit(self._run, frame)
        except RuntimeError:
            self._busy.release()
            return False
        return True

    def _run(self, frame: np.ndarray) -> None:
        try:
            result = self.processor.process(frame)
            with self._state_lock:
                self._latest = result
            if self.on_result is not None:
                self.on_result(result)
        except Exception:
            logger.exception("Frame processing failed")
        finally:
            self._busy.release()

    def busy(self) -> bool:
        return self._busy.locked()

    def latest_result(self) -> Optional[FrameResult]:
        with self._state_lock:
            return self._latest

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the in-flight frame (if any) is done."""
        acquired = self._busy.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._busy.release()
        return acquired

    def close(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=True)
        self.processor.close()
