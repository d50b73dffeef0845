# End-to-end live scan demo

import argparse
import logging
import time
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from photoscan.config import PipelineConfig, configure_logging, load_config
from photoscan.coords import ViewportTransform, compute_transform
from photoscan.data_types import DetectorKind
from photoscan.models_impl import build_segmentation_client
from photoscan.overlay import draw_polygons, is_quality_good
from photoscan.pipeline import ScanSession, build_processor

logger = logging.getLogger(__name__)

_CV2_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def _compose_view(frame: np.ndarray, transform: ViewportTransform, viewport: tuple) -> np.ndarray:
    """Rotate the frame and letterbox it into the viewport like the preview does."""
    vw, vh = viewport
    canvas = np.zeros((vh, vw, 3), dtype=np.uint8)
    if transform.rotation in _CV2_ROTATIONS:
        frame = cv2.rotate(frame, _CV2_ROTATIONS[transform.rotation])
    rh, rw = frame.shape[:2]
    s = transform.scale_x  # uniform, same as scale_y
    cw = max(1, int(round(rw * s)))
    ch = max(1, int(round(rh * s)))
    x0 = int(round(transform.offset_x))
    y0 = int(round(transform.offset_y))
    cw = min(cw, vw - x0)
    ch = min(ch, vh - y0)
    canvas[y0:y0 + ch, x0:x0 + cw] = cv2.resize(frame, (cw, ch))
    return canvas


def save_crops(crops, out_dir: Path, frame_id: int) -> int:
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = time.strftime("%Y%m%d-%H%M%S")
    saved = 0
    for i, crop in enumerate(crops):
        path = out_dir / f"photo_{stamp}_{frame_id:05d}_{i}.png"
        if cv2.imwrite(str(path), crop):
            saved += 1
        else:
            logger.warning("Could not write %s", path)
    return saved


def run_demo(config: PipelineConfig, video_source=None, detector: Optional[str] = None) -> None:
    """
    Live demo:
      frame -> detector -> tracker -> overlay -> display
    Keys: q/ESC quit, t toggle detector, c save current crops.
    """

    if video_source is None:
        video_source = config.video.source
    if detector is not None:
        config.video.detector = detector

    cap = cv2.VideoCapture(video_source)
    if not cap.isOpened():
        raise RuntimeError(f"Could not open video source: {video_source}")

    # Segmentation model is resolved once, up front
    client = build_segmentation_client(config.segmentation)
    processor = build_processor(config, client)
    session = ScanSession(processor, min_interval_ms=config.video.min_interval_ms)

    disp = config.display
    viewport = (disp.viewport_width, disp.viewport_height)
    transform = None

    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                break

            if transform is None:
                h, w = frame.shape[:2]
                transform = compute_transform(disp.rotation, (w, h), viewport, disp.target_aspect)

            # 1) Detection + tracking (dropped if the worker is busy)
            session.submit(frame)

            # 2) Visualization from the tracker's snapshot
            polygons = [transform.map_points(p) for p in processor.tracker.snapshot()]
            latest = session.latest_result()
            quality = is_quality_good(latest.candidates) if latest is not None else False

            view = _compose_view(frame, transform, viewport)
            draw_polygons(view, polygons, quality_good=quality)
            cv2.putText(view, processor.kind.value, (10, 20), cv2.FONT_HERSHEY_SIMPLEX,
                        0.6, (0, 255, 255), 2, cv2.LINE_AA)

            cv2.imshow("Photo Scanner", view)
            key = cv2.waitKey(1) & 0xFF
            if key == 27 or key == ord("q"):  # ESC or q
                break
            if key == ord("t"):
                nxt = (DetectorKind.SEGMENTATION if processor.kind is DetectorKind.CLASSICAL
                       else DetectorKind.CLASSICAL)
                if nxt in processor.detectors:
                    processor.set_detector_kind(nxt)
            if key == ord("c") and latest is not None and latest.crops:
                n = save_crops(latest.crops, Path(config.logging.crops_dir), latest.frame_id)
                logger.info("Saved %d crops to %s", n, config.logging.crops_dir)
    finally:
        session.close()
        cap.release()
        cv2.destroyAllWindows()
        logger.info("Dropped %d frames under backpressure", session.dropped)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Live photo print scanner demo")
    parser.add_argument(
        "--video",
        type=str,
        default=None,
        help="Video file path or camera index (e.g. 0 for default webcam)",
    )
    parser.add_argument(
        "--detector",
        choices=[k.value for k in DetectorKind],
        default=None,
        help="Detection path to start with",
    )
    parser.add_argument("--config", type=str, default=None, help="YAML config file")
    args = parser.parse_args()

    cfg = load_config(args.config) if args.config else PipelineConfig()
    configure_logging(cfg.logging)

    if args.video is None:
        video_source = cfg.video.source
    else:
        # If argument is a digit, treat it as camera index; else as path
        if args.video.isdigit():
            video_source = int(args.video)
        else:
            video_source = args.video

    run_demo(cfg, video_source=video_source, detector=args.detector)
