import logging
import shutil
from pathlib import Path
from typing import List, Optional, Tuple, Union

import cv2
import numpy as np
import torch
from ultralytics import YOLO

from photoscan.config import SegmentationConfig
from photoscan.data_types import BoundingBox, DetectionRaw, SegmentationOutput
from photoscan.integration_clients import BaseSegmentationClient, NoOpSegmentationClient

logger = logging.getLogger(__name__)


#######################################
# 1) Capability negotiation
#######################################

def _mps_available() -> bool:
    backend = getattr(torch.backends, "mps", None)
    return bool(backend is not None and backend.is_available())


def negotiate_device(preference: str = "auto") -> torch.device:
    """
    Resolve the inference device once, at startup.

    "auto" picks CUDA, then Apple MPS, then CPU. Asking for an accelerator
    that is not present logs a warning and falls back to CPU.
    """
    pref = (preference or "auto").lower()
    if pref == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        if _mps_available():
            return torch.device("mps")
        return torch.device("cpu")
    if pref.startswith("cuda"):
        if torch.cuda.is_available():
            return torch.device(pref)
        logger.warning("CUDA requested but not available, using CPU")
        return torch.device("cpu")
    if pref == "mps":
        if _mps_available():
            return torch.device("mps")
        logger.warning("MPS requested but not available, using CPU")
        return torch.device("cpu")
    if pref == "cpu":
        return torch.device("cpu")
    raise ValueError(f"unknown device preference: {preference!r}")


#######################################
# 2) Output parsing
#######################################

def normalize_prototypes(proto: np.ndarray) -> np.ndarray:
    """
    Return prototypes as a contiguous (H, W, K) float32 array.
    Accepts (K, H, W) or (H, W, K), with or without a leading batch dim.
    """
    arr = np.asarray(proto, dtype=np.float32)
    if arr.ndim == 4:
        arr = arr[0]
    if arr.ndim != 3:
        raise ValueError(f"prototype tensor must be 3D, got shape {arr.shape}")
    # the channel axis is the short one (32 channels vs 160x160 cells)
    if arr.shape[0] < arr.shape[1] and arr.shape[0] < arr.shape[2]:
        arr = arr.transpose(1, 2, 0)
    return np.ascontiguousarray(arr)


def _normalized_box(cx: float, cy: float, w: float, h: float, scale: float) -> BoundingBox:
    def clip(v: float) -> float:
        return float(min(1.0, max(0.0, v / scale)))

    return BoundingBox(
        x1=clip(cx - w / 2.0),
        y1=clip(cy - h / 2.0),
        x2=clip(cx + w / 2.0),
        y2=clip(cy + h / 2.0),
    )


def parse_end2end_rows(
    rows: np.ndarray,
    score_threshold: float = 0.25,
    max_detections: int = 10,
) -> List[DetectionRaw]:
    """
    Rows of [cx, cy, w, h, objectness, class_score, coeff_0 .. coeff_K-1],
    box values normalized to [0, 1]. All-zero rows are padding.
    """
    arr = np.asarray(rows, dtype=np.float32)
    if arr.ndim == 3:
        arr = arr[0]
    found: List[DetectionRaw] = []
    if arr.ndim != 2 or arr.shape[1] < 6:
        return found

    for row in arr:
        if not np.any(row):
            continue
        cx, cy, w, h, obj, cls = (float(v) for v in row[:6])
        score = obj * cls
        if score < score_threshold:
            continue
        found.append(
            DetectionRaw(
                box=_normalized_box(cx, cy, w, h, 1.0),
                score=score,
                coefficients=row[6:].copy(),
            )
        )

    found.sort(key=lambda d: d.score, reverse=True)
    return found[:max_detections]


def parse_yolov8_head(
    pred: np.ndarray,
    num_coeffs: int,
    input_size: int = 640,
    score_threshold: float = 0.25,
    nms_iou: float = 0.7,
    max_detections: int = 10,
) -> List[DetectionRaw]:
    """
    Raw YOLOv8-seg head of shape (4 + nc + K, anchors): xywh in input
    pixels, per-class scores, then K mask coefficients. Applies
    score filtering and NMS, returns normalized boxes.
    """
    arr = np.asarray(pred, dtype=np.float32)
    if arr.ndim == 3:
        arr = arr[0]
    if arr.ndim != 2:
        raise ValueError(f"detection head must be 2D, got shape {arr.shape}")
    if arr.shape[0] > arr.shape[1]:
        arr = arr.T
    rows = arr.T

    nc = rows.shape[1] - 4 - num_coeffs
    if nc < 1:
        raise ValueError(f"head has {rows.shape[1]} channels, too few for {num_coeffs} mask coefficients")

    cls_scores = rows[:, 4:4 + nc]
    scores = cls_scores.max(axis=1)
    keep = np.flatnonzero(scores >= score_threshold)
    if keep.size == 0:
        return []

    xywh = rows[keep, :4]
    tl_boxes = [[float(cx - w / 2.0), float(cy - h / 2.0), float(w), float(h)] for cx, cy, w, h in xywh]
    picked = cv2.dnn.NMSBoxes(tl_boxes, scores[keep].tolist(), score_threshold, nms_iou)
    picked = np.array(picked, dtype=np.int64).reshape(-1)

    found: List[DetectionRaw] = []
    for i in picked:
        r = rows[keep[i]]
        cx, cy, w, h = (float(v) for v in r[:4])
        found.append(
            DetectionRaw(
                box=_normalized_box(cx, cy, w, h, float(input_size)),
                score=float(scores[keep[i]]),
                coefficients=r[4 + nc:].copy(),
                class_id=int(np.argmax(cls_scores[keep[i]])),
            )
        )

    found.sort(key=lambda d: d.score, reverse=True)
    return found[:max_detections]


def _split_outputs(outputs) -> Tuple[torch.Tensor, torch.Tensor]:
    """(detections, prototypes) from whatever tuple nesting the model returns."""
    if not isinstance(outputs, (list, tuple)) or len(outputs) < 2:
        raise ValueError("segmentation model must return (detections, prototypes)")
    det = outputs[0]
    proto = outputs[-1]
    while isinstance(proto, (list, tuple)):
        proto = proto[-1]
    return det, proto


##########################################
# 3) TorchScript client
##########################################

class TorchScriptSegmentationClient(BaseSegmentationClient):
    def __init__(
        self,
        model_path: Union[str, Path],
        config: Optional[SegmentationConfig] = None,
        device: Optional[torch.device] = None,
    ):
        self.config = config or SegmentationConfig()
        self.device = device or negotiate_device(self.config.device)
        self.model = torch.jit.load(str(model_path), map_location=self.device)
        self.model.eval()

    def _preprocess(self, frame: np.ndarray) -> torch.Tensor:
        """
        frame: HxW, HxWx3 (BGR) or HxWx4 (BGRA) uint8 image
        Returns a tensor of shape (1, 3, S, S) in [0, 1], RGB.
        """
        if frame.ndim == 2:
            rgb = cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)
        elif frame.shape[2] == 4:
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGRA2RGB)
        else:
            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        size = self.config.input_size
        resized = cv2.resize(rgb, (size, size), interpolation=cv2.INTER_LINEAR)
        x = torch.from_numpy(np.ascontiguousarray(resized)).permute(2, 0, 1).float().div(255.0)
        return x.unsqueeze(0).to(self.device)

    def infer(self, frame: np.ndarray) -> SegmentationOutput:
        if self.model is None:
            raise RuntimeError("segmentation client is closed")
        with torch.no_grad():
            outputs = self.model(self._preprocess(frame))
        det, proto = _split_outputs(outputs)

        prototypes = normalize_prototypes(proto.detach().float().cpu().numpy())
        det_np = det.detach().float().cpu().numpy()
        cfg = self.config
        if cfg.layout == "end2end":
            detections = parse_end2end_rows(det_np, cfg.score_threshold, cfg.max_detections)
        else:
            detections = parse_yolov8_head(
                det_np,
                num_coeffs=prototypes.shape[2],
                input_size=cfg.input_size,
                score_threshold=cfg.score_threshold,
                nms_iou=cfg.nms_iou,
                max_detections=cfg.max_detections,
            )
        return SegmentationOutput(detections=detections, prototypes=prototypes)

    def close(self) -> None:
        if self.model is None:
            return
        self.model = None
        if self.device.type == "cuda":
            torch.cuda.empty_cache()


##########################################
# 4) Startup wiring
##########################################

def export_torchscript(weights: str, input_size: int, target: Optional[Path] = None) -> Path:
    """
    Export Ultralytics YOLO-seg weights to TorchScript.
    A name like 'yolov8n-seg.pt' is downloaded on first use.
    """
    model = YOLO(weights)
    exported = Path(model.export(format="torchscript", imgsz=input_size))
    if target is None:
        return exported
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(exported, target)
    return target


def build_segmentation_client(
    config: SegmentationConfig,
    device: Optional[torch.device] = None,
) -> BaseSegmentationClient:
    """
    Resolve the segmentation backend once.

    Behavior:
      - If TorchScript weights exist at config.model_path, load them.
      - Otherwise export config.fallback_weights through Ultralytics to
        config.model_path and load that.
      - On any failure, log it and return a NoOpSegmentationClient.
    """
    device = device or negotiate_device(config.device)
    path = Path(config.model_path)
    try:
        if not path.is_file():
            if not config.fallback_weights:
                logger.warning("No segmentation weights at %s and no fallback configured", path)
                return NoOpSegmentationClient(f"weights not found: {path}")
            logger.info("Exporting %s to TorchScript at %s", config.fallback_weights, path)
            path = export_torchscript(config.fallback_weights, config.input_size, target=path)
        client = TorchScriptSegmentationClient(path, config, device)
    except Exception as e:
        logger.warning("Could not load segmentation model: %s", e)
        return NoOpSegmentationClient(str(e))

    logger.info("Segmentation model %s loaded on %s", path, device)
    return client
