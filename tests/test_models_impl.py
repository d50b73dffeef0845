from typing import Tuple

import numpy as np
import pytest
import torch

from photoscan.config import SegmentationConfig
from photoscan.data_types import DetectorKind
from photoscan.detector import SegmentationDetector
from photoscan.integration_clients import NoOpSegmentationClient
from photoscan.models_impl import (
    TorchScriptSegmentationClient,
    build_segmentation_client,
    negotiate_device,
    normalize_prototypes,
    parse_end2end_rows,
    parse_yolov8_head,
)

from conftest import quad_xyxy


def _head(num_anchors=8):
    """(4 + 1 class + 2 coeffs, anchors) raw head with three real boxes."""
    pred = np.zeros((7, num_anchors), np.float32)
    pred[4, :] = 0.05
    pred[:, 0] = [320, 320, 320, 320, 0.9, 1.0, 0.0]
    pred[:, 1] = [322, 321, 320, 320, 0.8, 0.5, 0.5]   # duplicate of anchor 0
    pred[:, 2] = [100, 100, 50, 50, 0.6, 0.0, 1.0]
    return pred


class _TinySeg(torch.nn.Module):
    """Stands in for an exported YOLO-seg model: fixed head and prototypes."""

    def __init__(self, det: torch.Tensor, proto: torch.Tensor):
        super().__init__()
        self.register_buffer("det", det)
        self.register_buffer("proto", proto)

    def forward(self, x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        return self.det + 0.0 * x.mean(), self.proto


@pytest.fixture
def scripted_model(tmp_path):
    det = torch.from_numpy(_head()).unsqueeze(0)
    proto = torch.full((1, 2, 160, 160), -8.0)
    proto[0, 0, 40:120, 40:120] = 8.0
    path = tmp_path / "tiny_seg.torchscript"
    torch.jit.script(_TinySeg(det, proto)).save(str(path))
    return path


def test_negotiate_device():
    assert negotiate_device("cpu") == torch.device("cpu")
    assert negotiate_device("auto").type in ("cpu", "cuda", "mps")
    with pytest.raises(ValueError):
        negotiate_device("tpu")


def test_normalize_prototypes_layouts():
    chw = np.zeros((1, 32, 160, 160), np.float32)
    hwk = np.zeros((160, 160, 32), np.float32)
    assert normalize_prototypes(chw).shape == (160, 160, 32)
    assert normalize_prototypes(hwk).shape == (160, 160, 32)
    with pytest.raises(ValueError):
        normalize_prototypes(np.zeros((160, 160), np.float32))


def test_parse_end2end_rows():
    rows = np.zeros((1, 4, 8), np.float32)
    rows[0, 0] = [0.5, 0.5, 0.2, 0.4, 0.9, 0.8, 1.0, -1.0]
    rows[0, 1] = [0.2, 0.2, 0.1, 0.1, 0.3, 0.3, 1.0, 1.0]   # score 0.09
    rows[0, 2] = [0.95, 0.5, 0.2, 0.2, 1.0, 0.5, 0.0, 0.0]  # box clipped at 1

    found = parse_end2end_rows(rows)

    assert len(found) == 2
    top = found[0]
    assert top.score == pytest.approx(0.72)
    assert (top.box.x1, top.box.y1, top.box.x2, top.box.y2) == pytest.approx((0.4, 0.3, 0.6, 0.7))
    np.testing.assert_allclose(top.coefficients, [1.0, -1.0])
    assert found[1].box.x2 == pytest.approx(1.0)


def test_parse_end2end_rows_cap():
    rows = np.tile(np.array([0.5, 0.5, 0.2, 0.2, 1.0, 1.0, 0.0], np.float32), (20, 1))
    assert len(parse_end2end_rows(rows, max_detections=10)) == 10


def test_parse_yolov8_head_nms_and_normalization():
    found = parse_yolov8_head(_head(), num_coeffs=2, input_size=640)

    assert [d.score for d in found] == pytest.approx([0.9, 0.6])
    first = found[0]
    assert (first.box.x1, first.box.y1, first.box.x2, first.box.y2) == pytest.approx((0.25, 0.25, 0.75, 0.75))
    np.testing.assert_allclose(first.coefficients, [1.0, 0.0])
    assert first.class_id == 0


def test_parse_yolov8_head_accepts_anchor_major():
    found = parse_yolov8_head(_head()[None].transpose(0, 2, 1), num_coeffs=2)
    assert len(found) == 2


def test_parse_yolov8_head_too_few_channels():
    with pytest.raises(ValueError):
        parse_yolov8_head(_head(), num_coeffs=4)


def test_parse_yolov8_head_nothing_above_threshold():
    assert parse_yolov8_head(_head(), num_coeffs=2, score_threshold=0.95) == []


def test_missing_weights_without_fallback_is_noop(tmp_path):
    cfg = SegmentationConfig(model_path=tmp_path / "missing.torchscript", fallback_weights=None, device="cpu")
    client = build_segmentation_client(cfg)

    assert isinstance(client, NoOpSegmentationClient)
    with pytest.raises(RuntimeError):
        client.infer(np.zeros((10, 10, 3), np.uint8))


def test_unloadable_weights_is_noop(tmp_path):
    bad = tmp_path / "broken.torchscript"
    bad.write_bytes(b"not a model")
    cfg = SegmentationConfig(model_path=bad, device="cpu")
    assert isinstance(build_segmentation_client(cfg), NoOpSegmentationClient)


def test_torchscript_client_end_to_end(scripted_model):
    cfg = SegmentationConfig(model_path=scripted_model, device="cpu")
    client = build_segmentation_client(cfg)
    assert isinstance(client, TorchScriptSegmentationClient)

    frame = np.zeros((480, 640, 3), np.uint8)
    output = client.infer(frame)
    assert output.prototypes.shape == (160, 160, 2)
    assert len(output.detections) == 2

    cands = SegmentationDetector(client, cfg).detect(frame)
    assert len(cands) == 1
    assert cands[0].source is DetectorKind.SEGMENTATION
    assert cands[0].confidence == pytest.approx(0.9)
    np.testing.assert_allclose(cands[0].corners, quad_xyxy(160, 120, 480, 360), atol=3.0)

    client.close()
    client.close()
    with pytest.raises(RuntimeError):
        client.infer(frame)


def test_segmentation_detector_absorbs_inference_errors():
    detector = SegmentationDetector(NoOpSegmentationClient("test"))
    assert detector.detect(np.zeros((10, 10, 3), np.uint8)) == []
