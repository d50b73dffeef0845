"""Shared fixtures: synthetic camera frames with photo prints drawn on them."""
import logging

import cv2
import numpy as np
import pytest

from photoscan.config import PipelineConfig

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

logging.getLogger('ultralytics').setLevel(logging.WARNING)

BACKGROUND = 40
BORDER_PX = 15
CELL_PX = 15


def draw_print(frame, x1, y1, x2, y2, border=BORDER_PX, cell=CELL_PX):
    """White-bordered print with a checkerboard picture inside, in place."""
    cv2.rectangle(frame, (x1, y1), (x2 - 1, y2 - 1), (255, 255, 255), -1)
    for yy in range(y1 + border, y2 - border, cell):
        for xx in range(x1 + border, x2 - border, cell):
            dark = ((xx - x1) // cell + (yy - y1) // cell) % 2 == 0
            shade = 60 if dark else 200
            cv2.rectangle(
                frame,
                (xx, yy),
                (min(xx + cell, x2 - border) - 1, min(yy + cell, y2 - border) - 1),
                (shade, shade, shade),
                -1,
            )
    return frame


@pytest.fixture
def make_scene():
    """Factory: make_scene(width, height, rect) -> BGR frame with one print at rect."""
    def _make(width=640, height=480, rect=(170, 120, 470, 345)):
        frame = np.full((height, width, 3), BACKGROUND, dtype=np.uint8)
        return draw_print(frame, *rect)
    return _make


@pytest.fixture
def photo_scene(make_scene):
    """640x480 frame, one 300x225 print with TL at (170, 120)."""
    return make_scene()


@pytest.fixture
def blank_frame():
    return np.full((480, 640, 3), BACKGROUND, dtype=np.uint8)


@pytest.fixture
def config():
    return PipelineConfig()


def quad_xyxy(x1, y1, x2, y2):
    """Ordered TL, TR, BR, BL corners of an axis-aligned rectangle."""
    return np.array([[x1, y1], [x2, y1], [x2, y2], [x1, y2]], dtype=np.float32)
