# Interface to the segmentation network

from abc import ABC, abstractmethod

import numpy as np

from photoscan.data_types import SegmentationOutput


class BaseSegmentationClient(ABC):
    """
    Interface to the photo segmentation model.

    Implementations load their model once, are reused for every frame
    and release it in close().
    """

    @abstractmethod
    def infer(self, frame: np.ndarray) -> SegmentationOutput:
        """
        Run the network on a BGR frame (any size).
        Returns raw detections (normalized boxes, scores, mask coefficients)
        and the shared (H, W, K) prototype tensor.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release the model. Safe to call more than once."""


class NoOpSegmentationClient(BaseSegmentationClient):
    """
    Placeholder used when no model could be loaded; raises if used.
    """

    def __init__(self, reason: str = "no segmentation model loaded"):
        self.reason = reason

    def infer(self, frame: np.ndarray) -> SegmentationOutput:
        raise RuntimeError(f"Segmentation client unavailable: {self.reason}")
