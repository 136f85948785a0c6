"""OpenCV/numpy tensor backend.

Graph models (ONNX, TensorFlow `.pb`, TFLite) run through `cv2.dnn`; Ultralytics
`.pt` pose weights are routed to `YoloPoseModel`. Image tensors are NHWC numpy
arrays with a batch dimension of 1.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from posecache.core.backends.base import (
    DYNAMIC_INPUT_SIZE,
    ModelHandle,
    Size,
    TensorBackend,
    _size_hw,
)
from posecache.core.errors import ModelUnavailable
from posecache.core.roi import crop_box_to_pixels
from posecache.core.types import CropBox

logger = logging.getLogger(__name__)

YOLO_SUFFIXES = {".pt"}


def _as_image(tensor: np.ndarray) -> np.ndarray:
    """Drop a leading batch dimension of 1, if present."""

    arr = np.asarray(tensor)
    if arr.ndim == 4:
        if arr.shape[0] != 1:
            raise ValueError("only batch size 1 is supported")
        return arr[0]
    return arr


class DnnModel:
    """`cv2.dnn` network wrapper implementing the `ModelHandle` protocol."""

    def __init__(self, net: Any, name: str, input_size: int | None = None) -> None:
        self.net = net
        self.name = name
        # cv2.dnn does not expose input shapes; treat unknown as dynamic.
        self.input_size = input_size if input_size else DYNAMIC_INPUT_SIZE
        self._output_names = list(net.getUnconnectedOutLayersNames())

    def predict(self, tensor: np.ndarray) -> np.ndarray | list[np.ndarray]:
        self.net.setInput(tensor)
        if len(self._output_names) <= 1:
            return self.net.forward()
        return list(self.net.forward(self._output_names))


class OpenCVBackend(TensorBackend):
    """CPU tensor backend built on OpenCV and numpy."""

    def __init__(self, interpolation: int = cv2.INTER_LINEAR) -> None:
        super().__init__()
        self.interpolation = interpolation

    def load_model(self, path: str, input_size: int | None = None) -> ModelHandle:
        p = Path(path)
        if p.suffix.lower() in YOLO_SUFFIXES:
            from posecache.core.backends.yolo import YoloPoseModel

            try:
                return YoloPoseModel(str(p), input_size=input_size)
            except Exception as e:
                raise ModelUnavailable(f"failed to load {path}: {e}") from e

        if not p.exists():
            raise ModelUnavailable(f"model file not found: {path}")
        try:
            net = cv2.dnn.readNet(str(p))
        except cv2.error as e:
            raise ModelUnavailable(f"failed to load {path}: {e}") from e
        if net.empty():
            raise ModelUnavailable(f"empty network: {path}")
        logger.debug("Loaded dnn model path=%s", p)
        return DnnModel(net, name=str(p), input_size=input_size)

    def crop_and_resize(self, tensor: np.ndarray, box: CropBox, size: Size) -> np.ndarray:
        img = _as_image(tensor)
        h, w = img.shape[:2]
        x1, y1, x2, y2 = crop_box_to_pixels(box, w, h)
        out_h, out_w = _size_hw(size)
        crop = img[y1:y2, x1:x2]
        resized = cv2.resize(crop, (out_w, out_h), interpolation=self.interpolation)
        return self._register(np.asarray(resized, dtype=np.float32)[np.newaxis, ...])

    def resize(self, tensor: np.ndarray, size: Size) -> np.ndarray:
        img = _as_image(tensor)
        out_h, out_w = _size_hw(size)
        resized = cv2.resize(img, (out_w, out_h), interpolation=self.interpolation)
        return self._register(np.asarray(resized, dtype=np.float32)[np.newaxis, ...])

    def cast(self, tensor: np.ndarray, dtype: Any) -> np.ndarray:
        return self._register(np.asarray(tensor).astype(dtype))
