"""Ultralytics YOLO pose integration.

Wraps a YOLO pose model so it behaves like a multi-pose graph model: the forward
pass returns a `(1, N, 56)` tensor with 17 `(y, x, score)` keypoint triplets in
normalized input coordinates followed by `(ymin, xmin, ymax, xmax, score)`.

This module intentionally keeps Torch as an optional runtime dependency: ONNX
exports can run without importing torch.
"""

from __future__ import annotations

import importlib
import os
from contextlib import nullcontext
from typing import Any

import cv2
import numpy as np
from ultralytics import YOLO

from posecache.core.keypoints import NUM_KEYPOINTS

YOLO_DEFAULT_INPUT_SIZE = 640
MULTIPOSE_ROW = NUM_KEYPOINTS * 3 + 5


def _to_numpy(value: Any) -> np.ndarray:
    if hasattr(value, "cpu"):
        value = value.cpu()
    return value.numpy() if hasattr(value, "numpy") else np.asarray(value)


class YoloPoseModel:
    """YOLO pose model exposed through the `ModelHandle` protocol.

    The model is CPU-only by default and can optionally be tuned via env vars
    (`PC_TORCH_THREADS`, `PC_TORCH_INTEROP_THREADS`).
    """

    _torch_threads_configured: bool = False

    def __init__(
        self,
        model_name: str = "yolo11n-pose.pt",
        conf: float = 0.25,
        input_size: int | None = None,
    ):
        """Create the model.

        Args:
            model_name: Model path/name understood by Ultralytics (e.g. `yolo11n-pose.pt`).
            conf: Confidence threshold applied inside the Ultralytics predictor.
            input_size: Square inference size; defaults to the model's `imgsz` override
                or 640.
        """

        self._configure_torch_threads_from_env()

        self.name = model_name
        self.is_onnx = model_name.lower().endswith(".onnx")
        self.device: str = "cpu"
        self._torch_inference_mode: Any | None = None
        if not self.is_onnx:
            try:
                torch = importlib.import_module("torch")
                self._torch_inference_mode = torch.inference_mode
            except Exception:
                self._torch_inference_mode = None
        # Avoid .to(device) on ONNX exports; Ultralytics raises TypeError
        self.model = YOLO(model_name, task="pose")

        if not self.is_onnx:
            try:
                self.model.to(self.device)
            except Exception:
                # predict(device='cpu') still enforces CPU.
                pass
            try:
                self.model.fuse()
            except Exception:
                pass

        overrides = getattr(self.model, "overrides", None) or {}
        self.input_size = int(input_size or overrides.get("imgsz") or YOLO_DEFAULT_INPUT_SIZE)
        self._predict_kwargs = {
            "conf": float(conf),
            "verbose": False,
            "device": self.device,
            "imgsz": self.input_size,
        }

    @classmethod
    def _configure_torch_threads_from_env(cls) -> None:
        """Configure torch thread counts from environment variables (one-time)."""

        if cls._torch_threads_configured:
            return
        cls._torch_threads_configured = True

        threads_s = os.getenv("PC_TORCH_THREADS")
        interop_s = os.getenv("PC_TORCH_INTEROP_THREADS")
        if threads_s is None and interop_s is None:
            return

        try:
            torch = importlib.import_module("torch")

            if threads_s is not None and threads_s.strip():
                torch.set_num_threads(max(1, int(threads_s)))
            if interop_s is not None and interop_s.strip():
                torch.set_num_interop_threads(max(1, int(interop_s)))
        except Exception:
            return

    def predict(self, tensor: np.ndarray) -> np.ndarray:
        """Run pose inference on a `(1, H, W, 3)` RGB tensor."""

        arr = np.asarray(tensor)
        img = arr[0] if arr.ndim == 4 else arr
        h, w = img.shape[:2]
        # Ultralytics expects OpenCV-style uint8 BGR images.
        bgr = cv2.cvtColor(np.clip(img, 0, 255).astype(np.uint8), cv2.COLOR_RGB2BGR)

        infer_ctx = (
            self._torch_inference_mode()
            if self._torch_inference_mode is not None
            else nullcontext()
        )
        with infer_ctx:
            results = self.model.predict(bgr, **self._predict_kwargs)

        empty = np.zeros((1, 0, MULTIPOSE_ROW), dtype=np.float32)
        if not results:
            return empty
        result = results[0]
        boxes = getattr(result, "boxes", None)
        kpts = getattr(result, "keypoints", None)
        if boxes is None or len(boxes) == 0 or kpts is None or getattr(kpts, "data", None) is None:
            return empty

        # Ultralytics Boxes.data = (x1,y1,x2,y2,conf,cls)
        data_np = _to_numpy(boxes.data)
        kpts_np = _to_numpy(kpts.data)  # (N, 17, 3) -> x, y, conf in pixels
        if data_np.ndim != 2 or data_np.shape[1] < 5 or kpts_np.ndim != 3:
            return empty

        n = min(int(data_np.shape[0]), int(kpts_np.shape[0]))
        out = np.zeros((1, n, MULTIPOSE_ROW), dtype=np.float32)
        sx = 1.0 / float(w) if w else 0.0
        sy = 1.0 / float(h) if h else 0.0
        for i in range(n):
            kp = kpts_np[i]
            for k in range(min(NUM_KEYPOINTS, int(kp.shape[0]))):
                out[0, i, 3 * k + 0] = kp[k, 1] * sy
                out[0, i, 3 * k + 1] = kp[k, 0] * sx
                out[0, i, 3 * k + 2] = kp[k, 2] if kp.shape[1] > 2 else 1.0
            x1, y1, x2, y2, conf_v = data_np[i, :5]
            base = NUM_KEYPOINTS * 3
            out[0, i, base : base + 5] = (y1 * sy, x1 * sx, y2 * sy, x2 * sx, conf_v)
        return out
