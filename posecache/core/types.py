"""Shared type definitions used across the package.

This module intentionally centralizes small, stable types (boxes, points, keypoints,
per-subject results and per-frame results) so detector/pipeline code can stay
strongly typed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

Frame = np.ndarray

# (x, y, width, height): pixel space for `box`, normalized 0..1 for `box_raw`.
Box = tuple[float, float, float, float]
# (y1, x1, y2, x2) normalized crop box, the layout expected by crop_and_resize.
CropBox = tuple[float, float, float, float]
Point = tuple[float, float]
Segment = tuple[Point, Point]


@dataclass(frozen=True)
class Keypoint:
    """Single body keypoint."""

    part: str
    score: float
    position_raw: Point  # normalized x, y
    position: Point  # pixel x, y


@dataclass(frozen=True)
class BodyResult:
    """One detected body with its keypoints and connected segments."""

    id: int
    score: float
    box: Box
    box_raw: Box
    keypoints: tuple[Keypoint, ...]
    annotations: Mapping[str, list[Segment]]


@dataclass
class FaceResult:
    """Face detector output with the cropped face tensor."""

    confidence: float
    box: Box
    box_raw: Box
    image: np.ndarray | None = None  # shape: (1, S, S, 3), float32 in 0..1


@dataclass
class FrameResult:
    """Payload associated with a processed frame."""

    frame_id: int
    timestamp: float
    body: list[BodyResult]
    face: list[FaceResult]
    fps: float
    frame_size: tuple[int, int] = (0, 0)
    profile: dict[str, float] | None = None
