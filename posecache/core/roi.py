from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from posecache.core.types import Box, CropBox, Point

# Cached ROI boxes are grown to 150% so the subject stays inside next frame.
BOX_EXPAND_FACTOR = 1.5


def _clamp(v: float, lo: float, hi: float) -> float:
    return lo if v < lo else hi if v > hi else v


def calc_box(positions: Sequence[Point], output_size: tuple[int, int]) -> tuple[Box, Box]:
    """Return (box, box_raw) enclosing `positions`.

    `output_size` is (width, height) and is used to normalize `box` into `box_raw`.
    """

    if not positions:
        return (0.0, 0.0, 0.0, 0.0), (0.0, 0.0, 0.0, 0.0)
    xs = [float(p[0]) for p in positions]
    ys = [float(p[1]) for p in positions]
    x1, y1 = min(xs), min(ys)
    box = (x1, y1, max(xs) - x1, max(ys) - y1)
    ow = float(output_size[0]) or 1.0
    oh = float(output_size[1]) or 1.0
    box_raw = (box[0] / ow, box[1] / oh, box[2] / ow, box[3] / oh)
    return box, box_raw


def scale_box(box: Box, factor: float) -> Box:
    """Grow an (x, y, w, h) box around its center."""

    x, y, w, h = box
    nw = w * float(factor)
    nh = h * float(factor)
    return (x - (nw - w) / 2.0, y - (nh - h) / 2.0, nw, nh)


def crop_box(box: Box) -> CropBox:
    """Convert a normalized (x, y, w, h) box into a clamped (y1, x1, y2, x2) crop box."""

    x, y, w, h = box
    return (
        _clamp(y, 0.0, 1.0),
        _clamp(x, 0.0, 1.0),
        _clamp(y + h, 0.0, 1.0),
        _clamp(x + w, 0.0, 1.0),
    )


def roi_from_box_raw(box_raw: Box, factor: float = BOX_EXPAND_FACTOR) -> CropBox:
    return crop_box(scale_box(box_raw, factor))


def crop_box_to_pixels(box: CropBox, frame_w: int, frame_h: int) -> tuple[int, int, int, int]:
    """Map a normalized crop box onto integer pixel bounds (x1, y1, x2, y2).

    The result is always at least one pixel wide and high and stays inside the frame.
    """

    y1, x1, y2, x2 = box
    if y2 < y1:
        y1, y2 = y2, y1
    if x2 < x1:
        x1, x2 = x2, x1
    xi1 = int(np.floor(_clamp(x1, 0.0, 1.0) * frame_w))
    yi1 = int(np.floor(_clamp(y1, 0.0, 1.0) * frame_h))
    xi2 = int(np.ceil(_clamp(x2, 0.0, 1.0) * frame_w))
    yi2 = int(np.ceil(_clamp(y2, 0.0, 1.0) * frame_h))
    xi1 = max(0, min(xi1, frame_w - 1))
    yi1 = max(0, min(yi1, frame_h - 1))
    xi2 = max(xi1 + 1, min(xi2, frame_w))
    yi2 = max(yi1 + 1, min(yi2, frame_h))
    return xi1, yi1, xi2, yi2


def enlarge_face_box(box: CropBox, factor: float) -> CropBox:
    """Grow a (y1, x1, y2, x2) face box by dividing the origin and multiplying the far corner."""

    y1, x1, y2, x2 = box
    f = float(factor)
    return (y1 / f, x1 / f, y2 * f, x2 * f)
