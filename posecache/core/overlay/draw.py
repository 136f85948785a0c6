"""Overlay drawing helpers (OpenCV)."""

from __future__ import annotations

import cv2
import numpy as np

from posecache.core.types import FrameResult

KEYPOINT_COLOR = (57, 255, 20)  # bright green
SEGMENT_COLOR = (255, 128, 0)  # orange
BOX_COLOR = (0, 170, 255)
FACE_COLOR = (255, 0, 255)
TEXT_COLOR = (255, 255, 255)


def _pt(p: tuple[float, float]) -> tuple[int, int]:
    return int(p[0]), int(p[1])


def draw_overlays(frame: np.ndarray, result: FrameResult) -> np.ndarray:
    """Return a copy of `frame` with body boxes, keypoints, segments and faces drawn."""

    if not result.body and not result.face:
        return frame

    img = frame.copy()
    for body in result.body:
        x, y, w, h = map(int, body.box)
        cv2.rectangle(img, (x, y), (x + w, y + h), BOX_COLOR, 2)
        for segments in body.annotations.values():
            for p0, p1 in segments:
                cv2.line(img, _pt(p0), _pt(p1), SEGMENT_COLOR, 2, cv2.LINE_AA)
        for kp in body.keypoints:
            cv2.circle(img, _pt(kp.position), 3, KEYPOINT_COLOR, -1)
        cv2.putText(
            img,
            f"body {body.id} {body.score:.2f}",
            (x, max(y - 8, 0)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.5,
            TEXT_COLOR,
            1,
            cv2.LINE_AA,
        )

    for face in result.face:
        x, y, w, h = map(int, face.box)
        cv2.rectangle(img, (x, y), (x + w, y + h), FACE_COLOR, 2)
    return img
