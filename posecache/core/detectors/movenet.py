"""MoveNet body pose detection with a frame-to-frame ROI cache.

`MoveNet.predict()` decides per frame whether to:

- return the previous frame's results unchanged (skip-frame cache hit),
- run the model on crops around the previous frame's bodies (cheap path), or
- run the model on the whole frame (expensive fallback).

The cache is a function of the immediately preceding frame, so frames must be
submitted to one instance strictly in order. Out-of-order submission is not
detected.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from posecache.core.backends.base import DYNAMIC_INPUT_SIZE, ModelHandle, TensorBackend
from posecache.core.config.settings import BodyConfig, PoseCacheSettings
from posecache.core.errors import MalformedOutput, ModelUnavailable
from posecache.core.keypoints import CONNECTED, KEYPOINT_NAMES, NUM_KEYPOINTS
from posecache.core.roi import calc_box, roi_from_box_raw
from posecache.core.types import BodyResult, CropBox, Frame, Keypoint, Segment

logger = logging.getLogger(__name__)

# Size used when the model reports a dynamic input shape.
DEFAULT_INPUT_SIZE = 256
FULL_FRAME_BOX: CropBox = (0.0, 0.0, 1.0, 1.0)
# Multi-pose rows: 17 (y, x, score) triplets + (ymin, xmin, ymax, xmax, score).
MULTIPOSE_COLUMNS = NUM_KEYPOINTS * 3 + 5
MULTIPOSE_SCORE_INDEX = NUM_KEYPOINTS * 3 + 4


@dataclass
class RoiCache:
    """Per-controller state carried from one frame to the next."""

    # Normalized (y1, x1, y2, x2) crop boxes for the next frame.
    boxes: list[CropBox] = field(default_factory=list)
    # Results of the last full detection pass, returned on skip-frame hits.
    bodies: list[BodyResult] = field(default_factory=list)
    # Frames since the last detection pass; starts high to force the first run.
    skipped: int = sys.maxsize

    def reset(self) -> None:
        self.boxes = []
        self.bodies = []
        self.skipped = sys.maxsize


def _frame_size(frame: Frame) -> tuple[int, int]:
    """Return (width, height) for an HWC or NHWC frame."""

    return int(frame.shape[-2]), int(frame.shape[-3])


def _make_keypoint(
    part: str,
    score: float,
    ky: float,
    kx: float,
    input_box: CropBox,
    frame_size: tuple[int, int],
) -> Keypoint:
    y1, x1, y2, x2 = input_box
    raw = ((x2 - x1) * float(kx) + x1, (y2 - y1) * float(ky) + y1)
    return Keypoint(
        part=part,
        score=round(float(score), 2),
        position_raw=raw,
        position=(round(frame_size[0] * raw[0]), round(frame_size[1] * raw[1])),
    )


def _annotations(keypoints: tuple[Keypoint, ...], min_confidence: float) -> dict[str, list[Segment]]:
    by_part = {kp.part: kp for kp in keypoints}
    out: dict[str, list[Segment]] = {}
    for name, chain in CONNECTED.items():
        segments: list[Segment] = []
        for a, b in zip(chain, chain[1:]):
            pt0 = by_part.get(a)
            pt1 = by_part.get(b)
            if pt0 and pt1 and pt0.score > min_confidence and pt1.score > min_confidence:
                segments.append((pt0.position, pt1.position))
        out[name] = segments
    return out


def _build_body(
    id_: int,
    score: float,
    keypoints: tuple[Keypoint, ...],
    config: BodyConfig,
    frame_size: tuple[int, int],
) -> BodyResult:
    box, box_raw = calc_box([kp.position for kp in keypoints], frame_size)
    return BodyResult(
        id=id_,
        score=score,
        box=box,
        box_raw=box_raw,
        keypoints=keypoints,
        annotations=_annotations(keypoints, config.min_confidence),
    )


def parse_single_pose(
    res: np.ndarray,
    config: BodyConfig,
    frame_size: tuple[int, int],
    input_box: CropBox,
) -> list[BodyResult]:
    """Parse a `(1, 1, 17, 3)` single-pose output into one body."""

    kpt = np.asarray(res)[0][0]
    keypoints = tuple(
        _make_keypoint(KEYPOINT_NAMES[i], kpt[i][2], kpt[i][0], kpt[i][1], input_box, frame_size)
        for i in range(min(NUM_KEYPOINTS, len(kpt)))
        if kpt[i][2] > config.min_confidence
    )
    score = max((kp.score for kp in keypoints), default=0.0)
    return [_build_body(0, score, keypoints, config, frame_size)]


def parse_multi_pose(
    res: np.ndarray,
    config: BodyConfig,
    frame_size: tuple[int, int],
    input_box: CropBox,
) -> list[BodyResult]:
    """Parse a `(1, N, 56)` multi-pose output.

    Bodies are sorted by descending score and truncated to `config.max_detected`.
    """

    bodies: list[BodyResult] = []
    for id_, row in enumerate(np.asarray(res)[0]):
        total_score = round(float(row[MULTIPOSE_SCORE_INDEX]), 2)
        if total_score <= config.min_confidence:
            continue
        keypoints = tuple(
            _make_keypoint(
                KEYPOINT_NAMES[i],
                row[3 * i + 2],
                row[3 * i + 0],
                row[3 * i + 1],
                input_box,
                frame_size,
            )
            for i in range(NUM_KEYPOINTS)
            if row[3 * i + 2] > config.min_confidence
        )
        bodies.append(_build_body(id_, total_score, keypoints, config, frame_size))
    bodies.sort(key=lambda b: b.score, reverse=True)
    return bodies[: config.max_detected]


def parse_pose(
    res: np.ndarray,
    config: BodyConfig,
    frame_size: tuple[int, int],
    input_box: CropBox,
) -> list[BodyResult]:
    """Dispatch to the single- or multi-pose parser based on output shape."""

    shape = tuple(np.shape(res))
    if len(shape) == 4 and shape[0] >= 1 and shape[1] >= 1 and shape[2:] == (NUM_KEYPOINTS, 3):
        return parse_single_pose(res, config, frame_size, input_box)
    if len(shape) == 3 and shape[0] >= 1 and shape[2] == MULTIPOSE_COLUMNS:
        return parse_multi_pose(res, config, frame_size, input_box)
    raise MalformedOutput(shape)


def resolve_model_path(base_path: str, model_path: str) -> str:
    """Join a model path onto the configured base path unless it is already absolute/remote."""

    if "://" in model_path:
        return model_path
    return str(Path(base_path) / model_path)


class MoveNet:
    """Body pose detector owning one ROI cache.

    One instance serves one video stream. Call `load()` once, then `predict()` for
    every frame in order.
    """

    def __init__(self, backend: TensorBackend, model: ModelHandle | None = None) -> None:
        self.backend = backend
        self.model = model
        self.input_size = self._resolve_input_size(model)
        self.cache = RoiCache()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _resolve_input_size(model: ModelHandle | None) -> int:
        if model is None or not model.input_size:
            return 0
        if model.input_size == DYNAMIC_INPUT_SIZE:
            return DEFAULT_INPUT_SIZE
        return int(model.input_size)

    def load(self, config: PoseCacheSettings) -> ModelHandle | None:
        """Load the body model once; later calls reuse it.

        Load failures are logged and leave the detector without a model, in which
        case `predict()` returns no results.
        """

        if self.model is None:
            path = resolve_model_path(config.model_base_path, config.body.model_path)
            try:
                self.model = self.backend.load_model(path, input_size=config.body.input_size)
            except ModelUnavailable as e:
                logger.warning("load model failed: %s (%s)", config.body.model_path, e)
                self.model = None
            else:
                if config.debug:
                    logger.info("load model: %s", self.model.name)
        elif config.debug:
            logger.info("cached model: %s", self.model.name)
        self.input_size = self._resolve_input_size(self.model)
        return self.model

    def reset(self) -> None:
        """Forget cached boxes and results; the next frame runs full inference."""

        self.cache.reset()

    def _run(self, frame: Frame, config: BodyConfig, box: CropBox | None) -> list[BodyResult]:
        """Run one forward pass on a crop (`box`) or on the whole frame (`None`).

        A failing pass is logged and yields no bodies; its tensors are still
        disposed by the scope.
        """

        if self.model is None:
            return []
        input_box = FULL_FRAME_BOX if box is None else box
        try:
            with self.backend.scope() as t:
                if box is None:
                    img = t.track(self.backend.resize(frame, self.input_size))
                else:
                    img = t.track(self.backend.crop_and_resize(frame, box, self.input_size))
                cast = t.track(self.backend.cast(img, np.int32))
                res = t.track(self.backend.forward(self.model, cast))
                out = res[0] if isinstance(res, list) else res
                return parse_pose(out, config, _frame_size(frame), input_box)
        except MalformedOutput as e:
            logger.warning("Ignoring body model output: %s", e)
            return []
        except Exception:
            logger.exception("Body model pass failed (box=%s)", box)
            return []

    def predict(self, frame: Frame, config: PoseCacheSettings) -> list[BodyResult]:
        """Return body results for `frame`.

        On skip-frame hits the returned list is the very object returned by the
        last detection pass.
        """

        if self.model is None or not self.input_size:
            return []

        body = config.body
        cache = self.cache
        if not config.skip_frame:
            cache.boxes = []
        cache.skipped += 1
        if config.skip_frame and cache.skipped <= body.skip_frames:
            self.hits += 1
            return cache.bodies

        cache.skipped = 0
        cache.bodies = []
        self.misses += 1

        bodies: list[BodyResult] = []
        if len(cache.boxes) >= body.max_detected:
            for box in cache.boxes:
                bodies.extend(self._run(frame, body, box))
        if len(bodies) < body.max_detected:
            bodies = self._run(frame, body, None)

        # Only confidently tracked bodies seed next frame's crops.
        cache.boxes = [
            roi_from_box_raw(b.box_raw) for b in bodies if len(b.keypoints) > NUM_KEYPOINTS / 2
        ]
        cache.bodies = bodies
        return bodies
