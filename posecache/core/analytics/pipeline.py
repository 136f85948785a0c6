"""Detection pipeline orchestration.

This module ties together the body detector (with its ROI cache) and the optional
face detector into a single per-frame processing pipeline.
"""

from __future__ import annotations

import logging
import time

from posecache.core.backends.base import TensorBackend
from posecache.core.backends.opencv import OpenCVBackend
from posecache.core.config.settings import PoseCacheSettings
from posecache.core.detectors.faceboxes import FaceBoxes
from posecache.core.detectors.movenet import MoveNet
from posecache.core.errors import MalformedOutput
from posecache.core.types import BodyResult, FaceResult, Frame, FrameResult

logger = logging.getLogger(__name__)


class DetectionPipeline:
    """End-to-end per-frame detection.

    Responsibilities:
    - load the configured models once
    - run the body detector (which may reuse cached results on some frames)
    - run the face detector when enabled

    Frames must be submitted in order: the body cache assumes each frame follows
    the previous one.
    """

    def __init__(
        self,
        config: PoseCacheSettings | None = None,
        backend: TensorBackend | None = None,
        body: MoveNet | None = None,
        face: FaceBoxes | None = None,
    ) -> None:
        """Create a pipeline with optional injected components."""

        self.config = config or PoseCacheSettings()
        self.backend = backend or OpenCVBackend()
        self.body = body or MoveNet(self.backend)
        self.face = face
        self.frame_id = 0
        # Use a monotonic clock for FPS deltas; keep wall-clock timestamps for payloads.
        self._last_fps_at = time.perf_counter()
        self._fps = 0.0
        self.latest: FrameResult | None = None

    def load(self) -> list[str]:
        """Load enabled models and return the names of those available."""

        loaded: list[str] = []
        if self.config.body.enabled and self.body.load(self.config) is not None:
            loaded.append("body")
        if self.config.face.enabled:
            if self.face is None:
                self.face = FaceBoxes.load(self.backend, self.config)
            if self.face is not None:
                loaded.append("face")
        logger.info("Loaded models: %s", loaded)
        return loaded

    def _detect_faces(self, frame: Frame) -> list[FaceResult]:
        if not self.config.face.enabled or self.face is None:
            return []
        try:
            return self.face.estimate_faces(frame, self.config)
        except MalformedOutput as e:
            logger.warning("Ignoring face model output: %s", e)
            return []
        except Exception:
            logger.exception("Face model pass failed")
            return []

    def _process_internal(self, frame: Frame, profile: bool) -> FrameResult:
        timings: dict[str, float] = {}
        t_all0 = time.perf_counter() if profile else 0.0
        self.frame_id += 1
        h, w = int(frame.shape[-3]), int(frame.shape[-2])

        body: list[BodyResult] = []
        if self.config.body.enabled:
            misses0 = self.body.misses
            t_body0 = time.perf_counter() if profile else 0.0
            body = self.body.predict(frame, self.config)
            if profile:
                timings["body_ms"] = (time.perf_counter() - t_body0) * 1000.0
                timings["body_cached"] = 1.0 if self.body.misses == misses0 else 0.0

        t_face0 = time.perf_counter() if profile else 0.0
        face = self._detect_faces(frame)
        if profile:
            timings["face_ms"] = (time.perf_counter() - t_face0) * 1000.0

        now_perf = time.perf_counter()
        dt = now_perf - self._last_fps_at
        if dt > 0:
            instant_fps = 1.0 / dt
            alpha = 0.1
            self._fps = (
                instant_fps if self._fps == 0 else (self._fps * (1.0 - alpha) + instant_fps * alpha)
            )
        self._last_fps_at = now_perf

        if profile:
            timings["pipeline_ms"] = (time.perf_counter() - t_all0) * 1000.0

        result = FrameResult(
            frame_id=self.frame_id,
            timestamp=time.time(),
            body=body,
            face=face,
            fps=self._fps,
            frame_size=(w, h),
            profile=timings if profile else None,
        )
        self.latest = result
        return result

    def detect(self, frame: Frame) -> FrameResult:
        """Process one RGB frame (HWC or 1xHxWxC) and return its results."""

        return self._process_internal(frame, profile=False)

    def detect_with_profile(self, frame: Frame) -> FrameResult:
        """Like `detect()` but fills `FrameResult.profile` with stage timings in ms."""

        return self._process_internal(frame, profile=True)

    def stats(self) -> dict[str, object]:
        """Return counters for frames, body cache hits/misses and backend memory."""

        return {
            "frames": self.frame_id,
            "cache_hits": self.body.hits,
            "cache_misses": self.body.misses,
            "cached_boxes": len(self.body.cache.boxes),
            "memory": self.backend.memory(),
        }
