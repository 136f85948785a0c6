"""In-process state for settings and the detection pipeline.

FastAPI routes use this module to access (and hot-reload) the singleton
`DetectionPipeline` instance. `detect_frame()` serializes frames through a lock so the
body cache sees them in submission order.
"""

from __future__ import annotations

from threading import Lock, RLock

from posecache.core.analytics.pipeline import DetectionPipeline
from posecache.core.config.settings import (
    PoseCacheSettings,
    load_settings,
    merge_settings,
)
from posecache.core.types import Frame, FrameResult

_settings: PoseCacheSettings | None = None
_pipeline: DetectionPipeline | None = None
_lock = RLock()
_frame_lock = Lock()


def get_settings() -> PoseCacheSettings:
    """Return cached settings, loading them on first use."""

    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def reload_settings(data: dict | None = None) -> PoseCacheSettings:
    """Reload settings and rebuild the pipeline if it exists.

    Args:
        data: Optional (nested) patch dict merged into the loaded settings.
    """

    global _settings, _pipeline
    with _lock:
        base = load_settings()
        _settings = merge_settings(base, data) if data else base
        if _pipeline is not None:
            _pipeline = DetectionPipeline(_settings)
            _pipeline.load()
    return _settings


def get_pipeline() -> DetectionPipeline:
    """Return the singleton pipeline, creating and loading it if needed."""

    global _pipeline
    with _lock:
        if _pipeline is None:
            _pipeline = DetectionPipeline(get_settings())
            _pipeline.load()
    return _pipeline


def pipeline_loaded() -> bool:
    """Return True once the singleton pipeline has been built."""

    return _pipeline is not None


def detect_frame(pipeline: DetectionPipeline, frame: Frame) -> FrameResult:
    """Run `pipeline` on one frame, one frame at a time."""

    with _frame_lock:
        return pipeline.detect(frame)


def reset_pipeline() -> None:
    """Discard the singleton pipeline (if present)."""

    global _pipeline
    with _lock:
        _pipeline = None
