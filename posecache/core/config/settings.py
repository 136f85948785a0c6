"""Runtime configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `PC_` (nested fields use `__`, e.g. `PC_BODY__SKIP_FRAMES=3`).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BodyConfig(BaseModel):
    """Body pose model settings consumed by the detection cache."""

    enabled: bool = True
    model_path: str = "movenet-multipose.onnx"
    # Square model input size; None lets the model (or the dynamic default) decide.
    input_size: int | None = None
    # Consecutive frames allowed to reuse cached results when `skip_frame` is on.
    skip_frames: int = 1
    max_detected: int = 1
    min_confidence: float = 0.2

    @field_validator("skip_frames")
    @classmethod
    def _validate_skip_frames(cls, v: int) -> int:
        if int(v) < 0:
            raise ValueError("body.skip_frames must be >= 0")
        return int(v)

    @field_validator("max_detected")
    @classmethod
    def _validate_max_detected(cls, v: int) -> int:
        if int(v) < 1:
            raise ValueError("body.max_detected must be >= 1")
        return int(v)

    @field_validator("min_confidence")
    @classmethod
    def _validate_min_confidence(cls, v: float) -> float:
        if not 0.0 <= float(v) <= 1.0:
            raise ValueError("body.min_confidence must be in [0, 1]")
        return float(v)

    @field_validator("input_size")
    @classmethod
    def _validate_input_size(cls, v: int | None) -> int | None:
        if v is None:
            return v
        if v <= 0:
            raise ValueError("body.input_size must be > 0")
        return int(v)


class FaceDetectorConfig(BaseModel):
    model_path: str = "faceboxes.onnx"
    input_size: int | None = None
    min_confidence: float = 0.1

    @field_validator("min_confidence")
    @classmethod
    def _validate_min_confidence(cls, v: float) -> float:
        if not 0.0 <= float(v) <= 1.0:
            raise ValueError("face.detector.min_confidence must be in [0, 1]")
        return float(v)


class FaceConfig(BaseModel):
    enabled: bool = False
    detector: FaceDetectorConfig = Field(default_factory=FaceDetectorConfig)


class PoseCacheSettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `PC_` env overrides."""

    debug: bool = False
    model_base_path: str = "models"
    # Allow detectors to reuse results from previous frames.
    skip_frame: bool = True
    body: BodyConfig = Field(default_factory=BodyConfig)
    face: FaceConfig = Field(default_factory=FaceConfig)

    model_config = SettingsConfigDict(
        env_prefix="PC_",
        env_nested_delimiter="__",
        validate_assignment=True,
    )


def settings_to_dict(settings: PoseCacheSettings) -> dict[str, Any]:
    """Convert settings to a plain nested dict."""

    return cast(dict[str, Any], settings.model_dump())


def _deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Merge `patch` into `base` recursively, returning a new dict."""

    out = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _env_overrides(settings: BaseModel) -> dict[str, Any]:
    """Return only the fields explicitly provided (recursively) on a settings model."""

    out: dict[str, Any] = {}
    for name in settings.model_fields_set:
        value = getattr(settings, name)
        out[name] = _env_overrides(value) if isinstance(value, BaseModel) else value
    return out


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/posecache.config.yml)."""

    return Path(os.getenv("PC_CONFIG", "config/posecache.config.yml"))


def load_settings() -> PoseCacheSettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = PoseCacheSettings()
    merged = _deep_merge(data, _env_overrides(env_settings))
    return PoseCacheSettings(**merged)


def merge_settings(base: PoseCacheSettings, patch: dict[str, Any]) -> PoseCacheSettings:
    """Return new settings with a (possibly nested) patch applied."""

    return PoseCacheSettings(**_deep_merge(settings_to_dict(base), patch))
