"""Pydantic models for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from posecache.core.types import FrameResult


class KeypointSchema(BaseModel):
    part: str
    score: float
    position_raw: tuple[float, float]
    position: tuple[float, float]


class BodySchema(BaseModel):
    """Detected body payload."""

    id: int
    score: float
    box: tuple[float, float, float, float]
    box_raw: tuple[float, float, float, float]
    keypoints: list[KeypointSchema]
    annotations: dict[str, list[tuple[tuple[float, float], tuple[float, float]]]]


class FaceSchema(BaseModel):
    """Detected face payload (the face crop tensor is not serialized)."""

    confidence: float
    box: tuple[float, float, float, float]
    box_raw: tuple[float, float, float, float]


class FrameSchema(BaseModel):
    """Per-frame detection payload."""

    frame_id: int
    timestamp: float
    body: list[BodySchema]
    face: list[FaceSchema]
    fps: float
    frame_size: tuple[int, int] | list[int]
    profile: dict[str, float] | None = None

    @classmethod
    def from_result(cls, result: FrameResult) -> FrameSchema:
        return cls(
            frame_id=result.frame_id,
            timestamp=result.timestamp,
            body=[
                BodySchema(
                    id=b.id,
                    score=b.score,
                    box=b.box,
                    box_raw=b.box_raw,
                    keypoints=[
                        KeypointSchema(
                            part=kp.part,
                            score=kp.score,
                            position_raw=kp.position_raw,
                            position=kp.position,
                        )
                        for kp in b.keypoints
                    ],
                    annotations=dict(b.annotations),
                )
                for b in result.body
            ],
            face=[FaceSchema(confidence=f.confidence, box=f.box, box_raw=f.box_raw) for f in result.face],
            fps=result.fps,
            frame_size=result.frame_size,
            profile=result.profile,
        )


class StatsSchema(BaseModel):
    """Pipeline counters payload."""

    frames: int
    cache_hits: int
    cache_misses: int
    cached_boxes: int
    tensors: int
    total_bodies: int
    fps: float


class BodyConfigSchema(BaseModel):
    enabled: bool = True
    model_path: str
    input_size: int | None = Field(default=None, gt=0)
    skip_frames: int = Field(default=1, ge=0)
    max_detected: int = Field(default=1, ge=1)
    min_confidence: float = Field(default=0.2, ge=0.0, le=1.0)


class FaceDetectorConfigSchema(BaseModel):
    model_path: str
    input_size: int | None = Field(default=None, gt=0)
    min_confidence: float = Field(default=0.1, ge=0.0, le=1.0)


class FaceConfigSchema(BaseModel):
    enabled: bool = False
    detector: FaceDetectorConfigSchema


class ConfigSchema(BaseModel):
    """Runtime configuration payload."""

    debug: bool = False
    model_base_path: str
    skip_frame: bool = True
    body: BodyConfigSchema
    face: FaceConfigSchema
