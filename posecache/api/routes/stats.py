"""Stats endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from posecache.api.schemas.models import StatsSchema
from posecache.api.services.state import get_pipeline
from posecache.core.analytics.pipeline import DetectionPipeline

router = APIRouter()


@router.get("/stats", response_model=StatsSchema)
def stats(pipeline: DetectionPipeline = Depends(get_pipeline)) -> StatsSchema:
    """Return cache and memory counters for the running pipeline."""

    counters = pipeline.stats()
    latest = pipeline.latest
    return StatsSchema(
        frames=int(counters["frames"]),
        cache_hits=int(counters["cache_hits"]),
        cache_misses=int(counters["cache_misses"]),
        cached_boxes=int(counters["cached_boxes"]),
        tensors=int(counters["memory"]["tensors"]),
        total_bodies=len(latest.body) if latest else 0,
        fps=latest.fps if latest else 0.0,
    )
