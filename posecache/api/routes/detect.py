"""Frame detection endpoint."""

from __future__ import annotations

import asyncio
import logging

import cv2
import numpy as np
from fastapi import APIRouter, Depends, HTTPException, Request

from posecache.api.schemas.models import FrameSchema
from posecache.api.services.state import detect_frame, get_pipeline
from posecache.core.analytics.pipeline import DetectionPipeline

logger = logging.getLogger(__name__)
router = APIRouter()


def decode_image(data: bytes) -> np.ndarray:
    """Decode an encoded image (JPEG/PNG/...) into an RGB array.

    Raises:
        ValueError: when the payload is empty or cannot be decoded.
    """

    if not data:
        raise ValueError("empty image payload")
    buf = np.frombuffer(data, dtype=np.uint8)
    bgr = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if bgr is None:
        raise ValueError("cannot decode image payload")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


@router.post("/detect", response_model=FrameSchema)
async def detect(
    request: Request,
    pipeline: DetectionPipeline = Depends(get_pipeline),
) -> FrameSchema:
    """Run detection on one encoded image sent as the raw request body.

    Inference runs in a worker thread. Concurrent posts are served one at a
    time, but the body cache assumes each frame follows the previous one, so
    video clients should still post frames sequentially.
    """

    try:
        frame = decode_image(await request.body())
    except ValueError as e:
        logger.warning("Rejecting /detect payload: %s", e)
        raise HTTPException(status_code=400, detail=str(e)) from None
    result = await asyncio.to_thread(detect_frame, pipeline, frame)
    return FrameSchema.from_result(result)
