"""Liveness endpoint."""

from fastapi import APIRouter

from posecache.api.services.state import pipeline_loaded

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """Report liveness and whether the detection pipeline has been built yet.

    Never loads models; the pipeline is built lazily by the first `/detect` or
    `/stats` request.
    """

    return {"status": "ok", "pipeline": "ready" if pipeline_loaded() else "idle"}
