"""HTTP front end for the detection pipeline (uvicorn entrypoint)."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from posecache.api.routes import config, detect, health, stats


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Drop the singleton pipeline on shutdown.

    Models load lazily on the first request, so startup has nothing to do.
    """

    from posecache.api.services.state import reset_pipeline

    yield
    reset_pipeline()


app = FastAPI(
    title="posecache",
    description="Pose detection with a frame-to-frame ROI cache",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(config.router)
app.include_router(detect.router)
app.include_router(stats.router)


def main() -> None:
    """Serve the API; `PC_HOST` and `PC_PORT` pick the bind address."""

    uvicorn.run(
        "posecache.api.main:app",
        host=os.getenv("PC_HOST", "0.0.0.0"),
        port=int(os.getenv("PC_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
