"""CLI: benchmark the detection pipeline on a still image.

Runs one warmup detection, then a timed loop over the same frame, and prints
per-stage percentiles plus backend memory. Optionally writes a JSON report.
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from posecache.core.analytics.pipeline import DetectionPipeline
from posecache.core.config.settings import load_settings, merge_settings


def _percentiles(values: list[float]) -> dict[str, float]:
    """Compute a small set of percentiles for a list of timings."""

    if not values:
        return {"min": 0.0, "p50": 0.0, "p95": 0.0, "p99": 0.0, "max": 0.0, "mean": 0.0}
    arr = np.array(values, dtype=np.float64)
    return {
        "min": float(np.min(arr)),
        "p50": float(np.percentile(arr, 50)),
        "p95": float(np.percentile(arr, 95)),
        "p99": float(np.percentile(arr, 99)),
        "max": float(np.max(arr)),
        "mean": float(np.mean(arr)),
    }


def _load_image(path: str) -> np.ndarray:
    """Read an image via OpenCV and return it as RGB."""

    bgr = cv2.imread(path, cv2.IMREAD_COLOR)
    if bgr is None:
        raise SystemExit(f"Cannot read image: {path}")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def run_bench(pipeline: DetectionPipeline, frame: np.ndarray, loops: int) -> dict[str, Any]:
    """Warm up once, then time `loops` detections on `frame`."""

    t0 = time.perf_counter()
    pipeline.detect(frame)
    warmup_ms = (time.perf_counter() - t0) * 1000.0

    total_ms: list[float] = []
    body_ms: list[float] = []
    face_ms: list[float] = []
    cached = 0
    for _ in range(max(0, loops)):
        t1 = time.perf_counter()
        result = pipeline.detect_with_profile(frame)
        total_ms.append((time.perf_counter() - t1) * 1000.0)
        profile = result.profile or {}
        body_ms.append(float(profile.get("body_ms", 0.0)))
        face_ms.append(float(profile.get("face_ms", 0.0)))
        cached += int(profile.get("body_cached", 0.0) >= 0.5)

    return {
        "frame_size": [int(frame.shape[1]), int(frame.shape[0])],
        "loops": loops,
        "warmup_ms": warmup_ms,
        "cached_ratio": (cached / loops) if loops > 0 else 0.0,
        "stages_ms": {
            "body": _percentiles(body_ms),
            "face": _percentiles(face_ms),
            "total": _percentiles(total_ms),
        },
        "stats": pipeline.stats(),
    }


def main() -> None:
    """CLI entrypoint for benchmarking a single image."""

    parser = argparse.ArgumentParser(description="Benchmark the detection pipeline on an image")
    parser.add_argument("--input", required=True, help="Image file path")
    parser.add_argument("--loops", type=int, default=20)
    parser.add_argument("--face", action="store_true", help="Also run the face detector")
    parser.add_argument(
        "--no-skip-frame", action="store_true", help="Force fresh inference every loop"
    )
    parser.add_argument("--output", default="", help="Optional JSON report path")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    patch: dict[str, Any] = {"debug": True}
    if args.face:
        patch["face"] = {"enabled": True}
    if args.no_skip_frame:
        patch["skip_frame"] = False
    pipeline = DetectionPipeline(merge_settings(load_settings(), patch))
    loaded = pipeline.load()
    print(f"Loaded: {loaded}")
    print(f"Memory state: {pipeline.backend.memory()}")

    frame = _load_image(args.input)
    print(f"Processing: {frame.shape}")
    report = run_bench(pipeline, frame, args.loops)
    print(f"Warmup: {round(report['warmup_ms'])} ms")
    print(f"Average: {round(report['stages_ms']['total']['mean'])} ms")
    print(f"Memory state: {report['stats']['memory']}")

    if args.output:
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)
        print(f"Wrote report to {out_path}")


if __name__ == "__main__":
    main()
