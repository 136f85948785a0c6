from __future__ import annotations

import argparse
import json
from dataclasses import asdict, is_dataclass
from pathlib import Path

import cv2
import numpy as np

from posecache.core.analytics.pipeline import DetectionPipeline
from posecache.core.config.settings import PoseCacheSettings, load_settings, merge_settings
from posecache.core.overlay.draw import draw_overlays


def _to_jsonable(obj):
    if is_dataclass(obj):
        return _to_jsonable(asdict(obj))
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, dict):
        return {str(k): _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(v) for v in obj]
    return obj


def _settings_from_args(args) -> PoseCacheSettings:
    patch: dict = {"body": {}}
    if args.model:
        patch["body"]["model_path"] = args.model
    if args.skip_frames is not None:
        patch["body"]["skip_frames"] = args.skip_frames
    if args.max_detected is not None:
        patch["body"]["max_detected"] = args.max_detected
    if args.no_skip_frame:
        patch["skip_frame"] = False
    return merge_settings(load_settings(), patch)


def run(args):
    cap = cv2.VideoCapture(args.input)
    if not cap.isOpened():
        raise SystemExit(f"Cannot open video {args.input}")
    pipeline = DetectionPipeline(_settings_from_args(args))
    if not args.mock:
        pipeline.load()
    writer = None
    outputs = []
    while True:
        ok, frame = cap.read()
        if not ok:
            break
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        result = pipeline.detect(rgb)
        if args.overlay:
            if writer is None:
                fps = cap.get(cv2.CAP_PROP_FPS) or 10.0
                writer = cv2.VideoWriter(
                    args.overlay,
                    cv2.VideoWriter_fourcc(*"MJPG"),
                    fps,
                    (frame.shape[1], frame.shape[0]),
                )
            writer.write(cv2.cvtColor(draw_overlays(rgb, result), cv2.COLOR_RGB2BGR))
        payload = _to_jsonable(result)
        for face in payload.get("face", []):
            face.pop("image", None)
        outputs.append(payload)
        if args.max_frames and len(outputs) >= args.max_frames:
            break
    cap.release()
    if writer is not None:
        writer.release()
    out_path = Path(args.output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(outputs, f, indent=2)
    print(f"Wrote {len(outputs)} frame results to {out_path}")
    print(f"Stats: {pipeline.stats()}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run pose detection on a video")
    parser.add_argument("--input", required=True, help="Path to video file")
    parser.add_argument("--output", required=True, help="Where to save JSON output")
    parser.add_argument("--model", default=None, help="Body model path (relative to model_base_path)")
    parser.add_argument("--skip-frames", type=int, default=None)
    parser.add_argument("--max-detected", type=int, default=None)
    parser.add_argument(
        "--no-skip-frame", action="store_true", help="Disable cached result/box reuse"
    )
    parser.add_argument("--overlay", default="", help="Optional annotated video path (MJPG)")
    parser.add_argument("--max-frames", type=int, default=0, help="Limit frames for quick tests")
    parser.add_argument("--mock", action="store_true", help="Do not load any model")
    return parser


if __name__ == "__main__":
    run(build_parser().parse_args())
