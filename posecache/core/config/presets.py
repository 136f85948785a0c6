from __future__ import annotations

from typing import Any


# Throughput presets for video streams. They only touch the cache knobs:
#
# - skip_frame: allow returning cached results without inference
# - body.skip_frames: how many consecutive frames may reuse cached results
# - body.max_detected: how many cached boxes are needed to try ROI crops


PRESETS: dict[str, dict[str, Any]] = {
    # Fresh inference every frame.
    "accuracy": {
        "skip_frame": False,
        "body": {"skip_frames": 0},
    },
    # Reuse one frame in two.
    "balanced": {
        "skip_frame": True,
        "body": {"skip_frames": 1},
    },
    # Max throughput; results can lag fast motion by a few frames.
    "throughput": {
        "skip_frame": True,
        "body": {"skip_frames": 4},
    },
}


PRESET_LABELS: dict[str, str] = {
    "accuracy": "Accuracy",
    "balanced": "Balanced",
    "throughput": "Throughput",
}


def list_presets() -> list[dict[str, Any]]:
    return [
        {
            "id": preset_id,
            "label": PRESET_LABELS.get(preset_id, preset_id),
            "settings": PRESETS[preset_id],
        }
        for preset_id in PRESETS.keys()
    ]


def preset_patch(preset_id: str) -> dict[str, Any]:
    if preset_id not in PRESETS:
        raise KeyError(preset_id)
    return {k: dict(v) if isinstance(v, dict) else v for k, v in PRESETS[preset_id].items()}
