import logging
import sys

import numpy as np

from posecache.core.backends.base import DYNAMIC_INPUT_SIZE, TensorBackend
from posecache.core.config.settings import BodyConfig, PoseCacheSettings
from posecache.core.detectors.movenet import MoveNet
from posecache.core.errors import ModelUnavailable


def _row(score, n_kpts=17, kp_score=0.9, cx=0.5, cy=0.5):
    row = np.zeros(56, dtype=np.float64)
    for i in range(n_kpts):
        row[3 * i + 0] = cy + 0.01 * (i - 8)
        row[3 * i + 1] = cx + 0.01 * (i - 8)
        row[3 * i + 2] = kp_score
    row[55] = score
    return row


def _multipose(*rows):
    if not rows:
        return np.zeros((1, 0, 56), dtype=np.float64)
    return np.array([list(rows)], dtype=np.float64)


class ScriptedModel:
    """Returns queued outputs; the last one repeats forever."""

    name = "scripted"

    def __init__(self, outputs, input_size=192, on_predict=None):
        self.outputs = list(outputs)
        self.input_size = input_size
        self.on_predict = on_predict
        self.dtypes = []

    def predict(self, tensor):
        self.dtypes.append(tensor.dtype)
        if self.on_predict is not None:
            self.on_predict()
        out = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(out, Exception):
            raise out
        return out


class RecordingBackend(TensorBackend):
    def __init__(self, model=None):
        super().__init__()
        self.model = model
        self.ops = []

    def load_model(self, path, input_size=None):
        self.ops.append(("load", path))
        if self.model is None:
            raise ModelUnavailable(path)
        return self.model

    def crop_and_resize(self, tensor, box, size):
        self.ops.append(("crop", box))
        return self._register(np.zeros((1, size, size, 3), dtype=np.float32))

    def resize(self, tensor, size):
        self.ops.append(("resize", size))
        return self._register(np.zeros((1, size, size, 3), dtype=np.float32))

    def cast(self, tensor, dtype):
        return self._register(np.asarray(tensor).astype(dtype))


def _config(skip_frame=True, skip_frames=0, max_detected=1):
    return PoseCacheSettings(
        skip_frame=skip_frame,
        body=BodyConfig(skip_frames=skip_frames, max_detected=max_detected, min_confidence=0.2),
    )


def _kinds(backend):
    return [op[0] for op in backend.ops if op[0] != "load"]


FRAME = np.zeros((100, 200, 3), dtype=np.uint8)


def test_predict_without_model_returns_empty():
    detector = MoveNet(RecordingBackend())
    assert detector.predict(FRAME, _config()) == []
    assert detector.cache.skipped == sys.maxsize


def test_load_failure_is_logged_and_predict_stays_empty(caplog):
    backend = RecordingBackend(model=None)
    detector = MoveNet(backend)
    with caplog.at_level(logging.WARNING):
        assert detector.load(_config()) is None
    assert "load model failed" in caplog.text
    assert detector.predict(FRAME, _config()) == []


def test_load_reuses_model_and_resolves_dynamic_input_size():
    model = ScriptedModel([_multipose()], input_size=DYNAMIC_INPUT_SIZE)
    backend = RecordingBackend(model)
    detector = MoveNet(backend)
    cfg = _config()
    cfg.model_base_path = "/models"
    assert detector.load(cfg) is model
    assert detector.load(cfg) is model
    assert [op for op in backend.ops if op[0] == "load"] == [("load", "/models/movenet-multipose.onnx")]
    assert detector.input_size == 256


def test_model_without_input_shape_returns_empty():
    detector = MoveNet(RecordingBackend(), model=ScriptedModel([_multipose()], input_size=None))
    assert detector.predict(FRAME, _config()) == []


def test_first_frame_runs_full_inference_with_skip_disabled():
    model = ScriptedModel([_multipose(_row(0.9))])
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)

    bodies = detector.predict(FRAME, _config(skip_frame=False))

    assert _kinds(backend) == ["resize"]
    assert detector.cache.skipped == 0
    assert len(bodies) == 1
    assert len(detector.cache.boxes) == 1
    assert model.dtypes == [np.int32]


def test_skip_disabled_clears_boxes_before_every_inference():
    seen = []
    detector = None

    def _snapshot():
        seen.append(len(detector.cache.boxes))

    model = ScriptedModel([_multipose(_row(0.9))], on_predict=_snapshot)
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)
    cfg = _config(skip_frame=False, skip_frames=5)

    for _ in range(4):
        detector.predict(FRAME, cfg)

    assert seen == [0, 0, 0, 0]
    assert _kinds(backend) == ["resize"] * 4
    assert detector.hits == 0


def test_skip_frames_reuse_cached_results_then_refresh():
    model = ScriptedModel([_multipose(_row(0.9))])
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)
    cfg = _config(skip_frame=True, skip_frames=3)

    first = detector.predict(FRAME, cfg)
    counters = [detector.cache.skipped]
    for _ in range(3):
        assert detector.predict(FRAME, cfg) is first
        counters.append(detector.cache.skipped)

    fifth = detector.predict(FRAME, cfg)
    counters.append(detector.cache.skipped)

    assert counters == [0, 1, 2, 3, 0]
    assert fifth is not first
    # frame 5 reuses the cached box: one crop, no full-frame fallback
    assert _kinds(backend) == ["resize", "crop"]
    assert (detector.hits, detector.misses) == (3, 2)


def test_cached_boxes_short_of_max_detected_fall_back_to_full_frame():
    model = ScriptedModel(
        [
            _multipose(_row(0.9)),  # frame 1 full frame
            _multipose(),  # frame 2 crop finds nothing
            _multipose(_row(0.7)),  # frame 2 fallback
        ]
    )
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)
    cfg = _config(skip_frame=True, skip_frames=0)

    detector.predict(FRAME, cfg)
    bodies = detector.predict(FRAME, cfg)

    assert _kinds(backend) == ["resize", "crop", "resize"]
    assert [b.score for b in bodies] == [0.7]
    assert detector.cache.bodies is bodies


def test_not_enough_cached_boxes_skips_crop_path():
    model = ScriptedModel([_multipose(_row(0.9))])
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)
    cfg = _config(skip_frame=True, skip_frames=0, max_detected=2)

    detector.predict(FRAME, cfg)
    detector.predict(FRAME, cfg)

    assert _kinds(backend) == ["resize", "resize"]


def test_only_bodies_with_more_than_half_keypoints_seed_boxes():
    model = ScriptedModel(
        [_multipose(_row(0.9, n_kpts=9, cx=0.3), _row(0.8, n_kpts=8, cx=0.7))]
    )
    detector = MoveNet(RecordingBackend(model), model=model)

    bodies = detector.predict(FRAME, _config(max_detected=2))

    assert [len(b.keypoints) for b in bodies] == [9, 8]
    assert len(detector.cache.boxes) == 1
    y1, x1, y2, x2 = detector.cache.boxes[0]
    assert 0.0 <= x1 < 0.3 < x2 <= 1.0
    assert 0.0 <= y1 < y2 <= 1.0


def test_malformed_output_yields_no_results(caplog):
    model = ScriptedModel([np.zeros((1, 4, 7))])
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)

    with caplog.at_level(logging.WARNING):
        assert detector.predict(FRAME, _config()) == []
    assert "unrecognized model output shape" in caplog.text
    assert detector.cache.boxes == []
    assert backend.memory()["tensors"] == 0


def test_intermediate_tensors_are_disposed():
    model = ScriptedModel([_multipose(_row(0.9))])
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)
    cfg = _config(skip_frame=True, skip_frames=0)

    for _ in range(3):
        detector.predict(FRAME, cfg)
        assert backend.memory()["tensors"] == 0


def test_forward_failure_degrades_to_empty_and_next_frame_retries(caplog):
    model = ScriptedModel([RuntimeError("boom"), _multipose(_row(0.9))])
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)
    cfg = _config(skip_frame=True, skip_frames=0)

    with caplog.at_level(logging.ERROR):
        assert detector.predict(FRAME, cfg) == []
    assert "Body model pass failed" in caplog.text
    assert backend.memory()["tensors"] == 0
    assert detector.cache.boxes == []
    assert detector.cache.skipped == 0

    bodies = detector.predict(FRAME, cfg)
    assert len(bodies) == 1
    assert _kinds(backend) == ["resize", "resize"]
    assert backend.memory()["tensors"] == 0


def test_failed_crop_pass_falls_back_to_full_frame():
    model = ScriptedModel([_multipose(_row(0.9)), RuntimeError("boom"), _multipose(_row(0.8))])
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)
    cfg = _config(skip_frame=True, skip_frames=0)

    detector.predict(FRAME, cfg)
    bodies = detector.predict(FRAME, cfg)

    assert _kinds(backend) == ["resize", "crop", "resize"]
    assert [b.score for b in bodies] == [0.8]
    assert len(detector.cache.boxes) == 1
    assert backend.memory()["tensors"] == 0


def test_reset_forces_full_inference():
    model = ScriptedModel([_multipose(_row(0.9))])
    backend = RecordingBackend(model)
    detector = MoveNet(backend, model=model)
    cfg = _config(skip_frame=True, skip_frames=10)

    detector.predict(FRAME, cfg)
    detector.reset()
    detector.predict(FRAME, cfg)

    assert _kinds(backend) == ["resize", "resize"]
    assert detector.misses == 2
