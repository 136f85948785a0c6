import contextlib
import sys

import numpy as np

import posecache.core.backends.yolo as yolo_mod


class _FakeResult:
    def __init__(self, boxes=None, keypoints=None):
        self.boxes = boxes
        self.keypoints = keypoints


class _FakeBoxes:
    def __init__(self, data):
        self.data = data

    def __len__(self):
        return int(self.data.shape[0])


class _FakeKeypoints:
    def __init__(self, data):
        self.data = data


class _FakeTensor:
    def __init__(self, arr):
        self._arr = arr
        self.cpu_called = False

    @property
    def shape(self):
        return self._arr.shape

    def __len__(self):
        return len(self._arr)

    def cpu(self):
        self.cpu_called = True
        return self

    def numpy(self):
        return self._arr


class _FakeYOLO:
    def __init__(self, model_name, task=None):
        self.model_name = model_name
        self.task = task
        self.overrides = {}
        self.to_calls = []
        self.fuse_calls = 0
        self.predict_calls = []

    def to(self, device):
        self.to_calls.append(device)
        return self

    def fuse(self):
        self.fuse_calls += 1
        return self

    def predict(self, frame, **kwargs):
        self.predict_calls.append((frame, kwargs))
        return []


def _model(monkeypatch, **kwargs):
    monkeypatch.setattr(yolo_mod, "YOLO", _FakeYOLO)
    return yolo_mod.YoloPoseModel(model_name="m-pose.pt", **kwargs)


def test_init_uses_pose_task_cpu_and_default_input_size(monkeypatch):
    model = _model(monkeypatch)
    assert model.model.task == "pose"
    assert model.model.to_calls == ["cpu"]
    assert model.model.fuse_calls == 1
    assert model.input_size == 640


def test_input_size_from_overrides_or_argument(monkeypatch):
    class _SizedYOLO(_FakeYOLO):
        def __init__(self, model_name, task=None):
            super().__init__(model_name, task)
            self.overrides = {"imgsz": 320}

    monkeypatch.setattr(yolo_mod, "YOLO", _SizedYOLO)
    assert yolo_mod.YoloPoseModel(model_name="m-pose.pt").input_size == 320
    assert yolo_mod.YoloPoseModel(model_name="m-pose.pt", input_size=256).input_size == 256


def test_onnx_model_does_not_call_to(monkeypatch):
    monkeypatch.setattr(yolo_mod, "YOLO", _FakeYOLO)
    model = yolo_mod.YoloPoseModel(model_name="m-pose.onnx")
    assert model.is_onnx is True
    assert model.model.to_calls == []


def test_init_ignores_to_and_fuse_exceptions(monkeypatch):
    class _BadYOLO(_FakeYOLO):
        def to(self, device):
            raise RuntimeError("no to")

        def fuse(self):
            raise RuntimeError("no fuse")

    monkeypatch.setattr(yolo_mod, "YOLO", _BadYOLO)
    model = yolo_mod.YoloPoseModel(model_name="m-pose.pt")
    assert model.is_onnx is False


def test_configure_torch_threads_from_env(monkeypatch):
    monkeypatch.setattr(yolo_mod.YoloPoseModel, "_torch_threads_configured", False)

    class _Torch:
        def __init__(self):
            self.num_threads = None
            self.num_interop = None

        def set_num_threads(self, n):
            self.num_threads = n

        def set_num_interop_threads(self, n):
            self.num_interop = n

        @contextlib.contextmanager
        def inference_mode(self):
            yield

    torch = _Torch()
    monkeypatch.setitem(sys.modules, "torch", torch)
    monkeypatch.setenv("PC_TORCH_THREADS", "2")
    monkeypatch.setenv("PC_TORCH_INTEROP_THREADS", "3")

    _model(monkeypatch)
    assert torch.num_threads == 2
    assert torch.num_interop == 3


def test_predict_empty_results(monkeypatch):
    model = _model(monkeypatch)
    out = model.predict(np.zeros((1, 32, 32, 3), dtype=np.int32))
    assert out.shape == (1, 0, 56)


def test_predict_converts_to_bgr_uint8_and_passes_imgsz(monkeypatch):
    model = _model(monkeypatch, input_size=64)
    frame = np.zeros((1, 8, 8, 3), dtype=np.int32)
    frame[..., 0] = 300  # red channel, clipped to 255
    model.predict(frame)

    sent, kwargs = model.model.predict_calls[0]
    assert sent.dtype == np.uint8
    assert int(sent[0, 0, 2]) == 255
    assert int(sent[0, 0, 0]) == 0
    assert kwargs["imgsz"] == 64
    assert kwargs["device"] == "cpu"


def test_predict_builds_multipose_layout(monkeypatch):
    model = _model(monkeypatch)
    data = _FakeTensor(np.array([[10, 20, 30, 60, 0.8, 0]], dtype=np.float32))
    kpts = np.zeros((1, 17, 3), dtype=np.float32)
    kpts[0, 0] = (50, 25, 0.9)  # x, y, conf in pixels
    kd = _FakeTensor(kpts)
    res = _FakeResult(boxes=_FakeBoxes(data), keypoints=_FakeKeypoints(kd))
    model.model.predict = lambda *_a, **_k: [res]

    out = model.predict(np.zeros((1, 100, 100, 3), dtype=np.int32))

    assert out.shape == (1, 1, 56)
    row = out[0, 0]
    np.testing.assert_allclose(row[0:3], [0.25, 0.5, 0.9], rtol=1e-6)
    np.testing.assert_allclose(row[51:56], [0.2, 0.1, 0.6, 0.3, 0.8], rtol=1e-6)
    assert data.cpu_called is True
    assert kd.cpu_called is True


def test_predict_handles_missing_keypoints_or_bad_boxes(monkeypatch):
    model = _model(monkeypatch)
    frame = np.zeros((1, 10, 10, 3), dtype=np.int32)

    no_kpts = _FakeResult(
        boxes=_FakeBoxes(np.array([[1, 2, 3, 4, 0.9, 0]], dtype=np.float32)), keypoints=None
    )
    model.model.predict = lambda *_a, **_k: [no_kpts]
    assert model.predict(frame).shape == (1, 0, 56)

    bad = _FakeResult(
        boxes=_FakeBoxes(np.zeros((1, 3), dtype=np.float32)),
        keypoints=_FakeKeypoints(np.zeros((1, 17, 3), dtype=np.float32)),
    )
    model.model.predict = lambda *_a, **_k: [bad]
    assert model.predict(frame).shape == (1, 0, 56)
