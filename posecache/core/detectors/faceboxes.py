"""FaceBoxes face detector.

Full-frame detector returning face boxes plus a normalized crop of each face,
ready for downstream face models.
"""

from __future__ import annotations

import logging

import numpy as np

from posecache.core.backends.base import DYNAMIC_INPUT_SIZE, ModelHandle, TensorBackend
from posecache.core.config.settings import PoseCacheSettings
from posecache.core.detectors.movenet import DEFAULT_INPUT_SIZE, resolve_model_path
from posecache.core.errors import MalformedOutput, ModelUnavailable
from posecache.core.roi import enlarge_face_box
from posecache.core.types import FaceResult, Frame

logger = logging.getLogger(__name__)

FACE_ENLARGE = 1.1


class FaceBoxes:
    """Face detector over a three-output (scores, boxes, count) graph model."""

    def __init__(self, backend: TensorBackend, model: ModelHandle, enlarge: float = FACE_ENLARGE):
        self.backend = backend
        self.model = model
        self.enlarge = enlarge
        size = model.input_size or 0
        self.input_size = DEFAULT_INPUT_SIZE if size == DYNAMIC_INPUT_SIZE else int(size)

    @classmethod
    def load(cls, backend: TensorBackend, config: PoseCacheSettings) -> FaceBoxes | None:
        """Load the face detector, returning None (and logging) on failure."""

        detector = config.face.detector
        path = resolve_model_path(config.model_base_path, detector.model_path)
        try:
            model = backend.load_model(path, input_size=detector.input_size)
        except ModelUnavailable as e:
            logger.warning("load model failed: %s (%s)", detector.model_path, e)
            return None
        if config.debug:
            logger.info("load model: %s", model.name)
        return cls(backend, model)

    def estimate_faces(self, frame: Frame, config: PoseCacheSettings) -> list[FaceResult]:
        if not self.input_size:
            return []
        h, w = int(frame.shape[-3]), int(frame.shape[-2])
        min_conf = config.face.detector.min_confidence
        with self.backend.scope() as t:
            resized = t.track(self.backend.resize(frame, self.input_size))
            cast = t.track(self.backend.cast(resized, np.int32))
            outputs = t.track(self.backend.forward(self.model, cast))
            if not isinstance(outputs, list) or len(outputs) < 2:
                raise MalformedOutput(tuple(np.shape(outputs)))
            scores = np.asarray(outputs[0]).reshape(-1)
            boxes = np.squeeze(np.asarray(outputs[1]))
            if boxes.ndim == 1:
                boxes = boxes.reshape(1, -1)
            if boxes.ndim != 2 or boxes.shape[-1] != 4:
                raise MalformedOutput(tuple(np.shape(outputs[1])))

            results: list[FaceResult] = []
            for i, raw in enumerate(boxes):
                if i >= len(scores) or not scores[i] > min_conf:
                    continue
                crop = enlarge_face_box(
                    (float(raw[0]), float(raw[1]), float(raw[2]), float(raw[3])), self.enlarge
                )
                box_raw = (crop[1], crop[0], crop[3] - crop[1], crop[2] - crop[0])
                box = (
                    float(int(box_raw[0] * w)),
                    float(int(box_raw[1] * h)),
                    float(int(box_raw[2] * w)),
                    float(int(box_raw[3] * h)),
                )
                face = t.track(self.backend.crop_and_resize(frame, crop, self.input_size))
                # Scaled copy outlives the scope; the backend buffer does not.
                image = np.asarray(face, dtype=np.float32) / 255.0
                results.append(
                    FaceResult(confidence=float(scores[i]), box=box, box_raw=box_raw, image=image)
                )
        return results
