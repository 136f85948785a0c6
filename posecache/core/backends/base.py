"""Tensor backend abstractions.

Detectors never touch model runtimes directly: they go through a small backend
contract (load a graph model, run a forward pass, crop/resize/cast tensors and
dispose intermediates) so the runtime can be swapped without affecting the cache
logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, Protocol

import numpy as np

from posecache.core.types import CropBox

# Input size reported by models with a dynamic spatial input.
DYNAMIC_INPUT_SIZE = -1

Size = int | tuple[int, int]


class ModelHandle(Protocol):
    """Loaded graph model as seen by detectors."""

    name: str
    # Square spatial input size, `DYNAMIC_INPUT_SIZE`, or None when unknown.
    input_size: int | None

    def predict(self, tensor: np.ndarray) -> np.ndarray | list[np.ndarray]:
        """Run one forward pass on a batched NHWC tensor."""


def _size_hw(size: Size) -> tuple[int, int]:
    if isinstance(size, tuple):
        return int(size[0]), int(size[1])
    return int(size), int(size)


class TensorScope:
    """Tracks intermediate tensors and disposes all of them on exit.

    Disposal runs whether the enclosed block succeeds or raises.
    """

    def __init__(self, backend: TensorBackend) -> None:
        self._backend = backend
        self._tensors: list[Any] = []

    def track(self, tensor: Any) -> Any:
        self._tensors.append(tensor)
        return tensor

    def close(self) -> None:
        while self._tensors:
            self._backend.dispose(self._tensors.pop())

    def __enter__(self) -> TensorScope:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class TensorBackend(ABC):
    """Base class for tensor runtimes.

    Tensors produced by backend operations stay registered (and referenced) until
    `dispose()` is called, which mirrors how accelerator runtimes hold device
    buffers. `memory()` reports how many are currently live.
    """

    def __init__(self) -> None:
        self._live: dict[int, np.ndarray] = {}

    def _register(self, tensor: np.ndarray) -> np.ndarray:
        self._live[id(tensor)] = tensor
        return tensor

    def dispose(self, tensor: Any) -> None:
        """Release a tensor (or a list/tuple of tensors) produced by this backend."""

        if tensor is None:
            return
        if isinstance(tensor, (list, tuple)):
            for t in tensor:
                self.dispose(t)
            return
        self._live.pop(id(tensor), None)

    def memory(self) -> dict[str, int]:
        """Return live tensor count and their total size in bytes."""

        return {
            "tensors": len(self._live),
            "bytes": int(sum(t.nbytes for t in self._live.values())),
        }

    def scope(self) -> TensorScope:
        return TensorScope(self)

    def forward(self, model: ModelHandle, tensor: np.ndarray) -> np.ndarray | list[np.ndarray]:
        """Run `model` on `tensor`; outputs are registered like any other tensor."""

        out = model.predict(tensor)
        if isinstance(out, (list, tuple)):
            return [self._register(np.asarray(o)) for o in out]
        return self._register(np.asarray(out))

    @abstractmethod
    def load_model(self, path: str, input_size: int | None = None) -> ModelHandle:
        """Load a graph model or raise `ModelUnavailable`."""

        raise NotImplementedError

    @abstractmethod
    def crop_and_resize(self, tensor: np.ndarray, box: CropBox, size: Size) -> np.ndarray:
        """Crop a normalized (y1, x1, y2, x2) box and resize it to `size`."""

        raise NotImplementedError

    @abstractmethod
    def resize(self, tensor: np.ndarray, size: Size) -> np.ndarray:
        """Resize the whole image to `size`."""

        raise NotImplementedError

    @abstractmethod
    def cast(self, tensor: np.ndarray, dtype: Any) -> np.ndarray:
        """Return `tensor` converted to `dtype`."""

        raise NotImplementedError
