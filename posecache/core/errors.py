"""Exception types raised by model loading and output parsing."""

from __future__ import annotations


class PoseCacheError(Exception):
    """Base class for package errors."""


class ModelUnavailable(PoseCacheError):
    """Model failed to load or exposes no usable input shape."""


class MalformedOutput(PoseCacheError):
    """Model output tensor has a shape no parser recognizes."""

    def __init__(self, shape: tuple[int, ...]) -> None:
        super().__init__(f"unrecognized model output shape: {tuple(shape)}")
        self.shape = tuple(shape)
