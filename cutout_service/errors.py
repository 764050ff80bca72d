"""Exceptions raised by the cutout pipeline."""

from __future__ import annotations


class CutoutError(Exception):
    """Base class for every failure of a background-removal request."""


class PreconditionFailure(CutoutError):
    """The request cannot start: no image supplied or no model ready."""


class ModelNotReady(PreconditionFailure):
    """The segmentation model is not loaded or failed to load."""


class InvalidImage(PreconditionFailure):
    """The uploaded payload is not an acceptable image."""


class DimensionMismatch(CutoutError):
    """Segmentation output and source image disagree on width/height."""

    def __init__(self, expected: tuple[int, int], actual: tuple[int, int]):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Segmentation size {actual[0]}x{actual[1]} does not match image size "
            f"{expected[0]}x{expected[1]}"
        )


class BackendFailure(CutoutError):
    """The segmentation backend raised or returned something unusable."""
