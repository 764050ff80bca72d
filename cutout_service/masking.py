"""Turn raw segmentation output into a binary keep/discard mask."""

from __future__ import annotations

import logging

import numpy as np

from .errors import DimensionMismatch
from .segmentation import SegmentationResult

logger = logging.getLogger(__name__)

MASK_KEEP = 255
MASK_DISCARD = 0


def _confidence(data: np.ndarray) -> np.ndarray:
    """uint8 confidence images store intensity; everything else is already [0, 1]."""
    if data.dtype == np.uint8:
        return data.astype(np.float64) / 255.0
    return np.asarray(data, dtype=np.float64)


def build_mask(result: SegmentationResult, width: int, height: int, threshold: float = 0.7) -> np.ndarray:
    """
    Build a (height, width) uint8 mask: 255 where the subject is, 0 elsewhere.

    Discrete results keep every non-zero label. Probability results keep a
    pixel only when its confidence is strictly above `threshold`, so ties
    resolve to background.

    Raises:
        DimensionMismatch: when the result grid is not (height, width).
        ValueError: when `threshold` is outside [0, 1].
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("threshold must be within [0, 1]")

    data = result.data
    if data.ndim == 3 and data.shape[2] == 1:
        data = data[..., 0]
    if data.ndim != 2 or data.shape != (height, width):
        actual = (data.shape[1], data.shape[0]) if data.ndim >= 2 else (0, 0)
        raise DimensionMismatch(expected=(width, height), actual=actual)

    if result.mode == "discrete":
        keep = data != 0
    else:
        keep = _confidence(data) > threshold

    mask = np.where(keep, MASK_KEEP, MASK_DISCARD).astype(np.uint8)
    logger.debug(
        "build_mask: mode=%s threshold=%.3f kept=%.2f%%",
        result.mode,
        threshold,
        float(np.mean(keep)) * 100.0 if keep.size else 0.0,
    )
    return mask
