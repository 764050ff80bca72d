"""Apply a mask to the source pixels to produce the transparent cutout."""

from __future__ import annotations

from typing import Tuple

import numpy as np

from . import refinement
from .errors import DimensionMismatch


def apply_mask(source: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """
    Copy `source` and replace its alpha with `mask`.

    RGB is kept even where alpha is 0 so re-compositing never shows a dark
    fringe. The source buffer is not modified.
    """
    if source.shape[:2] != mask.shape:
        raise DimensionMismatch(
            expected=(source.shape[1], source.shape[0]),
            actual=(mask.shape[1], mask.shape[0]),
        )
    output = source.copy()
    output[..., 3] = mask
    return output


def compose_cutout(
    source: np.ndarray,
    mask: np.ndarray,
    restore_edges: bool = True,
    neighbor_majority_count: int = refinement.DEFAULT_NEIGHBOR_MAJORITY,
    midpoint: int = refinement.DEFAULT_MIDPOINT,
) -> Tuple[np.ndarray, int]:
    """
    Composite `source` with `mask`, optionally recovering edge pixels.

    Restoration reads the alpha of the composited buffer; restored pixels take
    their RGB from the untouched source and become fully opaque.

    Returns:
        (RGBA output, number of restored pixels)
    """
    composited = apply_mask(source, mask)
    if not restore_edges:
        return composited, 0

    _, restored = refinement.restore_edges(
        composited[..., 3],
        neighbor_majority_count=neighbor_majority_count,
        midpoint=midpoint,
    )
    composited[restored, :3] = source[restored, :3]
    composited[restored, 3] = 255
    return composited, int(restored.sum())
