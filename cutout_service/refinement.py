"""
Mask refinement: speckle removal and edge restoration.

Both passes work on binary uint8 masks and never change the mask size.
Smoothing blurs then re-binarizes so no semi-transparent halo survives;
edge restoration recovers background-labelled pixels that are mostly
surrounded by the subject (hair strands, fingers).
"""

from __future__ import annotations

import logging
import math
from typing import Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_MIDPOINT = 128
DEFAULT_NEIGHBOR_MAJORITY = 5


def binarize_mask(mask: np.ndarray, midpoint: int = DEFAULT_MIDPOINT) -> np.ndarray:
    """Values above `midpoint` become 255, everything else 0."""
    return np.where(mask > midpoint, 255, 0).astype(np.uint8)


def _gaussian_blur(mask: np.ndarray, radius: float) -> np.ndarray:
    ksize = 2 * math.ceil(3 * radius) + 1
    kernel = cv2.getGaussianKernel(ksize, radius).astype(np.float32)
    pad = ksize // 2
    # Edge padding keeps tiny masks valid for kernels larger than the image.
    padded = np.pad(mask.astype(np.float32), pad, mode="edge")
    blurred = cv2.sepFilter2D(padded, -1, kernel, kernel)
    return blurred[pad:-pad, pad:-pad]


def smooth_mask(mask: np.ndarray, radius: float = 1.0, midpoint: int = DEFAULT_MIDPOINT) -> np.ndarray:
    """Blur with a small Gaussian (sigma=`radius`) and snap back to 0/255."""
    if radius <= 0:
        return binarize_mask(mask, midpoint)
    return binarize_mask(_gaussian_blur(mask, radius), midpoint)


def count_kept_neighbors(mask: np.ndarray, midpoint: int = DEFAULT_MIDPOINT) -> np.ndarray:
    """
    Number of 8-neighbours above `midpoint` for every interior pixel.

    Returns an array of shape (H - 2, W - 2); border pixels have no full
    3x3 neighbourhood and are not represented.
    """
    kept = (mask > midpoint).astype(np.uint8)
    h, w = kept.shape
    if h < 3 or w < 3:
        return np.zeros((max(h - 2, 0), max(w - 2, 0)), dtype=np.uint8)
    counts = np.zeros((h - 2, w - 2), dtype=np.uint8)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dy == 0 and dx == 0:
                continue
            counts += kept[1 + dy : h - 1 + dy, 1 + dx : w - 1 + dx]
    return counts


def restore_edges(
    mask: np.ndarray,
    neighbor_majority_count: int = DEFAULT_NEIGHBOR_MAJORITY,
    midpoint: int = DEFAULT_MIDPOINT,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Flip discarded interior pixels to kept when enough neighbours are kept.

    Neighbour counts are taken from the input as a whole, so a restored pixel
    does not help its neighbours in the same pass. The input is left untouched.

    Returns:
        (refined mask, boolean map of restored pixels)
    """
    if not 1 <= neighbor_majority_count <= 8:
        raise ValueError("neighbor_majority_count must be between 1 and 8")

    h, w = mask.shape
    restored = np.zeros((h, w), dtype=bool)
    if h >= 3 and w >= 3:
        counts = count_kept_neighbors(mask, midpoint)
        restored[1:-1, 1:-1] = (mask[1:-1, 1:-1] == 0) & (counts >= neighbor_majority_count)

    refined = mask.copy()
    refined[restored] = 255
    logger.debug("restore_edges: restored=%d majority=%d", int(restored.sum()), neighbor_majority_count)
    return refined, restored
