"""
High-level background removal pipeline.

`remove_background` is the main entry point used by both the HTTP API and
the local CLI. It keeps orchestration simple:
image -> segmentation -> mask -> smoothing -> composite + edge restoration.

`process_image_bytes` wraps it with decoding and PNG encoding.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from . import config
from .compositing import compose_cutout
from .errors import BackendFailure, CutoutError, DimensionMismatch, ModelNotReady, PreconditionFailure
from .masking import build_mask
from .model_loader import get_backend
from .preprocessing import decode_image, encode_png, ensure_rgba
from .refinement import smooth_mask
from .segmentation import SegmentationBackend, SegmentationConfig, SegmentationResult

logger = logging.getLogger(__name__)


@dataclass
class CutoutResult:
    image: np.ndarray  # (H, W, 4) uint8 RGBA
    mask: np.ndarray  # (H, W) uint8, final alpha
    restored_count: int = 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


def _run_segmentation(
    backend: SegmentationBackend, image: np.ndarray, options: config.PipelineOptions
) -> SegmentationResult:
    seg_config = SegmentationConfig(
        mode=backend.mode,
        threshold=options.confidence_threshold,
        resolution=options.resolution,
    )
    try:
        result = backend.segment(image, seg_config)
    except CutoutError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise BackendFailure(f"Segmentation failed: {exc}") from exc
    if not isinstance(result, SegmentationResult):
        raise BackendFailure("Segmentation backend returned no result")
    if result.mode != backend.mode:
        raise BackendFailure(f"Backend '{backend.mode}' returned a '{result.mode}' result")
    return result


def _maybe_dump_debug(rgba: np.ndarray, mask: np.ndarray, debug_dir: Path) -> None:
    """Optionally write debug visualizations when DEBUG is enabled."""
    try:
        debug_dir.mkdir(parents=True, exist_ok=True)
        cv2.imwrite(str(debug_dir / "mask.png"), mask)

        overlay = np.ascontiguousarray(rgba[..., :3]).copy()
        overlay[mask == 0] = [255, 0, 0]  # discarded pixels in red (RGB)
        cv2.imwrite(str(debug_dir / "discard_overlay.png"), cv2.cvtColor(overlay, cv2.COLOR_RGB2BGR))
        logger.debug("pipeline: wrote debug outputs to %s", debug_dir)
    except Exception as exc:  # noqa: BLE001
        logger.warning("pipeline: failed to write debug outputs: %s", exc)


def remove_background(
    image: Optional[np.ndarray],
    backend: SegmentationBackend,
    options: Optional[config.PipelineOptions] = None,
) -> CutoutResult:
    """
    Segment `image` and return it with the background made transparent.

    The source array is never modified.

    Raises:
        PreconditionFailure: no image supplied (ModelNotReady when the backend is not loaded).
        BackendFailure: the segmentation call failed.
        DimensionMismatch: segmentation output does not match the image size.
    """
    if image is None or image.size == 0:
        raise PreconditionFailure("No source image supplied")
    if not backend.is_ready():
        raise ModelNotReady("Segmentation model is not loaded")

    options = options or config.PipelineOptions.from_settings()
    source = ensure_rgba(image)
    height, width = source.shape[:2]

    result = _run_segmentation(backend, source, options)
    if (result.width, result.height) != (width, height):
        raise DimensionMismatch(expected=(width, height), actual=(result.width, result.height))

    mask = build_mask(result, width, height, threshold=options.confidence_threshold)

    refine = options.refinement_enabled
    if refine and options.smoothing_enabled:
        mask = smooth_mask(mask, radius=options.blur_radius, midpoint=options.binarize_midpoint)

    rgba, restored_count = compose_cutout(
        source,
        mask,
        restore_edges=refine and options.edge_restoration_enabled,
        neighbor_majority_count=options.neighbor_majority_count,
        midpoint=options.binarize_midpoint,
    )
    logger.info(
        "remove_background: %dx%d mode=%s refine=%s restored=%d",
        width,
        height,
        result.mode,
        refine,
        restored_count,
    )

    settings = config.get_settings()
    if settings.debug:
        _maybe_dump_debug(rgba, rgba[..., 3], Path(settings.debug_output_dir))

    return CutoutResult(image=rgba, mask=rgba[..., 3].copy(), restored_count=restored_count)


def process_image_bytes(
    image_bytes: bytes,
    backend: Optional[SegmentationBackend] = None,
    options: Optional[config.PipelineOptions] = None,
) -> bytes:
    """
    Full pipeline from encoded image bytes to RGBA PNG bytes.

    Raises:
        CutoutError: see `remove_background`; InvalidImage for undecodable input.
    """
    backend = backend or get_backend()
    if not backend.is_ready():
        raise ModelNotReady("Segmentation model is not loaded")

    image = decode_image(image_bytes)
    result = remove_background(image, backend, options=options)
    return encode_png(result.image)
