"""End-to-end tests for the background removal pipeline."""

from __future__ import annotations

from io import BytesIO

import numpy as np
from PIL import Image
import pytest

from cutout_service import config
from cutout_service.config import PipelineOptions
from cutout_service.errors import (
    BackendFailure,
    DimensionMismatch,
    InvalidImage,
    ModelNotReady,
    PreconditionFailure,
)
from cutout_service.pipeline import process_image_bytes, remove_background
from cutout_service.segmentation import SegmentationResult


def test_all_background_grid_is_fully_transparent(make_image, make_backend) -> None:
    source = make_image(3, 3)
    backend = make_backend(np.zeros((3, 3), dtype=np.float32))

    result = remove_background(source, backend, PipelineOptions())

    assert np.all(result.mask == 0)
    assert np.all(result.image[..., 3] == 0)


def test_all_foreground_grid_keeps_everything(make_image, make_backend) -> None:
    source = make_image(3, 3)
    backend = make_backend(np.ones((3, 3), dtype=np.float32))

    result = remove_background(source, backend, PipelineOptions())

    assert np.all(result.mask == 255)
    assert np.all(result.image[..., 3] == 255)
    np.testing.assert_array_equal(result.image[..., :3], source[..., :3])


@pytest.mark.parametrize("smoothing", [True, False])
def test_isolated_hole_is_restored_with_source_colour(make_image, make_backend, smoothing: bool) -> None:
    source = make_image(5, 5)
    labels = np.ones((5, 5), dtype=np.int32)
    labels[2, 2] = 0
    backend = make_backend(labels, mode="discrete")

    result = remove_background(source, backend, PipelineOptions(smoothing_enabled=smoothing))

    assert result.image[2, 2, 3] == 255
    np.testing.assert_array_equal(result.image[2, 2, :3], source[2, 2, :3])
    if not smoothing:
        assert result.restored_count == 1


def test_corner_pixel_keeps_pre_restoration_value(make_image, make_backend) -> None:
    source = make_image(3, 3)
    labels = np.ones((3, 3), dtype=np.int32)
    labels[0, 0] = 0
    backend = make_backend(labels, mode="discrete")

    result = remove_background(
        source, backend, PipelineOptions(smoothing_enabled=False, neighbor_majority_count=1)
    )

    assert result.image[0, 0, 3] == 0
    assert result.restored_count == 0


def test_dimensions_preserved_for_non_square_images(make_image, make_backend, rng) -> None:
    source = make_image(7, 4)
    backend = make_backend(rng.random((4, 7)).astype(np.float32))

    result = remove_background(source, backend)

    assert (result.width, result.height) == (7, 4)
    assert result.image.shape == (4, 7, 4)


def test_alpha_matches_threshold_without_refinement(make_image, make_backend, rng) -> None:
    source = make_image(12, 9)
    probs = rng.random((9, 12)).astype(np.float32)
    backend = make_backend(probs)

    result = remove_background(
        source, backend, PipelineOptions(refinement_enabled=False, confidence_threshold=0.6)
    )

    expected = np.where(probs > 0.6, 255, 0).astype(np.uint8)
    np.testing.assert_array_equal(result.image[..., 3], expected)
    assert result.restored_count == 0


def test_rgb_and_source_preserved(make_image, make_backend, rng) -> None:
    source = make_image(10, 8)
    before = source.copy()
    backend = make_backend(rng.random((8, 10)).astype(np.float32))

    result = remove_background(source, backend)

    kept = result.image[..., 3] > 0
    np.testing.assert_array_equal(result.image[..., :3][kept], source[..., :3][kept])
    np.testing.assert_array_equal(result.image[..., :3], source[..., :3])
    np.testing.assert_array_equal(source, before)


def test_rgb_input_is_promoted(make_image, make_backend) -> None:
    source = make_image(3, 3)[..., :3]
    backend = make_backend(np.ones((3, 3), dtype=np.float32))

    result = remove_background(source, backend)

    assert result.image.shape == (3, 3, 4)


def test_options_reach_backend(make_image, make_backend) -> None:
    backend = make_backend(np.ones((3, 3), dtype=np.float32))

    remove_background(make_image(3, 3), backend, PipelineOptions(confidence_threshold=0.4, resolution="high"))

    (seg_config,) = backend.calls
    assert seg_config.mode == "probability"
    assert seg_config.threshold == 0.4
    assert seg_config.resolution == "high"


def test_missing_image_is_precondition_failure(make_backend) -> None:
    backend = make_backend(np.ones((1, 1), dtype=np.float32))

    with pytest.raises(PreconditionFailure):
        remove_background(None, backend)
    assert backend.calls == []


def test_unready_backend_is_never_called(make_image, make_backend) -> None:
    backend = make_backend(np.ones((3, 3), dtype=np.float32), ready=False)

    with pytest.raises(ModelNotReady):
        remove_background(make_image(3, 3), backend)
    assert backend.calls == []


def test_backend_errors_are_wrapped(make_image, make_backend) -> None:
    backend = make_backend(None, error=RuntimeError("out of memory"))

    with pytest.raises(BackendFailure, match="out of memory"):
        remove_background(make_image(3, 3), backend)


def test_wrong_result_mode_is_backend_failure(make_image, make_backend) -> None:
    backend = make_backend(np.ones((3, 3), dtype=np.int32), mode="discrete")
    backend.mode = "probability"
    backend.segment = lambda image, cfg: SegmentationResult(mode="discrete", data=np.ones((3, 3), dtype=np.int32))

    with pytest.raises(BackendFailure):
        remove_background(make_image(3, 3), backend)


def test_size_mismatch_aborts(make_image, make_backend) -> None:
    backend = make_backend(np.ones((2, 3), dtype=np.float32))

    with pytest.raises(DimensionMismatch):
        remove_background(make_image(3, 3), backend)


def test_process_image_bytes_returns_rgba_png(png_bytes, make_backend) -> None:
    backend = make_backend(lambda image: np.ones(image.shape[:2], dtype=np.float32))

    out = process_image_bytes(png_bytes(6, 4), backend=backend, options=PipelineOptions())

    decoded = Image.open(BytesIO(out))
    assert decoded.mode == "RGBA"
    assert decoded.size == (6, 4)
    assert np.all(np.asarray(decoded)[..., 3] == 255)


def test_process_image_bytes_rejects_garbage(make_backend) -> None:
    backend = make_backend(np.ones((1, 1), dtype=np.float32))

    with pytest.raises(InvalidImage):
        process_image_bytes(b"not an image", backend=backend)


def test_debug_outputs_written(monkeypatch, tmp_path, make_image, make_backend) -> None:
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("DEBUG_OUTPUT_DIR", str(tmp_path / "debug"))
    config.get_settings.cache_clear()
    backend = make_backend(np.ones((3, 3), dtype=np.float32))

    remove_background(make_image(3, 3), backend, PipelineOptions())

    assert (tmp_path / "debug" / "mask.png").exists()
    assert (tmp_path / "debug" / "discard_overlay.png").exists()


def test_scalar_backend_result_is_backend_failure(make_image, make_backend) -> None:
    backend = make_backend(np.float32(0.9))

    with pytest.raises(BackendFailure):
        remove_background(make_image(3, 3), backend, PipelineOptions())
