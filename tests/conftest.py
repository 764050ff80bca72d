"""Shared fixtures: settings isolation and an in-memory segmentation backend."""

from __future__ import annotations

from io import BytesIO
from typing import Callable, List, Optional, Union

import numpy as np
from PIL import Image
import pytest

from cutout_service import config, model_loader
from cutout_service.segmentation import SegmentationBackend, SegmentationConfig, SegmentationResult


class StaticBackend(SegmentationBackend):
    """Backend returning a fixed grid, or one computed from the input image."""

    def __init__(
        self,
        data: Union[np.ndarray, Callable[[np.ndarray], np.ndarray]],
        mode: str = "probability",
        ready: bool = True,
        error: Optional[Exception] = None,
    ):
        self.mode = mode
        self.data = data
        self.ready = ready
        self.error = error
        self.calls: List[SegmentationConfig] = []

    def is_ready(self) -> bool:
        return self.ready

    def segment(self, image: np.ndarray, config: SegmentationConfig) -> SegmentationResult:
        self.calls.append(config)
        if self.error is not None:
            raise self.error
        data = self.data(image) if callable(self.data) else self.data
        return SegmentationResult(mode=self.mode, data=data)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    for name in ("DEBUG", "SEGMENTATION_MODEL_PATH", "SEGMENTATION_BACKEND", "CONFIDENCE_THRESHOLD"):
        monkeypatch.delenv(name, raising=False)
    config.get_settings.cache_clear()
    model_loader.reset_model()
    yield
    config.get_settings.cache_clear()
    model_loader.reset_model()


@pytest.fixture
def make_backend():
    return StaticBackend


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def make_image(rng: np.random.Generator):
    def _make(width: int, height: int) -> np.ndarray:
        rgb = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
        alpha = np.full((height, width, 1), 255, dtype=np.uint8)
        return np.concatenate([rgb, alpha], axis=2)

    return _make


@pytest.fixture
def png_bytes(make_image) -> Callable[[int, int], bytes]:
    def _encode(width: int, height: int) -> bytes:
        buf = BytesIO()
        Image.fromarray(np.ascontiguousarray(make_image(width, height)[..., :3])).save(buf, format="PNG")
        return buf.getvalue()

    return _encode
