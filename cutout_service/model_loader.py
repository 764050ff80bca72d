"""
Model loading utilities for the segmentation backend.

The loader:
 - loads a TorchScript checkpoint from `SEGMENTATION_MODEL_PATH`,
 - keeps a single shared instance on the preferred device,
 - exposes `get_backend()` bound to that instance for inference callers.

Loading is explicit (`load_segmentation_model`); until it succeeds the
backend reports itself as not ready and the pipeline refuses to run.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Optional

import torch

from . import config
from .errors import ModelNotReady
from .segmentation import TorchSegmentationBackend, create_backend

logger = logging.getLogger(__name__)

_MODEL: Optional[torch.nn.Module] = None
_BACKEND: Optional[TorchSegmentationBackend] = None
# Prefer CUDA -> Apple MPS -> CPU to support both GPU servers and local macOS dev.
if torch.cuda.is_available():
    _DEVICE = torch.device("cuda")
elif torch.backends.mps.is_available():  # type: ignore[attr-defined]
    _DEVICE = torch.device("mps")
else:
    _DEVICE = torch.device("cpu")
_LOCK = Lock()


def get_device() -> torch.device:
    """Return the inference device (prefers CUDA when available)."""
    return _DEVICE


def _load_torchscript(model_path: Path) -> torch.nn.Module:
    model = torch.jit.load(str(model_path), map_location=_DEVICE)
    model.eval()
    return model


def load_segmentation_model(settings: Optional[config.Settings] = None) -> torch.nn.Module:
    """
    Load the configured model once and return the shared instance.

    Raises:
        ModelNotReady: when no path is configured or the checkpoint cannot be loaded.
    """
    global _MODEL
    if _MODEL is not None:
        return _MODEL

    with _LOCK:
        if _MODEL is None:
            settings = settings or config.get_settings()
            model_path = settings.segmentation_model_path
            if model_path is None:
                raise ModelNotReady("Failed to load AI model: SEGMENTATION_MODEL_PATH is not set")
            if not model_path.exists():
                raise ModelNotReady(f"Failed to load AI model: checkpoint not found at {model_path}")
            logger.info("Loading TorchScript segmentation model from %s", model_path)
            try:
                _MODEL = _load_torchscript(model_path)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Segmentation model load failed")
                raise ModelNotReady(f"Failed to load AI model: {exc}") from exc
            logger.info("Segmentation model loaded on device: %s", _DEVICE)
    return _MODEL


def get_loaded_model() -> Optional[torch.nn.Module]:
    """Return the shared model, or None when nothing has been loaded yet."""
    return _MODEL


def reset_model() -> None:
    """Drop the shared model and backend so the next load starts fresh."""
    global _MODEL, _BACKEND
    with _LOCK:
        _MODEL = None
        _BACKEND = None


def get_backend() -> TorchSegmentationBackend:
    """Return the configured backend, bound lazily to the shared model."""
    global _BACKEND
    if _BACKEND is None:
        settings = config.get_settings()
        _BACKEND = create_backend(
            settings.segmentation_backend,
            model_provider=get_loaded_model,
            device=_DEVICE,
        )
    return _BACKEND
