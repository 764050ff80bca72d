"""
Segmentation backends.

A backend wraps an externally trained person-segmentation model and returns a
per-pixel result aligned 1:1 with the source image. Two shapes are supported:

 - discrete: integer labels, 0 for background and a person id otherwise,
 - probability: a single-channel confidence map in [0, 1].

The pipeline only talks to `SegmentationBackend`; which variant is used is a
configuration choice (`create_backend`).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import math
from typing import Callable, Optional, Tuple

import numpy as np
from PIL import Image
import torch
import torch.nn.functional as F

from .config import BACKEND_MODES, resolution_to_scale
from .errors import BackendFailure, ModelNotReady

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentationConfig:
    mode: str = "discrete"
    threshold: float = 0.7
    resolution: str = "medium"


@dataclass(frozen=True)
class SegmentationResult:
    """Immutable per-pixel output of one inference call."""

    mode: str
    data: np.ndarray

    def __post_init__(self) -> None:
        if self.mode not in BACKEND_MODES:
            raise ValueError(f"Unknown segmentation mode '{self.mode}'")
        data = np.array(self.data, copy=True)
        if data.ndim < 2:
            raise ValueError(f"Segmentation grid must be 2-D, got shape {data.shape}")
        data.setflags(write=False)
        object.__setattr__(self, "data", data)

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def width(self) -> int:
        return int(self.data.shape[1])


class SegmentationBackend(ABC):
    """Interface every segmentation model adapter implements."""

    mode: str

    @abstractmethod
    def is_ready(self) -> bool:
        """Return True when a model is loaded and `segment` may be called."""

    @abstractmethod
    def segment(self, image: np.ndarray, config: SegmentationConfig) -> SegmentationResult:
        """Run inference on an (H, W, 4) uint8 image. Blocks until done."""


def _compute_inference_dims(width: int, height: int, scale: float) -> Tuple[int, int]:
    """Scale the source size and round up to the model's output stride."""
    new_w = max(32, math.ceil(width * scale / 32) * 32)
    new_h = max(32, math.ceil(height * scale / 32) * 32)
    return new_w, new_h


def _to_tensor(image: np.ndarray, scale: float, device: torch.device) -> torch.Tensor:
    """RGB channels normalized to [-1, 1], resized and laid out as (1, 3, H, W)."""
    rgb = np.ascontiguousarray(image[..., :3])
    height, width = rgb.shape[:2]
    new_w, new_h = _compute_inference_dims(width, height, scale)
    if (new_w, new_h) != (width, height):
        rgb = np.asarray(Image.fromarray(rgb).resize((new_w, new_h), Image.BILINEAR))

    im_np = rgb.astype("float32") / 255.0
    im_np = (im_np - 0.5) / 0.5
    im_np = np.transpose(im_np, (2, 0, 1))  # HWC -> CHW
    return torch.from_numpy(np.ascontiguousarray(im_np)).unsqueeze(0).to(device)


class TorchSegmentationBackend(SegmentationBackend):
    """
    Shared plumbing for TorchScript / nn.Module segmentation models.

    The model is either passed directly or fetched lazily from
    `model_provider`, which returns None while nothing is loaded.
    """

    def __init__(
        self,
        model: Optional[torch.nn.Module] = None,
        model_provider: Optional[Callable[[], Optional[torch.nn.Module]]] = None,
        device: Optional[torch.device] = None,
    ):
        self._model = model
        self._model_provider = model_provider
        self.device = device or torch.device("cpu")

    def _resolve_model(self) -> Optional[torch.nn.Module]:
        if self._model is not None:
            return self._model
        if self._model_provider is not None:
            return self._model_provider()
        return None

    def is_ready(self) -> bool:
        return self._resolve_model() is not None

    def segment(self, image: np.ndarray, config: SegmentationConfig) -> SegmentationResult:
        model = self._resolve_model()
        if model is None:
            raise ModelNotReady("Segmentation model is not loaded")

        height, width = image.shape[:2]
        tensor = _to_tensor(image, resolution_to_scale(config.resolution), self.device)
        with torch.no_grad():
            output = model(tensor)
        if isinstance(output, (tuple, list)):
            output = output[-1]
        if not isinstance(output, torch.Tensor) or output.ndim != 4 or output.shape[0] != 1:
            raise BackendFailure("Segmentation model returned an unexpected output shape")

        logger.debug(
            "segment: mode=%s input=%dx%d inference=%dx%d",
            self.mode,
            width,
            height,
            tensor.shape[3],
            tensor.shape[2],
        )
        data = self._decode(output.float(), width, height, config)
        return SegmentationResult(mode=self.mode, data=data)

    @abstractmethod
    def _decode(self, output: torch.Tensor, width: int, height: int, config: SegmentationConfig) -> np.ndarray:
        """Turn raw model output (1, C, h, w) into a (height, width) grid."""


class DiscreteLabelBackend(TorchSegmentationBackend):
    """
    Label-per-pixel backend (body segmentation style).

    Channel 0 is background and the label is the strongest person channel;
    with a single channel the output is a person logit. Pixels whose person
    confidence (1 - p(background)) is not above the threshold get label 0.
    """

    mode = "discrete"

    def _decode(self, output: torch.Tensor, width: int, height: int, config: SegmentationConfig) -> np.ndarray:
        if output.shape[1] == 1:
            person = torch.sigmoid(output[:, 0])
            labels = (person > config.threshold).to(torch.float32)
        else:
            probs = torch.softmax(output, dim=1)
            labels = (probs[:, 1:].argmax(dim=1) + 1).to(torch.float32)
            labels[(1.0 - probs[:, 0]) <= config.threshold] = 0.0
        labels = F.interpolate(labels[:, None], size=(height, width), mode="nearest")
        return labels[0, 0].cpu().numpy().astype(np.int32)


class ProbabilityBackend(TorchSegmentationBackend):
    """Confidence-map backend (selfie / portrait segmentation style)."""

    mode = "probability"

    def _decode(self, output: torch.Tensor, width: int, height: int, config: SegmentationConfig) -> np.ndarray:
        if output.shape[1] != 1:
            raise BackendFailure(
                f"Probability model must return one channel, got {output.shape[1]}"
            )
        confidence = F.interpolate(
            output,
            size=(height, width),
            mode="bilinear",
            align_corners=False,
        )
        return np.clip(confidence[0, 0].cpu().numpy(), 0.0, 1.0).astype(np.float32)


BACKENDS = {
    "discrete": DiscreteLabelBackend,
    "probability": ProbabilityBackend,
}


def create_backend(mode: str, **kwargs) -> TorchSegmentationBackend:
    """Instantiate the backend variant registered for `mode`."""
    try:
        backend_cls = BACKENDS[mode]
    except KeyError:
        raise ValueError(f"Unknown segmentation backend '{mode}'") from None
    return backend_cls(**kwargs)
