"""
Configuration loader for the cutout service.

Environment variables are centralized here to keep the rest of the code
focused on pixel logic and to make the refinement knobs easy to tune.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_MODES = {"discrete", "probability"}
RESOLUTION_SCALES = {"low": 0.25, "medium": 0.5, "high": 0.75, "full": 1.0}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Segmentation model
    segmentation_model_path: Optional[Path] = None
    segmentation_backend: str = "discrete"
    internal_resolution: str = "medium"
    confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)

    # Refinement tunables
    refinement_enabled: bool = True
    smoothing_enabled: bool = True
    edge_restoration_enabled: bool = True
    blur_radius: float = Field(1.0, ge=0.0)
    binarize_midpoint: int = Field(128, ge=0, le=255)
    neighbor_majority_count: int = Field(5, ge=1, le=8)

    # API
    max_upload_bytes: int = Field(5 * 1024 * 1024, gt=0)
    log_level: str = "INFO"

    # Debugging
    debug: bool = False
    debug_output_dir: Path = Path("/tmp/cutout_debug")

    @field_validator("segmentation_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in BACKEND_MODES:
            raise ValueError("SEGMENTATION_BACKEND must be one of discrete|probability")
        return v

    @field_validator("internal_resolution")
    @classmethod
    def validate_resolution(cls, v: str) -> str:
        v = v.lower()
        if v not in RESOLUTION_SCALES:
            raise ValueError("INTERNAL_RESOLUTION must be one of low|medium|high|full")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def resolution_to_scale(resolution: str) -> float:
    """
    Translate a resolution hint into the factor applied to the source size
    before inference.

    Higher values give finer boundaries at the cost of speed/memory.
    """
    try:
        return RESOLUTION_SCALES[resolution]
    except KeyError:
        raise ValueError(f"Unknown resolution hint '{resolution}'") from None


@dataclass
class PipelineOptions:
    """Per-request snapshot of the tunables used by the pipeline."""

    refinement_enabled: bool = True
    smoothing_enabled: bool = True
    edge_restoration_enabled: bool = True
    confidence_threshold: float = 0.7
    blur_radius: float = 1.0
    binarize_midpoint: int = 128
    neighbor_majority_count: int = 5
    resolution: str = "medium"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "PipelineOptions":
        settings = settings or get_settings()
        values = dict(
            refinement_enabled=settings.refinement_enabled,
            smoothing_enabled=settings.smoothing_enabled,
            edge_restoration_enabled=settings.edge_restoration_enabled,
            confidence_threshold=settings.confidence_threshold,
            blur_radius=settings.blur_radius,
            binarize_midpoint=settings.binarize_midpoint,
            neighbor_majority_count=settings.neighbor_majority_count,
            resolution=settings.internal_resolution,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
