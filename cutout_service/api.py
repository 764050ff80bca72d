"""
FastAPI layer exposing local background removal.

Endpoints:
 - GET /health
 - GET /model
 - POST /model/load
 - POST /remove-bg
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from . import config
from .errors import BackendFailure, DimensionMismatch, InvalidImage, ModelNotReady, PreconditionFailure
from .model_loader import get_backend, load_segmentation_model
from .pipeline import process_image_bytes
from .preprocessing import validate_upload
from .segmentation import SegmentationBackend

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Person Cutout Service", version="0.1.0")

DOWNLOAD_FILENAME = "background-removed.png"
# One image is segmented and composited before the next request is accepted.
_PROCESS_LOCK = Lock()


class ModelStatus(BaseModel):
    mode: str
    ready: bool


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/model", response_model=ModelStatus)
def model_status(backend: SegmentationBackend = Depends(get_backend)):
    return ModelStatus(mode=backend.mode, ready=backend.is_ready())


@app.post("/model/load", response_model=ModelStatus)
def load_model(backend: SegmentationBackend = Depends(get_backend)):
    try:
        load_segmentation_model()
    except ModelNotReady as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ModelStatus(mode=backend.mode, ready=backend.is_ready())


@app.post("/remove-bg")
def remove_bg(
    file: UploadFile = File(...),
    refine: Optional[bool] = Form(None),
    threshold: Optional[float] = Form(None),
    backend: SegmentationBackend = Depends(get_backend),
):
    image_bytes = file.file.read()
    try:
        validate_upload(image_bytes, file.content_type, settings.max_upload_bytes)
    except PreconditionFailure as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if threshold is not None and not 0.0 <= threshold <= 1.0:
        raise HTTPException(status_code=400, detail="threshold must be within [0, 1]")
    options = config.PipelineOptions.from_settings(
        settings,
        refinement_enabled=refine,
        confidence_threshold=threshold,
    )

    try:
        with _PROCESS_LOCK:
            png_bytes = process_image_bytes(image_bytes, backend=backend, options=options)
    except ModelNotReady as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except (InvalidImage, PreconditionFailure) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (BackendFailure, DimensionMismatch) as exc:
        logger.exception("Background removal failed: %s", exc)
        raise HTTPException(status_code=500, detail="Background removal failed") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected background removal failure: %s", exc)
        raise HTTPException(status_code=500, detail="Background removal failed") from exc

    return Response(
        content=png_bytes,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{DOWNLOAD_FILENAME}"'},
    )
