"""
Processing Endpoints

POST /api/v1/background-removal - Remove the background from an uploaded image
POST /api/v1/upscale            - Upscale an uploaded image

Both accept a multipart `file` plus form options and return the encoded
image with provenance headers.
"""

import json
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from pydantic import ValidationError

from pixelcore.core.config import settings
from pixelcore.core.exceptions import InvalidInput
from pixelcore.core.logging import get_logger
from pixelcore.engines.governor import ResourceGovernor
from pixelcore.engines.schemas import (
    BackgroundAlgorithm,
    BackgroundRemovalOptions,
    OutputFormat,
    ProcessingResult,
    UpscaleAlgorithm,
    UpscaleOptions,
)
from pixelcore.pipeline import remove_background, upscale_image
from pixelcore.api.dependencies import get_governor

logger = get_logger(__name__)
router = APIRouter()


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"])
        parts.append(f"{field}: {item['msg']}")
    return "; ".join(parts)


def _build_response(result: ProcessingResult, job_id: str) -> Response:
    headers = {
        "X-Job-Id": job_id,
        "X-Algorithms-Used": ",".join(result.algorithms_used),
        "X-Processing-Time-Ms": str(result.processing_time_ms),
        "X-Quality-Metrics": json.dumps(result.quality_metrics),
        "X-Image-Dimensions": f"{result.width}x{result.height}",
    }
    if result.scale_factor is not None:
        headers["X-Scale-Factor"] = str(result.scale_factor)
    if result.confidence is not None:
        headers["X-Confidence"] = str(result.confidence)
    return Response(content=result.data, media_type=result.mime_type, headers=headers)


# =============================================================================
# Background Removal
# =============================================================================

@router.post("/background-removal")
async def background_removal(
    file: UploadFile = File(...),
    algorithm: BackgroundAlgorithm = Form(BackgroundAlgorithm.AUTO),
    sensitivity: int = Form(25),
    feather_edges: bool = Form(True),
    preserve_details: bool = Form(True),
    smoothing_level: int = Form(0),
    output_format: OutputFormat = Form(OutputFormat.PNG),
    quality: int = Form(settings.DEFAULT_OUTPUT_QUALITY),
    governor: ResourceGovernor = Depends(get_governor)
):
    """
    Remove the background from an image.

    Returns a PNG or WebP with transparency.
    """
    try:
        options = BackgroundRemovalOptions(
            algorithm=algorithm,
            sensitivity=sensitivity,
            feather_edges=feather_edges,
            preserve_details=preserve_details,
            smoothing_level=smoothing_level,
            output_format=output_format,
            quality=quality,
        )
    except ValidationError as e:
        raise InvalidInput(f"Invalid options: {_validation_message(e)}") from e

    job_id = str(uuid.uuid4())
    image_bytes = await file.read()
    logger.info("upload_received", endpoint="background-removal", filename=file.filename, size_bytes=len(image_bytes))

    result = await remove_background(
        image_bytes,
        governor,
        options=options,
        content_type=file.content_type,
        job_id=job_id
    )
    return _build_response(result, job_id)


# =============================================================================
# Upscaling
# =============================================================================

@router.post("/upscale")
async def upscale(
    file: UploadFile = File(...),
    scale_factor: float = Form(2.0),
    primary_algorithm: UpscaleAlgorithm = Form(UpscaleAlgorithm.AUTO),
    enhance_details: bool = Form(True),
    reduce_noise: bool = Form(True),
    sharpen_amount: int = Form(25),
    color_enhancement: bool = Form(True),
    output_format: OutputFormat = Form(OutputFormat.PNG),
    quality: int = Form(settings.DEFAULT_OUTPUT_QUALITY),
    max_output_dimension: Optional[int] = Form(None),
    governor: ResourceGovernor = Depends(get_governor)
):
    """
    Upscale an image up to 3x.

    The effective scale may be lower than requested; see X-Scale-Factor.
    """
    fields = dict(
        scale_factor=scale_factor,
        primary_algorithm=primary_algorithm,
        enhance_details=enhance_details,
        reduce_noise=reduce_noise,
        sharpen_amount=sharpen_amount,
        color_enhancement=color_enhancement,
        output_format=output_format,
        quality=quality,
    )
    if max_output_dimension is not None:
        fields["max_output_dimension"] = max_output_dimension

    try:
        options = UpscaleOptions(**fields)
    except ValidationError as e:
        raise InvalidInput(f"Invalid options: {_validation_message(e)}") from e

    job_id = str(uuid.uuid4())
    image_bytes = await file.read()
    logger.info("upload_received", endpoint="upscale", filename=file.filename, size_bytes=len(image_bytes))

    result = await upscale_image(
        image_bytes,
        governor,
        options=options,
        content_type=file.content_type,
        job_id=job_id
    )
    return _build_response(result, job_id)
