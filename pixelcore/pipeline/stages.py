"""
Pipeline Stage Implementations

The two processing entry points. Each runs its stages in order under one
admitted governor operation, reporting progress and logging every stage:

Background removal: load -> analyze -> masks -> fuse -> alpha -> refine -> finalize
Upscaling:          load -> analyze -> safe scale -> select -> upscale -> enhance -> finalize

Decode and encode run in worker threads; pixel work runs inline.
"""

import time
import uuid
import asyncio
from typing import Callable, Optional

from pixelcore.core.config import settings
from pixelcore.core.exceptions import PixelCoreError
from pixelcore.core.logging import get_logger, LogContext
from pixelcore.core.metrics import record_algorithm, record_operation, track_stage_latency
from pixelcore.engines.analyzer import BACKGROUND_STRIDE, UPSCALE_STRIDE, analyze
from pixelcore.engines.finalizer import finalize
from pixelcore.engines.governor import ResourceGovernor
from pixelcore.engines.loader import LoadConstraints, load
from pixelcore.engines.masks import (
    apply_algorithm_hint,
    apply_mask_to_alpha,
    background_quality_metrics,
    fuse_masks,
    fusion_weights,
    generate_masks,
    select_mask_strategy,
    smooth_alpha,
)
from pixelcore.engines.schemas import BackgroundRemovalOptions, ProcessingResult, UpscaleOptions
from pixelcore.engines.upscaler import (
    apply_enhancements,
    check_effective_scale,
    compute_safe_scale,
    select_algorithm,
    upscale,
    upscale_quality_metrics,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[int, str], None]


def _report(progress: Optional[ProgressCallback], percent: int, label: str):
    """Forward progress to the caller; a failing callback never fails the operation."""
    if progress is None:
        return
    try:
        progress(percent, label)
    except Exception as e:
        logger.warning(
            "progress_callback_failed",
            percent=percent,
            label=label,
            error=str(e),
            error_type=type(e).__name__
        )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


# =============================================================================
# Background Removal
# =============================================================================

async def remove_background(
    image_bytes: bytes,
    governor: ResourceGovernor,
    options: Optional[BackgroundRemovalOptions] = None,
    progress: Optional[ProgressCallback] = None,
    content_type: Optional[str] = None,
    job_id: Optional[str] = None
) -> ProcessingResult:
    """Remove the background from an image, returning an encoded RGBA result."""
    options = options or BackgroundRemovalOptions()
    job_id = job_id or str(uuid.uuid4())
    start = time.perf_counter()

    with LogContext(job_id=job_id, pipeline="background_removal") as ctx:
        logger.info(
            "background_removal_started",
            input_bytes=len(image_bytes),
            algorithm=options.algorithm.value,
            sensitivity=options.sensitivity
        )

        try:
            with governor.operation("background_removal") as scope:
                ctx.set_stage("load")
                _report(progress, 5, "Loading image")
                with track_stage_latency("load"):
                    loaded = await asyncio.to_thread(
                        load, image_bytes, LoadConstraints.for_background_removal(), content_type
                    )
                handle = scope.acquire(loaded.width, loaded.height, pixels=loaded.pixels)
                buffer = governor.as_buffer(handle)

                ctx.set_stage("analyze")
                _report(progress, 15, "Analyzing image content")
                with track_stage_latency("analyze"):
                    analysis = apply_algorithm_hint(analyze(buffer, BACKGROUND_STRIDE), options.algorithm)

                ctx.set_stage("select")
                _report(progress, 25, "Selecting optimal algorithm")
                strategy = select_mask_strategy(analysis, options.algorithm)
                record_algorithm("background_removal", strategy)

                ctx.set_stage("masks")
                _report(progress, 35, "Processing background removal")
                with track_stage_latency("masks"):
                    masks = generate_masks(buffer, analysis, options.sensitivity)
                    fused = fuse_masks(masks, fusion_weights(analysis))
                    apply_mask_to_alpha(
                        buffer, fused,
                        feather_edges=options.feather_edges,
                        preserve_details=options.preserve_details
                    )

                algorithms_used = [strategy, "mask_fusion"]
                if options.feather_edges:
                    algorithms_used.append("edge_feathering")

                ctx.set_stage("refine")
                _report(progress, 75, "Refining edges")
                if options.smoothing_level > 0:
                    with track_stage_latency("refine"):
                        smooth_alpha(buffer, options.smoothing_level)
                    algorithms_used.append("alpha_smoothing")

                quality_metrics = background_quality_metrics(buffer)

                ctx.set_stage("finalize")
                _report(progress, 90, "Creating output")
                with track_stage_latency("finalize"):
                    encoded = await finalize(handle, options, governor)

        except PixelCoreError as e:
            record_operation("background_removal", "error", time.perf_counter() - start, failure_kind=e.kind)
            logger.warning("background_removal_rejected", kind=e.kind, code=e.code, error=e.message)
            _report(progress, 0, "Error occurred")
            raise
        except Exception as e:
            record_operation("background_removal", "error", time.perf_counter() - start, failure_kind="unexpected")
            logger.error("background_removal_failed", error=str(e), error_type=type(e).__name__)
            _report(progress, 0, "Error occurred")
            raise

        _report(progress, 100, "Complete")
        duration_ms = _elapsed_ms(start)
        record_operation("background_removal", "success", duration_ms / 1000)

        logger.info(
            "background_removal_completed",
            duration_ms=duration_ms,
            strategy=strategy,
            confidence=analysis.confidence,
            output_bytes=len(encoded.data),
            dimensions=[encoded.width, encoded.height]
        )

        return ProcessingResult(
            data=encoded.data,
            mime_type=encoded.mime_type,
            width=encoded.width,
            height=encoded.height,
            algorithms_used=algorithms_used,
            processing_time_ms=duration_ms,
            quality_metrics=quality_metrics,
            confidence=analysis.confidence,
        )


# =============================================================================
# Upscaling
# =============================================================================

async def upscale_image(
    image_bytes: bytes,
    governor: ResourceGovernor,
    options: Optional[UpscaleOptions] = None,
    progress: Optional[ProgressCallback] = None,
    content_type: Optional[str] = None,
    job_id: Optional[str] = None
) -> ProcessingResult:
    """Upscale an image with a content-appropriate strategy and enhancement stack."""
    options = options or UpscaleOptions()
    job_id = job_id or str(uuid.uuid4())
    start = time.perf_counter()

    with LogContext(job_id=job_id, pipeline="upscale") as ctx:
        logger.info(
            "upscale_started",
            input_bytes=len(image_bytes),
            requested_scale=options.scale_factor,
            algorithm=options.primary_algorithm.value
        )

        try:
            with governor.operation("upscale") as scope:
                ctx.set_stage("load")
                _report(progress, 5, "Loading image")
                with track_stage_latency("load"):
                    loaded = await asyncio.to_thread(
                        load, image_bytes, LoadConstraints.for_upscaling(), content_type
                    )
                source_handle = scope.acquire(loaded.width, loaded.height, pixels=loaded.pixels)
                source = governor.as_buffer(source_handle)

                ctx.set_stage("analyze")
                _report(progress, 15, "Analyzing image content")
                with track_stage_latency("analyze"):
                    analysis = analyze(source, UPSCALE_STRIDE)

                ctx.set_stage("scale")
                _report(progress, 25, "Calculating optimal scale")
                safe = compute_safe_scale(
                    source.width,
                    source.height,
                    options.scale_factor,
                    max_output_dimension=min(options.max_output_dimension, settings.UPSCALE_MAX_OUTPUT_DIMENSION),
                    max_output_pixels=settings.UPSCALE_MAX_OUTPUT_PIXELS
                )
                check_effective_scale(safe, source.width, source.height, minimum=settings.UPSCALE_MIN_EFFECTIVE_SCALE)

                algorithm = select_algorithm(analysis, options.primary_algorithm)
                record_algorithm("upscale", algorithm.value)
                logger.info(
                    "upscale_strategy_selected",
                    algorithm=algorithm.value,
                    content_type=analysis.content_type.value,
                    effective_scale=round(safe.effective_scale, 4),
                    target_dimensions=[safe.target_width, safe.target_height]
                )

                ctx.set_stage("upscale")
                _report(progress, 35, "Running upscaling algorithm")
                with track_stage_latency("upscale"):
                    upscaled = upscale(source, algorithm, safe)
                output_handle = scope.acquire(upscaled.width, upscaled.height, pixels=upscaled.pixels)
                governor.release(source_handle)
                output = governor.as_buffer(output_handle)

                ctx.set_stage("enhance")
                _report(progress, 70, "Applying enhancements")
                with track_stage_latency("enhance"):
                    enhancements = apply_enhancements(output, options)

                quality_metrics = upscale_quality_metrics(output)

                ctx.set_stage("finalize")
                _report(progress, 90, "Creating output")
                with track_stage_latency("finalize"):
                    encoded = await finalize(output_handle, options, governor)

        except PixelCoreError as e:
            record_operation("upscale", "error", time.perf_counter() - start, failure_kind=e.kind)
            logger.warning("upscale_rejected", kind=e.kind, code=e.code, error=e.message)
            _report(progress, 0, "Error occurred")
            raise
        except Exception as e:
            record_operation("upscale", "error", time.perf_counter() - start, failure_kind="unexpected")
            logger.error("upscale_failed", error=str(e), error_type=type(e).__name__)
            _report(progress, 0, "Error occurred")
            raise

        _report(progress, 100, "Complete")
        duration_ms = _elapsed_ms(start)
        record_operation("upscale", "success", duration_ms / 1000)

        logger.info(
            "upscale_completed",
            duration_ms=duration_ms,
            algorithm=algorithm.value,
            effective_scale=round(safe.effective_scale, 4),
            output_bytes=len(encoded.data),
            dimensions=[encoded.width, encoded.height]
        )

        return ProcessingResult(
            data=encoded.data,
            mime_type=encoded.mime_type,
            width=encoded.width,
            height=encoded.height,
            algorithms_used=[algorithm.value] + enhancements,
            processing_time_ms=duration_ms,
            quality_metrics=quality_metrics,
            scale_factor=round(safe.effective_scale, 4),
        )
