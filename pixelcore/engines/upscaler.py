"""
Upscaling Engine

Strategy-based upscaling with a safety-clamped scale factor:
1. compute_safe_scale - clamp requested scale against output ceilings
2. select_algorithm   - pick a strategy from the content analysis
3. upscale            - run one of five resize + filter strategies
4. apply_enhancements - shared post-processing stack, each step toggleable
5. quality metrics    - sharpness / noise / block-artifact observations

Strategies only resize the alpha channel; filters touch RGB.
"""

import math
from typing import Callable, Dict, List

import cv2
import numpy as np

from pixelcore.core.exceptions import ScaleTooSmall
from pixelcore.core.logging import get_logger
from pixelcore.engines import filters
from pixelcore.engines.analyzer import NOISE_DEVIATION, block_flatness_ratio, neighbor_mean_deviation
from pixelcore.engines.buffers import PixelBuffer, activity_map, brightness
from pixelcore.engines.schemas import ContentAnalysis, ContentType, SafeScale, UpscaleAlgorithm, UpscaleOptions

logger = get_logger(__name__)


# =============================================================================
# Scale limits
# =============================================================================

MIN_SCALE = 1.0
MAX_SCALE = 3.0
MIN_EFFECTIVE_SCALE = 1.1
MAX_OUTPUT_DIMENSION = 1536
MAX_OUTPUT_PIXELS = 1536 * 1536

# Above this scale bicubic resizes in two passes through sqrt(scale)
MULTIPASS_SCALE = 2.0

LANCZOS_SHARPEN_AMOUNT = 20
ESRGAN_ARTIFACT_RATIO = 0.1

QUALITY_SAMPLE_START = 5
QUALITY_SAMPLE_STEP = 10


def compute_safe_scale(
    width: int,
    height: int,
    requested: float,
    max_output_dimension: int = MAX_OUTPUT_DIMENSION,
    max_output_pixels: int = MAX_OUTPUT_PIXELS
) -> SafeScale:
    """
    Reduce the requested scale until the output fits every ceiling.

    The pixel check uses the unfloored product, so the floored target can
    never exceed max_output_pixels.
    """
    scale = min(MAX_SCALE, max(MIN_SCALE, requested))

    if math.floor(width * scale) > max_output_dimension or math.floor(height * scale) > max_output_dimension:
        scale = min(scale, max_output_dimension / width, max_output_dimension / height)

    if (width * scale) * (height * scale) > max_output_pixels:
        scale = math.sqrt(max_output_pixels / (width * height))

    return SafeScale(
        requested_scale=requested,
        effective_scale=scale,
        target_width=max(1, math.floor(width * scale)),
        target_height=max(1, math.floor(height * scale)),
    )


def check_effective_scale(safe: SafeScale, width: int, height: int, minimum: float = MIN_EFFECTIVE_SCALE):
    """Refuse upscales that clamping has reduced to almost nothing."""
    if safe.effective_scale < minimum:
        raise ScaleTooSmall(safe.effective_scale, minimum, width, height)


def select_algorithm(analysis: ContentAnalysis, requested: UpscaleAlgorithm = UpscaleAlgorithm.AUTO) -> UpscaleAlgorithm:
    """Resolve 'auto' into a concrete strategy; explicit choices pass through."""
    if requested != UpscaleAlgorithm.AUTO:
        return requested

    if analysis.is_pixel_art or analysis.content_type == ContentType.ART:
        return UpscaleAlgorithm.WAIFU2X
    if analysis.content_type == ContentType.PHOTO and analysis.compression_artifacts > ESRGAN_ARTIFACT_RATIO:
        return UpscaleAlgorithm.ESRGAN
    if analysis.content_type == ContentType.TEXT or analysis.has_sharp_edges:
        return UpscaleAlgorithm.LANCZOS
    return UpscaleAlgorithm.BICUBIC


# =============================================================================
# Strategies
# =============================================================================

def _resize(buffer: PixelBuffer, width: int, height: int, interpolation: int) -> PixelBuffer:
    pixels = cv2.resize(buffer.pixels, (width, height), interpolation=interpolation)
    return PixelBuffer(width=width, height=height, pixels=np.ascontiguousarray(pixels))


def bicubic_upscale(buffer: PixelBuffer, target: SafeScale) -> PixelBuffer:
    scale = target.effective_scale
    if scale > MULTIPASS_SCALE:
        step = math.sqrt(scale)
        buffer = _resize(
            buffer,
            max(1, math.floor(buffer.width * step)),
            max(1, math.floor(buffer.height * step)),
            cv2.INTER_CUBIC
        )
    return _resize(buffer, target.target_width, target.target_height, cv2.INTER_CUBIC)


def lanczos_upscale(buffer: PixelBuffer, target: SafeScale) -> PixelBuffer:
    result = _resize(buffer, target.target_width, target.target_height, cv2.INTER_LANCZOS4)
    filters.sharpen(result, LANCZOS_SHARPEN_AMOUNT)
    return result


def esrgan_upscale(buffer: PixelBuffer, target: SafeScale) -> PixelBuffer:
    result = bicubic_upscale(buffer, target)
    filters.local_contrast(result)
    filters.bilateral(result)
    return result


def waifu2x_upscale(buffer: PixelBuffer, target: SafeScale) -> PixelBuffer:
    result = _resize(buffer, target.target_width, target.target_height, cv2.INTER_NEAREST)
    filters.selective_smooth(result)
    return result


def srcnn_upscale(buffer: PixelBuffer, target: SafeScale) -> PixelBuffer:
    result = bicubic_upscale(buffer, target)
    filters.enhance_details(result)
    filters.reduce_noise(result)
    return result


STRATEGIES: Dict[UpscaleAlgorithm, Callable[[PixelBuffer, SafeScale], PixelBuffer]] = {
    UpscaleAlgorithm.BICUBIC: bicubic_upscale,
    UpscaleAlgorithm.LANCZOS: lanczos_upscale,
    UpscaleAlgorithm.ESRGAN: esrgan_upscale,
    UpscaleAlgorithm.WAIFU2X: waifu2x_upscale,
    UpscaleAlgorithm.SRCNN: srcnn_upscale,
}


def upscale(buffer: PixelBuffer, algorithm: UpscaleAlgorithm, target: SafeScale) -> PixelBuffer:
    """Run a concrete strategy; returns a new buffer of the target size."""
    if algorithm not in STRATEGIES:
        raise ValueError(f"No upscaling strategy for '{algorithm.value}'")
    return STRATEGIES[algorithm](buffer, target)


def apply_enhancements(buffer: PixelBuffer, options: UpscaleOptions) -> List[str]:
    """Run the post-processing stack in place; returns the steps applied."""
    applied = []
    if options.enhance_details:
        filters.enhance_details(buffer)
        applied.append("detail_enhancement")
    if options.reduce_noise:
        filters.reduce_noise(buffer)
        applied.append("noise_reduction")
    if options.sharpen_amount > 0:
        filters.sharpen(buffer, options.sharpen_amount)
        applied.append("sharpening")
    if options.color_enhancement:
        filters.enhance_colors(buffer)
        applied.append("color_enhancement")
    return applied


# =============================================================================
# Quality Metrics
# =============================================================================

def upscale_quality_metrics(buffer: PixelBuffer) -> Dict[str, float]:
    """Observational sharpness, noise and artifact scores (0-100)."""
    h, w = buffer.height, buffer.width
    ys = np.arange(QUALITY_SAMPLE_START, h - QUALITY_SAMPLE_START, QUALITY_SAMPLE_STEP)
    xs = np.arange(QUALITY_SAMPLE_START, w - QUALITY_SAMPLE_START, QUALITY_SAMPLE_STEP)
    lum = brightness(buffer.rgb)

    if ys.size == 0 or xs.size == 0:
        sharpness = 0.0
        noise = 0.0
    else:
        grid = np.ix_(ys, xs)
        gradients = activity_map(buffer.rgb)[grid]
        noisy = neighbor_mean_deviation(lum)[grid] > NOISE_DEVIATION
        sharpness = min(100.0, float(gradients.mean()) / 2)
        noise = min(100.0, float(noisy.mean()) * 100)

    return {
        "sharpness": round(sharpness, 2),
        "noise": round(noise, 2),
        "artifacts": round(block_flatness_ratio(lum) * 100, 2),
    }
