from unittest.mock import patch

import cv2
import numpy as np
import pytest

from pixelcore.core.exceptions import ScaleTooSmall
from pixelcore.engines.buffers import PixelBuffer
from pixelcore.engines.schemas import ContentAnalysis, ContentType, UpscaleAlgorithm, UpscaleOptions
from pixelcore.engines.upscaler import (
    MAX_OUTPUT_DIMENSION,
    MAX_OUTPUT_PIXELS,
    STRATEGIES,
    apply_enhancements,
    bicubic_upscale,
    check_effective_scale,
    compute_safe_scale,
    select_algorithm,
    upscale,
    upscale_quality_metrics,
)
from tests.conftest import solid_rgb


def _gradient(width: int = 40, height: int = 30, alpha: int = 128) -> PixelBuffer:
    ys, xs = np.mgrid[0:height, 0:width]
    rgba = np.zeros((height, width, 4), dtype=np.uint8)
    rgba[..., 0] = (xs * 255 // max(1, width - 1)).astype(np.uint8)
    rgba[..., 1] = (ys * 255 // max(1, height - 1)).astype(np.uint8)
    rgba[..., 2] = 90
    rgba[..., 3] = alpha
    return PixelBuffer.from_array(rgba)


# =============================================================================
# Safe scale
# =============================================================================

@pytest.mark.parametrize("width,height", [(100, 100), (640, 480), (1024, 1024), (1024, 256), (1500, 1500), (1, 1000)])
@pytest.mark.parametrize("requested", [1.0, 1.5, 2.0, 3.0])
def test_safe_scale_respects_output_ceilings(width, height, requested):
    safe = compute_safe_scale(width, height, requested)

    assert safe.target_width <= MAX_OUTPUT_DIMENSION
    assert safe.target_height <= MAX_OUTPUT_DIMENSION
    assert safe.target_pixels <= MAX_OUTPUT_PIXELS
    assert safe.effective_scale <= requested
    assert safe.requested_scale == requested


def test_small_image_gets_full_scale():
    safe = compute_safe_scale(100, 100, 2.0)

    assert safe.effective_scale == 2.0
    assert (safe.target_width, safe.target_height) == (200, 200)


def test_long_side_clamps_scale():
    safe = compute_safe_scale(1024, 1024, 2.0)

    assert safe.effective_scale == pytest.approx(1.5)
    assert (safe.target_width, safe.target_height) == (1536, 1536)


def test_requested_scale_clamped_into_range():
    assert compute_safe_scale(10, 10, 7.0).effective_scale == 3.0
    assert compute_safe_scale(10, 10, 0.5).effective_scale == 1.0


def test_near_ceiling_image_is_refused():
    # Arrange
    safe = compute_safe_scale(1500, 1500, 3.0)

    # Assert: clamped to ~1.024x, well under the 1.1x floor
    assert safe.effective_scale == pytest.approx(1.024)
    assert safe.target_pixels <= 2_359_296
    with pytest.raises(ScaleTooSmall) as exc_info:
        check_effective_scale(safe, 1500, 1500)
    assert exc_info.value.code == 422
    assert exc_info.value.details["source_dimensions"] == [1500, 1500]


def test_effective_scale_at_minimum_passes():
    check_effective_scale(compute_safe_scale(100, 100, 1.1), 100, 100)


# =============================================================================
# Algorithm selection
# =============================================================================

@pytest.mark.parametrize("analysis,expected", [
    (ContentAnalysis(is_pixel_art=True), UpscaleAlgorithm.WAIFU2X),
    (ContentAnalysis(content_type=ContentType.ART), UpscaleAlgorithm.WAIFU2X),
    (ContentAnalysis(content_type=ContentType.PHOTO, compression_artifacts=0.5), UpscaleAlgorithm.ESRGAN),
    (ContentAnalysis(content_type=ContentType.PHOTO, compression_artifacts=0.05), UpscaleAlgorithm.BICUBIC),
    (ContentAnalysis(content_type=ContentType.TEXT), UpscaleAlgorithm.LANCZOS),
    (ContentAnalysis(has_sharp_edges=True), UpscaleAlgorithm.LANCZOS),
    (ContentAnalysis(), UpscaleAlgorithm.BICUBIC),
])
def test_auto_selection(analysis, expected):
    assert select_algorithm(analysis) == expected


def test_explicit_algorithm_passes_through():
    analysis = ContentAnalysis(is_pixel_art=True)

    assert select_algorithm(analysis, UpscaleAlgorithm.SRCNN) == UpscaleAlgorithm.SRCNN


# =============================================================================
# Strategies
# =============================================================================

@pytest.mark.parametrize("algorithm", list(STRATEGIES))
@pytest.mark.parametrize("requested", [2.0, 3.0])
def test_strategy_output_size_and_alpha(algorithm, requested):
    # Arrange
    source = _gradient()
    before = source.pixels.copy()
    target = compute_safe_scale(source.width, source.height, requested)

    # Act
    result = upscale(source, algorithm, target)

    # Assert
    assert (result.width, result.height) == (target.target_width, target.target_height)
    assert result.pixels.shape == (target.target_height, target.target_width, 4)
    assert np.abs(result.alpha.astype(int) - 128).max() <= 1
    np.testing.assert_array_equal(source.pixels, before)


def test_auto_is_not_a_strategy():
    source = _gradient()

    with pytest.raises(ValueError):
        upscale(source, UpscaleAlgorithm.AUTO, compute_safe_scale(40, 30, 2.0))


@pytest.mark.parametrize("requested,expected_sizes", [
    (2.0, [(80, 60)]),
    # sqrt(3) pass first: floor(40 * 1.732) x floor(30 * 1.732)
    (3.0, [(69, 51), (120, 90)]),
])
def test_bicubic_resizes_in_two_passes_above_double(requested, expected_sizes):
    source = _gradient()
    target = compute_safe_scale(source.width, source.height, requested)

    with patch("pixelcore.engines.upscaler.cv2.resize", wraps=cv2.resize) as resize:
        result = bicubic_upscale(source, target)

    assert [c.args[1] for c in resize.call_args_list] == expected_sizes
    assert (result.width, result.height) == expected_sizes[-1]


# =============================================================================
# Enhancements
# =============================================================================

def test_all_enhancements_applied_in_order():
    buffer = _gradient()

    applied = apply_enhancements(buffer, UpscaleOptions())

    assert applied == ["detail_enhancement", "noise_reduction", "sharpening", "color_enhancement"]


def test_disabled_enhancements_leave_pixels_alone():
    buffer = _gradient()
    before = buffer.pixels.copy()
    options = UpscaleOptions(
        enhance_details=False,
        reduce_noise=False,
        sharpen_amount=0,
        color_enhancement=False
    )

    applied = apply_enhancements(buffer, options)

    assert applied == []
    np.testing.assert_array_equal(buffer.pixels, before)


def test_single_enhancement_toggle():
    options = UpscaleOptions(enhance_details=False, reduce_noise=False, color_enhancement=False, sharpen_amount=50)

    assert apply_enhancements(_gradient(), options) == ["sharpening"]


# =============================================================================
# Quality metrics
# =============================================================================

def test_flat_output_metrics():
    metrics = upscale_quality_metrics(PixelBuffer.from_array(solid_rgb(64, 64, (30, 60, 90))))

    assert metrics == {"sharpness": 0.0, "noise": 0.0, "artifacts": 100.0}


def test_tiny_output_metrics_are_zero():
    metrics = upscale_quality_metrics(PixelBuffer.from_array(solid_rgb(6, 6, (30, 60, 90))))

    assert metrics == {"sharpness": 0.0, "noise": 0.0, "artifacts": 0.0}


def test_metrics_stay_in_range():
    rng = np.random.default_rng(5)
    noisy = PixelBuffer.from_array(rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8))

    metrics = upscale_quality_metrics(noisy)

    assert set(metrics) == {"sharpness", "noise", "artifacts"}
    assert all(0.0 <= value <= 100.0 for value in metrics.values())
    assert metrics["noise"] > 0
