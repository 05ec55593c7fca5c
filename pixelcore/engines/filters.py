"""
Neighborhood Filters for Upscaling

In-place RGB filters shared by the upscaling strategies and the
post-processing stack. Every neighborhood filter leaves its border band
(half the kernel size) untouched, and the alpha channel is never filtered.
"""

import cv2
import numpy as np

from pixelcore.engines.buffers import PixelBuffer, activity_map


# =============================================================================
# Filter constants
# =============================================================================

DETAIL_GAIN = 0.1
DETAIL_BLEND = 0.2

NOISE_TOLERANCE = 30

SHARPEN_MIN_GAIN = 0.15
SHARPEN_MAX_GAIN = 0.2

COLOR_BOOST = 1.03
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)

LOCAL_CONTRAST_GAIN = 0.2
LOCAL_CONTRAST_BLEND = 0.25

BILATERAL_SPATIAL_DIVISOR = 8.0
BILATERAL_RANGE_DIVISOR = 800.0
BILATERAL_BLEND = 0.3

SELECTIVE_SMOOTH_EDGE = 40


def _round_clip(values: np.ndarray) -> np.ndarray:
    """Half-up rounding into uint8 range."""
    return np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)


def _interior(array: np.ndarray, border: int):
    h, w = array.shape[:2]
    return array[border:h - border, border:w - border]


def _has_interior(buffer: PixelBuffer, border: int) -> bool:
    return buffer.width > 2 * border and buffer.height > 2 * border


def _window_sum(rgb: np.ndarray, size: int) -> np.ndarray:
    return cv2.boxFilter(rgb, cv2.CV_32F, (size, size), normalize=False, borderType=cv2.BORDER_REPLICATE)


def _window_mean(rgb: np.ndarray, size: int) -> np.ndarray:
    return cv2.boxFilter(rgb, cv2.CV_32F, (size, size), normalize=True, borderType=cv2.BORDER_REPLICATE)


# =============================================================================
# Post-processing stack
# =============================================================================

def enhance_details(buffer: PixelBuffer) -> None:
    """5x5 high-pass boost, blended in at 20%."""
    if not _has_interior(buffer, 2):
        return
    rgb = buffer.rgb.astype(np.float32)
    high_pass = rgb * 25 - _window_sum(rgb, 5)

    enhanced = rgb.copy()
    _interior(enhanced, 2)[:] = _round_clip(_interior(rgb + high_pass * DETAIL_GAIN, 2))
    buffer.rgb[:] = _round_clip(rgb * (1 - DETAIL_BLEND) + enhanced * DETAIL_BLEND)


def reduce_noise(buffer: PixelBuffer) -> None:
    """Replace a channel with its 3x3 mean wherever it is already close to it."""
    if not _has_interior(buffer, 1):
        return
    rgb = buffer.rgb.astype(np.float32)
    mean = _window_mean(rgb, 3)

    center = _interior(rgb, 1)
    local = _interior(mean, 1)
    filtered = np.where(np.abs(center - local) < NOISE_TOLERANCE, np.floor(local + 0.5), center)
    _interior(buffer.rgb, 1)[:] = filtered.astype(np.uint8)


def sharpen_gain(amount: float) -> float:
    """Linear from SHARPEN_MIN_GAIN at amount 0 to SHARPEN_MAX_GAIN at amount 100."""
    return SHARPEN_MIN_GAIN + (SHARPEN_MAX_GAIN - SHARPEN_MIN_GAIN) * (amount / 100.0)


def sharpen(buffer: PixelBuffer, amount: float) -> None:
    """3x3 unsharp: c + (9c - sum) * amount/100 * gain."""
    if amount <= 0 or not _has_interior(buffer, 1):
        return
    rgb = buffer.rgb.astype(np.float32)
    high_pass = rgb * 9 - _window_sum(rgb, 3)
    factor = (amount / 100.0) * sharpen_gain(amount)
    _interior(buffer.rgb, 1)[:] = _round_clip(_interior(rgb + high_pass * factor, 1))


def enhance_colors(buffer: PixelBuffer) -> None:
    """3% saturation boost around Rec.601 luminance."""
    rgb = buffer.rgb.astype(np.float32)
    luminance = (rgb * LUMA_WEIGHTS).sum(axis=2, keepdims=True)
    buffer.rgb[:] = _round_clip(luminance + (rgb - luminance) * COLOR_BOOST)


# =============================================================================
# Strategy-specific filters
# =============================================================================

def local_contrast(buffer: PixelBuffer) -> None:
    """7x7 local contrast c + (c - mean) * 0.2, blended in at 25%."""
    if not _has_interior(buffer, 3):
        return
    rgb = buffer.rgb.astype(np.float32)
    mean = _window_mean(rgb, 7)

    enhanced = rgb.copy()
    _interior(enhanced, 3)[:] = _round_clip(_interior(rgb + (rgb - mean) * LOCAL_CONTRAST_GAIN, 3))
    buffer.rgb[:] = _round_clip(rgb * (1 - LOCAL_CONTRAST_BLEND) + enhanced * LOCAL_CONTRAST_BLEND)


def bilateral(buffer: PixelBuffer) -> None:
    """
    5x5 bilateral filter per channel, blended in at 30%.

    Spatial weight exp(-(dx^2 + dy^2) / 8), range weight exp(-delta^2 / 800).
    """
    if not _has_interior(buffer, 2):
        return
    rgb = buffer.rgb.astype(np.float32)
    h, w = rgb.shape[:2]
    center = rgb[2:h - 2, 2:w - 2]

    value_sum = np.zeros_like(center)
    weight_sum = np.zeros_like(center)
    for dy in range(-2, 3):
        for dx in range(-2, 3):
            neighbor = rgb[2 + dy:h - 2 + dy, 2 + dx:w - 2 + dx]
            spatial = np.exp(-(dx * dx + dy * dy) / BILATERAL_SPATIAL_DIVISOR)
            weight = spatial * np.exp(-((center - neighbor) ** 2) / BILATERAL_RANGE_DIVISOR)
            value_sum += neighbor * weight
            weight_sum += weight

    filtered = rgb.copy()
    filtered[2:h - 2, 2:w - 2] = np.floor(value_sum / weight_sum + 0.5)
    buffer.rgb[:] = _round_clip(rgb * (1 - BILATERAL_BLEND) + filtered * BILATERAL_BLEND)


def selective_smooth(buffer: PixelBuffer) -> None:
    """3x3 mean applied only where the 8-neighbor activity is low."""
    if not _has_interior(buffer, 1):
        return
    rgb = buffer.rgb.astype(np.float32)
    mean = _round_clip(_window_mean(rgb, 3))

    flat = _interior(activity_map(buffer.rgb), 1) < SELECTIVE_SMOOTH_EDGE
    target = _interior(buffer.rgb, 1)
    target[flat] = _interior(mean, 1)[flat]
