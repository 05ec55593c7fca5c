"""
Content Analyzer

Rule-based (non-ML) analysis of a PixelBuffer on a strided sample grid.

Background removal uses it to decide which subject cues to trust:
- Skin tone across light, medium and dark bands
- Fur-like mid-frequency texture
- Edge activity and whether it concentrates in the center

Upscaling uses it to choose a strategy:
- Color complexity, edge ratio, high-frequency ratio and noise level
- Content type (text / art / photo / mixed) and pixel-art detection
- 8x8 block flatness as a compression-artifact signature

Analysis is read-only: the buffer is never modified.
"""

from collections import Counter
from typing import List

import numpy as np

from pixelcore.core.logging import get_logger
from pixelcore.engines.buffers import PixelBuffer, activity_map, brightness, center_weight, texture_map
from pixelcore.engines.schemas import ContentAnalysis, ContentType, DominantColor

logger = get_logger(__name__)


# =============================================================================
# Sampling
# =============================================================================

BACKGROUND_STRIDE = 3
UPSCALE_STRIDE = 4

# =============================================================================
# Subject detection thresholds
# =============================================================================

HUMAN_SKIN_FRACTION = 0.015
ANIMAL_TEXTURE_FRACTION = 0.02
OBJECT_ACTIVITY = 30
OBJECT_EDGE_FRACTION = 0.1

# Normalized distance from center (0 = center, 1 = corner)
CENTER_REGION_RADIUS = 0.4
EDGE_REGION_RADIUS = 0.7

DOMINANT_COLOR_BUCKET = 32
DOMINANT_COLOR_COUNT = 5

BASE_CONFIDENCE = 0.3
CONFIDENCE_STEP = 0.3
MAX_CONFIDENCE = 0.9

# =============================================================================
# Upscale classification thresholds
# =============================================================================

COLOR_COMPLEXITY_BUCKET = 16
EDGE_ACTIVITY = 40
HIGH_FREQUENCY_ACTIVITY = 120
NOISE_DEVIATION = 25

TEXT_HIGH_FREQUENCY_RATIO = 0.15
ART_MAX_COMPLEXITY = 0.05
ART_MIN_EDGE_RATIO = 0.3
PHOTO_MAX_NOISE = 0.1
SHARP_EDGE_RATIO = 0.2
PIXEL_ART_MAX_COMPLEXITY = 0.03
PIXEL_ART_MIN_EDGE_RATIO = 0.4

ARTIFACT_BLOCK_SIZE = 8
ARTIFACT_BLOCK_VARIANCE = 50


# =============================================================================
# Per-pixel classifiers
# =============================================================================

def skin_tone_mask(rgb: np.ndarray) -> np.ndarray:
    """True where a pixel falls in the light, medium or dark skin band."""
    data = rgb.astype(np.int32)
    r, g, b = data[..., 0], data[..., 1], data[..., 2]
    spread = data.max(axis=-1) - data.min(axis=-1)

    light = (r > 95) & (g > 40) & (b > 20) & (spread > 15) & (np.abs(r - g) > 15) & (r > g) & (r > b)
    medium = (r > 60) & (g > 30) & (b > 15) & (r >= g) & (g >= b) & (r - b > 10)
    dark = (r > 30) & (g > 20) & (b > 10) & (r > g) & (g > b) & (r - b > 5)

    return light | medium | dark


def neighbor_mean_deviation(lum: np.ndarray) -> np.ndarray:
    """|center - mean of 8 neighbors| with a zero 1 px border."""
    h, w = lum.shape
    result = np.zeros((h, w), dtype=np.float32)
    if h < 3 or w < 3:
        return result

    total = np.zeros((h - 2, w - 2), dtype=np.float32)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            total += lum[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx]
    result[1:-1, 1:-1] = np.abs(lum[1:-1, 1:-1] - total / 8.0)
    return result


def block_flatness_ratio(lum: np.ndarray, block: int = ARTIFACT_BLOCK_SIZE,
                         max_variance: float = ARTIFACT_BLOCK_VARIANCE) -> float:
    """
    Fraction of block x block tiles whose brightness variance is below max_variance.

    Tiles start at 0, block, 2*block, ... strictly below dim - block.
    """
    h, w = lum.shape
    rows = len(range(0, h - block, block))
    cols = len(range(0, w - block, block))
    if rows == 0 or cols == 0:
        return 0.0

    tiles = lum[:rows * block, :cols * block].reshape(rows, block, cols, block)
    variances = tiles.var(axis=(1, 3))
    return float((variances < max_variance).mean())


def _dominant_colors(samples: np.ndarray) -> List[DominantColor]:
    buckets = (samples // DOMINANT_COLOR_BUCKET).astype(np.int32)
    keys = buckets[:, 0] * 64 + buckets[:, 1] * 8 + buckets[:, 2]
    counts = Counter(keys.tolist())
    total = len(keys)

    colors = []
    for key, count in counts.most_common(DOMINANT_COLOR_COUNT):
        colors.append(DominantColor(
            r=(key // 64) * DOMINANT_COLOR_BUCKET,
            g=((key // 8) % 8) * DOMINANT_COLOR_BUCKET,
            b=(key % 8) * DOMINANT_COLOR_BUCKET,
            frequency=round(count / total, 4),
        ))
    return colors


# =============================================================================
# Analysis
# =============================================================================

def analyze(buffer: PixelBuffer, stride: int = BACKGROUND_STRIDE) -> ContentAnalysis:
    """Summarize a buffer for mask weighting and upscale strategy selection."""
    rgb = buffer.rgb
    activity = activity_map(rgb)
    texture = texture_map(rgb)
    lum = brightness(rgb)

    grid = (slice(None, None, stride), slice(None, None, stride))
    sample_rgb = rgb[grid].reshape(-1, 3)
    sample_activity = activity[grid].ravel()
    sample_count = max(1, sample_activity.size)

    # Subject detection
    skin_fraction = skin_tone_mask(sample_rgb).sum() / sample_count
    texture_fraction = texture[grid].sum() / sample_count
    edge_fraction = float((sample_activity > OBJECT_ACTIVITY).sum() / sample_count)

    has_human = bool(skin_fraction > HUMAN_SKIN_FRACTION)
    has_animal = bool(texture_fraction > ANIMAL_TEXTURE_FRACTION)
    has_object = bool(edge_fraction > OBJECT_EDGE_FRACTION)

    radius = 1.0 - center_weight(buffer.width, buffer.height)[grid].ravel()
    center_activity = int(sample_activity[radius < CENTER_REGION_RADIUS].sum())
    edge_activity = int(sample_activity[radius > EDGE_REGION_RADIUS].sum())
    subject_in_center = center_activity > edge_activity

    confidence = min(
        MAX_CONFIDENCE,
        BASE_CONFIDENCE + CONFIDENCE_STEP * has_human + CONFIDENCE_STEP * has_object
    )

    # Upscale classification
    color_buckets = (sample_rgb // COLOR_COMPLEXITY_BUCKET).astype(np.int32)
    unique_colors = len(np.unique(color_buckets[:, 0] * 256 + color_buckets[:, 1] * 16 + color_buckets[:, 2]))
    color_complexity = unique_colors / sample_count

    edge_ratio = float((sample_activity > EDGE_ACTIVITY).sum() / sample_count)
    high_frequency_ratio = float((sample_activity > HIGH_FREQUENCY_ACTIVITY).sum() / sample_count)
    noise_level = float((neighbor_mean_deviation(lum)[grid] > NOISE_DEVIATION).sum() / sample_count)

    if high_frequency_ratio > TEXT_HIGH_FREQUENCY_RATIO:
        content_type = ContentType.TEXT
    elif color_complexity < ART_MAX_COMPLEXITY and edge_ratio > ART_MIN_EDGE_RATIO:
        content_type = ContentType.ART
    elif noise_level < PHOTO_MAX_NOISE:
        content_type = ContentType.PHOTO
    else:
        content_type = ContentType.MIXED

    analysis = ContentAnalysis(
        has_human=has_human,
        has_animal=has_animal,
        has_object=has_object,
        subject_in_center=subject_in_center,
        background_complexity=edge_fraction,
        dominant_colors=_dominant_colors(sample_rgb),
        confidence=round(confidence, 4),
        content_type=content_type,
        has_sharp_edges=edge_ratio > SHARP_EDGE_RATIO,
        noise_level=noise_level,
        color_complexity=color_complexity,
        is_pixel_art=color_complexity < PIXEL_ART_MAX_COMPLEXITY and edge_ratio > PIXEL_ART_MIN_EDGE_RATIO,
        compression_artifacts=block_flatness_ratio(lum),
    )

    logger.debug(
        "content_analyzed",
        stride=stride,
        samples=sample_count,
        has_human=has_human,
        has_animal=has_animal,
        has_object=has_object,
        subject_in_center=subject_in_center,
        content_type=content_type.value,
        edge_ratio=round(edge_ratio, 4)
    )

    return analysis
