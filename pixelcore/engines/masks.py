"""
Mask Generation and Fusion

Four independent masks vote on which pixels are background:
1. Object mask   - subject cues from the content analysis (skin, fur, activity, accents)
2. Edge mask     - Sobel gradient magnitude over brightness
3. Color mask    - distance from the dominant border color
4. Position mask - center prior

Convention: 0 = foreground (keep), 255 = background (remove).
The fused mask drives the alpha channel, optionally feathered and smoothed.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from pixelcore.core.logging import get_logger
from pixelcore.engines.analyzer import OBJECT_ACTIVITY, skin_tone_mask
from pixelcore.engines.buffers import PixelBuffer, activity_map, brightness, center_weight, texture_map
from pixelcore.engines.schemas import BackgroundAlgorithm, ContentAnalysis

logger = get_logger(__name__)

FOREGROUND = 0
BACKGROUND = 255


# =============================================================================
# Object mask thresholds
# =============================================================================

OBJECT_CENTER_WEIGHT = 0.3
ACCENT_MIN_SATURATION = 0.2
ACCENT_MIN_BRIGHTNESS = 20
ACCENT_MAX_BRIGHTNESS = 200
ACCENT_CENTER_WEIGHT = 0.4

# =============================================================================
# Edge / color / position thresholds
# =============================================================================

EDGE_SENSITIVITY_FACTOR = 2.5
COLOR_SENSITIVITY_FACTOR = 3.5
COLOR_SAMPLE_STRIDE = 10
COLOR_BUCKET = 12
POSITION_CENTER_WEIGHT = 0.3

# =============================================================================
# Fusion weights
# =============================================================================

OBJECT_WEIGHT = 0.4
EDGE_WEIGHT = 0.25
COLOR_WEIGHT = 0.2
POSITION_WEIGHT = 0.15

SUBJECT_OBJECT_WEIGHT = 0.5
SUBJECT_EDGE_WEIGHT = 0.3
CENTERED_POSITION_WEIGHT = 0.25

# =============================================================================
# Alpha application
# =============================================================================

ALPHA_THRESHOLD = 128
FEATHER_RADIUS = 8
DETAIL_ALPHA_BOOST = 1.05
SMOOTHING_RADIUS_DIVISOR = 20

# Strategy labels
SIMPLE_BACKGROUND_COMPLEXITY = 0.3
BUSY_BACKGROUND_COMPLEXITY = 0.4


@dataclass
class MaskSet:
    """The four masks for one buffer. Any of them may be skipped (None)."""
    width: int
    height: int
    object: Optional[np.ndarray] = None
    edge: Optional[np.ndarray] = None
    color: Optional[np.ndarray] = None
    position: Optional[np.ndarray] = None

    def items(self):
        return (
            ("object", self.object),
            ("edge", self.edge),
            ("color", self.color),
            ("position", self.position),
        )


def apply_algorithm_hint(analysis: ContentAnalysis, algorithm: BackgroundAlgorithm) -> ContentAnalysis:
    """Force the subject flag the caller asked for; auto leaves the analysis as-is."""
    if algorithm == BackgroundAlgorithm.PORTRAIT:
        return analysis.model_copy(update={"has_human": True})
    if algorithm == BackgroundAlgorithm.ANIMAL:
        return analysis.model_copy(update={"has_animal": True})
    if algorithm == BackgroundAlgorithm.OBJECT:
        return analysis.model_copy(update={"has_object": True})
    return analysis


def select_mask_strategy(analysis: ContentAnalysis, algorithm: BackgroundAlgorithm) -> str:
    """Label for the cue that dominates this image, reported in algorithms_used."""
    if algorithm != BackgroundAlgorithm.AUTO:
        return algorithm.value
    if analysis.has_human:
        return "portrait"
    if analysis.has_object and analysis.background_complexity < SIMPLE_BACKGROUND_COMPLEXITY:
        return "object"
    if analysis.background_complexity > BUSY_BACKGROUND_COMPLEXITY:
        return "edge-detection"
    return "color-clustering"


# =============================================================================
# Individual masks
# =============================================================================

def dominant_border_color(buffer: PixelBuffer) -> Tuple[int, int, int]:
    """
    Most frequent color bucket along the image border.

    Samples the top and bottom rows, then the left and right columns, every
    COLOR_SAMPLE_STRIDE pixels. Returns the first-seen sample of the winning
    bucket; ties go to the bucket seen first.
    """
    rgb = buffer.rgb
    w, h = buffer.width, buffer.height

    samples = []
    for x in range(0, w, COLOR_SAMPLE_STRIDE):
        samples.append(rgb[0, x])
        samples.append(rgb[h - 1, x])
    for y in range(0, h, COLOR_SAMPLE_STRIDE):
        samples.append(rgb[y, 0])
        samples.append(rgb[y, w - 1])

    counts: Dict[Tuple[int, int, int], int] = {}
    first_seen: Dict[Tuple[int, int, int], Tuple[int, int, int]] = {}
    for pixel in samples:
        color = (int(pixel[0]), int(pixel[1]), int(pixel[2]))
        key = (color[0] // COLOR_BUCKET, color[1] // COLOR_BUCKET, color[2] // COLOR_BUCKET)
        if key not in counts:
            counts[key] = 0
            first_seen[key] = color
        counts[key] += 1

    best_key = None
    best_count = 0
    for key, count in counts.items():
        if count > best_count:
            best_key, best_count = key, count
    return first_seen[best_key]


def _color_distance(rgb: np.ndarray, color: Tuple[int, int, int]) -> np.ndarray:
    diff = rgb.astype(np.float32) - np.array(color, dtype=np.float32)
    return np.sqrt((diff ** 2).sum(axis=2))


def object_mask(
    buffer: PixelBuffer,
    analysis: ContentAnalysis,
    sensitivity: int,
    activity: Optional[np.ndarray] = None,
    background_color: Optional[Tuple[int, int, int]] = None
) -> np.ndarray:
    rgb = buffer.rgb
    weight = center_weight(buffer.width, buffer.height)
    if activity is None:
        activity = activity_map(rgb)
    if background_color is None:
        background_color = dominant_border_color(buffer)

    foreground = np.zeros((buffer.height, buffer.width), dtype=bool)

    if analysis.has_human:
        foreground |= skin_tone_mask(rgb)
    if analysis.has_animal:
        foreground |= texture_map(rgb)
    if analysis.has_object:
        foreground |= (weight > OBJECT_CENTER_WEIGHT) & (activity > OBJECT_ACTIVITY)

    # Saturated mid-tone accents near the center, unless they are the background color
    data = rgb.astype(np.float32)
    high = data.max(axis=2)
    low = data.min(axis=2)
    saturation = (high - low) / np.maximum(high, 1.0)
    lum = brightness(rgb)
    accent = (
        (saturation > ACCENT_MIN_SATURATION)
        & (lum > ACCENT_MIN_BRIGHTNESS)
        & (lum < ACCENT_MAX_BRIGHTNESS)
        & (weight > ACCENT_CENTER_WEIGHT)
    )
    accent &= _color_distance(rgb, background_color) >= sensitivity * COLOR_SENSITIVITY_FACTOR
    foreground |= accent

    return np.where(foreground, FOREGROUND, BACKGROUND).astype(np.uint8)


def edge_mask(buffer: PixelBuffer, sensitivity: int) -> np.ndarray:
    """3x3 Sobel magnitude over brightness; strong gradients are foreground."""
    lum = brightness(buffer.rgb)
    gx = cv2.Sobel(lum, cv2.CV_32F, 1, 0, ksize=3, borderType=cv2.BORDER_REPLICATE)
    gy = cv2.Sobel(lum, cv2.CV_32F, 0, 1, ksize=3, borderType=cv2.BORDER_REPLICATE)
    magnitude = np.sqrt(gx * gx + gy * gy)
    return np.where(magnitude > sensitivity * EDGE_SENSITIVITY_FACTOR, FOREGROUND, BACKGROUND).astype(np.uint8)


def color_mask(
    buffer: PixelBuffer,
    sensitivity: int,
    background_color: Optional[Tuple[int, int, int]] = None
) -> np.ndarray:
    """Pixels close to the dominant border color are background."""
    if background_color is None:
        background_color = dominant_border_color(buffer)
    distance = _color_distance(buffer.rgb, background_color)
    return np.where(distance < sensitivity * COLOR_SENSITIVITY_FACTOR, BACKGROUND, FOREGROUND).astype(np.uint8)


def position_mask(width: int, height: int) -> np.ndarray:
    weight = center_weight(width, height)
    return np.where(weight > POSITION_CENTER_WEIGHT, FOREGROUND, BACKGROUND).astype(np.uint8)


def generate_masks(buffer: PixelBuffer, analysis: ContentAnalysis, sensitivity: int) -> MaskSet:
    """Build all four masks, sharing the activity map and border color."""
    activity = activity_map(buffer.rgb)
    background_color = dominant_border_color(buffer)

    return MaskSet(
        width=buffer.width,
        height=buffer.height,
        object=object_mask(buffer, analysis, sensitivity, activity=activity, background_color=background_color),
        edge=edge_mask(buffer, sensitivity),
        color=color_mask(buffer, sensitivity, background_color=background_color),
        position=position_mask(buffer.width, buffer.height),
    )


# =============================================================================
# Fusion
# =============================================================================

def fusion_weights(analysis: ContentAnalysis) -> Dict[str, float]:
    weights = {
        "object": OBJECT_WEIGHT,
        "edge": EDGE_WEIGHT,
        "color": COLOR_WEIGHT,
        "position": POSITION_WEIGHT,
    }
    if analysis.has_human or analysis.has_animal:
        weights["object"] = SUBJECT_OBJECT_WEIGHT
        weights["edge"] = SUBJECT_EDGE_WEIGHT
    if analysis.subject_in_center:
        weights["position"] = CENTERED_POSITION_WEIGHT
    return weights


def fuse_masks(masks: MaskSet, weights: Dict[str, float]) -> np.ndarray:
    """
    Weighted mean of the masks present, rounded half-up.

    Skipped masks drop out of both numerator and denominator. With no masks
    the result is all foreground.
    """
    total = np.zeros((masks.height, masks.width), dtype=np.float64)
    weight_sum = 0.0
    for name, mask in masks.items():
        if mask is None:
            continue
        weight = weights[name]
        total += mask.astype(np.float64) * weight
        weight_sum += weight

    if weight_sum == 0:
        return np.zeros((masks.height, masks.width), dtype=np.uint8)

    fused = np.floor(total / weight_sum + 0.5)
    return np.clip(fused, 0, 255).astype(np.uint8)


# =============================================================================
# Alpha
# =============================================================================

def feather_alpha(background: np.ndarray) -> np.ndarray:
    """
    Alpha for background pixels from their distance to the nearest foreground pixel.

    Falls off linearly to 0 at FEATHER_RADIUS, so it never increases with distance.
    """
    if not background.any():
        return np.full(background.shape, 255, dtype=np.uint8)
    if background.all():
        return np.zeros(background.shape, dtype=np.uint8)

    distance = cv2.distanceTransform(background.astype(np.uint8), cv2.DIST_L2, cv2.DIST_MASK_PRECISE)
    alpha = np.floor((1.0 - distance.astype(np.float64) / FEATHER_RADIUS) * 255.0 + 0.5)
    return np.clip(alpha, 0, 255).astype(np.uint8)


def apply_mask_to_alpha(
    buffer: PixelBuffer,
    fused: np.ndarray,
    feather_edges: bool = True,
    preserve_details: bool = True
) -> None:
    """Write the fused mask into the buffer's alpha channel in place."""
    alpha = buffer.alpha
    background = fused > ALPHA_THRESHOLD

    if feather_edges:
        feathered = feather_alpha(background)
        alpha[background] = np.minimum(alpha[background], feathered[background])
    else:
        alpha[background] = 0

    if preserve_details:
        foreground = ~background
        boosted = np.floor(alpha[foreground].astype(np.float64) * DETAIL_ALPHA_BOOST + 0.5)
        alpha[foreground] = np.minimum(255.0, boosted).astype(np.uint8)


def smooth_alpha(buffer: PixelBuffer, smoothing_level: int) -> None:
    """Exponential-distance-weighted mean of in-bounds alpha, in place."""
    radius = smoothing_level // SMOOTHING_RADIUS_DIVISOR
    if radius <= 0:
        return

    offsets = np.arange(-radius, radius + 1, dtype=np.float32)
    dist = np.hypot(offsets[None, :], offsets[:, None])
    kernel = np.exp(-dist / radius).astype(np.float32)

    alpha = buffer.alpha.astype(np.float32)
    weighted = cv2.filter2D(alpha, cv2.CV_32F, kernel, borderType=cv2.BORDER_CONSTANT)
    coverage = cv2.filter2D(np.ones_like(alpha), cv2.CV_32F, kernel, borderType=cv2.BORDER_CONSTANT)
    smoothed = np.floor(weighted / coverage + 0.5)
    buffer.alpha[:] = np.clip(smoothed, 0, 255).astype(np.uint8)


# =============================================================================
# Quality metrics
# =============================================================================

def background_quality_metrics(buffer: PixelBuffer) -> Dict[str, float]:
    total = max(1, buffer.pixel_count)
    edge_fraction = float((activity_map(buffer.rgb) > OBJECT_ACTIVITY).sum()) / total
    transparent_fraction = float((buffer.alpha == 0).sum()) / total

    return {
        "edge_quality": round(min(100.0, edge_fraction * 500), 2),
        "background_removal": round(min(100.0, transparent_fraction * 200), 2),
        "detail_preservation": round(max(0.0, 100 - transparent_fraction * 100), 2),
    }
