"""
Pixel Buffer Primitives

PixelBuffer is the unit of work passed between stages: an RGBA uint8 array of
shape (height, width, 4). The helpers below compute the per-pixel maps that the
analyzer, mask generators and upscaling filters share.
"""

from dataclasses import dataclass

import numpy as np


# =============================================================================
# Shared thresholds
# =============================================================================

TEXTURE_MIN_DIFF = 150
TEXTURE_MAX_DIFF = 800
TEXTURE_BORDER = 2


@dataclass
class PixelBuffer:
    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self):
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Pixel buffer must be uint8, got {self.pixels.dtype}")
        if self.pixels.shape != (self.height, self.width, 4):
            raise ValueError(
                f"Pixel array shape {self.pixels.shape} does not match "
                f"{self.width}x{self.height} RGBA"
            )

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> "PixelBuffer":
        """Wrap an RGB or RGBA array, adding an opaque alpha channel if needed."""
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ValueError(f"Expected HxWx3 or HxWx4 array, got {pixels.shape}")
        if pixels.shape[2] == 3:
            alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
            pixels = np.concatenate([pixels.astype(np.uint8), alpha], axis=2)
        pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
        return cls(width=pixels.shape[1], height=pixels.shape[0], pixels=pixels)

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


# =============================================================================
# Per-pixel maps
# =============================================================================

def brightness(rgb: np.ndarray) -> np.ndarray:
    """(r + g + b) / 3 as float32."""
    return rgb.astype(np.float32).sum(axis=2) / 3.0


def center_weight(width: int, height: int) -> np.ndarray:
    """1 at the image center falling to 0 at the corners."""
    cx, cy = width / 2.0, height / 2.0
    max_dist = np.hypot(cx, cy)
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    dist = np.hypot(xs - cx, ys - cy)
    if max_dist == 0:
        return np.ones((height, width), dtype=np.float32)
    return (1.0 - dist / max_dist).astype(np.float32)


def activity_map(rgb: np.ndarray) -> np.ndarray:
    """
    Max over the 8 neighbors of the summed absolute RGB difference.

    The 1 px border is 0.
    """
    h, w = rgb.shape[:2]
    result = np.zeros((h, w), dtype=np.int32)
    if h < 3 or w < 3:
        return result

    data = rgb.astype(np.int32)
    center = data[1:-1, 1:-1]
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            neighbor = data[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx]
            diff = np.abs(center - neighbor).sum(axis=2)
            np.maximum(result[1:-1, 1:-1], diff, out=result[1:-1, 1:-1])
    return result


def texture_map(rgb: np.ndarray) -> np.ndarray:
    """
    Fur-like texture: sum of |center - neighbor| brightness over the 5x5 window
    lies strictly between TEXTURE_MIN_DIFF and TEXTURE_MAX_DIFF.

    Pixels within TEXTURE_BORDER of the edge are never texture.
    """
    h, w = rgb.shape[:2]
    result = np.zeros((h, w), dtype=bool)
    b = TEXTURE_BORDER
    if h <= 2 * b or w <= 2 * b:
        return result

    lum = brightness(rgb)
    center = lum[b:h - b, b:w - b]
    total = np.zeros_like(center)
    for dy in range(-b, b + 1):
        for dx in range(-b, b + 1):
            total += np.abs(center - lum[b + dy:h - b + dy, b + dx:w - b + dx])
    result[b:h - b, b:w - b] = (total > TEXTURE_MIN_DIFF) & (total < TEXTURE_MAX_DIFF)
    return result
