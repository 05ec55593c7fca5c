"""
Pixel processing engines: governor, loader, analyzer, masks, upscaler, finalizer.
"""

from pixelcore.engines.buffers import PixelBuffer
from pixelcore.engines.governor import ResourceGovernor, ResourceHandle, clamp_dimensions
from pixelcore.engines.schemas import (
    BackgroundAlgorithm,
    BackgroundRemovalOptions,
    ContentAnalysis,
    OutputFormat,
    ProcessingResult,
    UpscaleAlgorithm,
    UpscaleOptions,
)

__all__ = [
    "PixelBuffer",
    "ResourceGovernor",
    "ResourceHandle",
    "clamp_dimensions",
    "BackgroundAlgorithm",
    "BackgroundRemovalOptions",
    "ContentAnalysis",
    "OutputFormat",
    "ProcessingResult",
    "UpscaleAlgorithm",
    "UpscaleOptions",
]
