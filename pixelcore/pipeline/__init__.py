"""
Pixel Processing Pipeline

Two async entry points sharing one resource governor:
1. remove_background - heuristic mask generation, fusion and alpha refinement
2. upscale_image     - safe-scale clamping, strategy selection and enhancement
"""

from pixelcore.pipeline.stages import ProgressCallback, remove_background, upscale_image

__all__ = ["ProgressCallback", "remove_background", "upscale_image"]
