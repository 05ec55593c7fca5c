"""PixelCore: heuristic background removal and upscaling."""

__version__ = "1.0.0"
