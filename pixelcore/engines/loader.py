"""
Pixel Buffer Loader

Decodes uploaded bytes into a dimension-clamped RGBA PixelBuffer:
1. Validate input (content type, empty payload, byte ceiling before decode)
2. Decode with Pillow, letting JPEG draft mode shrink oversized sources
3. Apply EXIF orientation
4. Clamp to the decode ceiling, then to the safe working size

Runs synchronously; pipeline entry points call it through asyncio.to_thread.
"""

import io
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from pixelcore.core.config import settings
from pixelcore.core.exceptions import (
    DecodeFailed,
    FileTooLarge,
    InvalidInput,
    UnsupportedFormat,
)
from pixelcore.core.logging import get_logger
from pixelcore.engines.buffers import PixelBuffer
from pixelcore.engines.governor import clamp_dimensions

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoadConstraints:
    max_file_bytes: int
    max_dimension: int
    max_decode_pixels: int
    safe_working_pixels: int

    @classmethod
    def for_background_removal(cls) -> "LoadConstraints":
        return cls(
            max_file_bytes=settings.BG_MAX_FILE_BYTES,
            max_dimension=settings.BG_MAX_DIMENSION,
            max_decode_pixels=settings.BG_MAX_DECODE_PIXELS,
            safe_working_pixels=settings.BG_SAFE_WORKING_PIXELS,
        )

    @classmethod
    def for_upscaling(cls) -> "LoadConstraints":
        return cls(
            max_file_bytes=settings.UPSCALE_MAX_FILE_BYTES,
            max_dimension=settings.UPSCALE_MAX_DIMENSION,
            max_decode_pixels=settings.UPSCALE_MAX_DECODE_PIXELS,
            safe_working_pixels=settings.UPSCALE_SAFE_WORKING_PIXELS,
        )


def _resize_if_needed(image: Image.Image, max_dimension: int, max_pixels: int) -> Image.Image:
    target = clamp_dimensions(image.width, image.height, max_dimension, max_pixels)
    if target == image.size:
        return image
    return image.resize(target, Image.Resampling.LANCZOS)


def load(
    image_bytes: bytes,
    constraints: LoadConstraints,
    content_type: Optional[str] = None
) -> PixelBuffer:
    """Decode image bytes into an RGBA buffer within the given constraints."""
    if content_type is not None and not content_type.startswith("image/"):
        raise InvalidInput(f"Expected an image upload, got '{content_type}'")
    if not image_bytes:
        raise InvalidInput("Empty image payload")
    if len(image_bytes) > constraints.max_file_bytes:
        raise FileTooLarge(len(image_bytes), constraints.max_file_bytes)

    try:
        image = Image.open(io.BytesIO(image_bytes))
    except UnidentifiedImageError as e:
        raise UnsupportedFormat() from e
    except (Image.DecompressionBombError, OSError, ValueError) as e:
        raise DecodeFailed(f"Failed to decode image: {e}") from e

    source_format = image.format
    source_size = image.size

    try:
        # Clamping is symmetric in width/height, so the pre-rotation size
        # gives the same draft target as the oriented one.
        draft_size = clamp_dimensions(
            image.width, image.height,
            constraints.max_dimension, constraints.max_decode_pixels
        )
        if draft_size != image.size:
            image.draft("RGB", draft_size)

        image.load()
        image = ImageOps.exif_transpose(image)
        image = image.convert("RGBA")

        image = _resize_if_needed(image, constraints.max_dimension, constraints.max_decode_pixels)
        image = _resize_if_needed(image, constraints.max_dimension, constraints.safe_working_pixels)

        pixels = np.array(image, dtype=np.uint8)
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeFailed(f"Failed to decode image: {e}") from e

    buffer = PixelBuffer(width=image.width, height=image.height, pixels=pixels)

    logger.info(
        "image_loaded",
        format=source_format,
        input_bytes=len(image_bytes),
        source_dimensions=list(source_size),
        working_dimensions=[buffer.width, buffer.height]
    )

    return buffer
