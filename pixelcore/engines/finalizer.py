"""
Output Finalizer

Encodes a governed surface to PNG, WebP or JPEG and releases the surface,
whether or not encoding succeeds.
"""

import io
import asyncio
from dataclasses import dataclass
from typing import Union

from PIL import Image

from pixelcore.core.exceptions import EncodingFailed
from pixelcore.core.logging import get_logger
from pixelcore.engines.buffers import PixelBuffer
from pixelcore.engines.governor import ResourceGovernor, ResourceHandle
from pixelcore.engines.schemas import BackgroundRemovalOptions, OutputFormat, UpscaleOptions

logger = get_logger(__name__)

MIN_QUALITY = 0.1
MAX_QUALITY = 1.0

MIME_TYPES = {
    OutputFormat.PNG: "image/png",
    OutputFormat.JPEG: "image/jpeg",
    OutputFormat.WEBP: "image/webp",
}

PIL_FORMATS = {
    OutputFormat.PNG: "PNG",
    OutputFormat.JPEG: "JPEG",
    OutputFormat.WEBP: "WEBP",
}


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    mime_type: str
    width: int
    height: int


def quality_fraction(quality: int) -> float:
    """Map 1-100 onto the [0.1, 1.0] encoder range."""
    return min(MAX_QUALITY, max(MIN_QUALITY, quality / 100.0))


def encode(buffer: PixelBuffer, output_format: OutputFormat, quality: int) -> EncodedImage:
    """Serialize a buffer. JPEG drops the alpha channel."""
    image = Image.fromarray(buffer.pixels)
    pil_quality = int(round(quality_fraction(quality) * 100))

    save_kwargs = {}
    if output_format == OutputFormat.JPEG:
        image = image.convert("RGB")
        save_kwargs["quality"] = pil_quality
    elif output_format == OutputFormat.WEBP:
        save_kwargs["quality"] = pil_quality
    else:
        save_kwargs["optimize"] = True

    output = io.BytesIO()
    try:
        image.save(output, format=PIL_FORMATS[output_format], **save_kwargs)
    except (OSError, ValueError, KeyError) as e:
        raise EncodingFailed(f"Failed to create output image: {e}") from e

    data = output.getvalue()
    if not data:
        raise EncodingFailed()

    return EncodedImage(
        data=data,
        mime_type=MIME_TYPES[output_format],
        width=buffer.width,
        height=buffer.height,
    )


async def finalize(
    handle: ResourceHandle,
    options: Union[BackgroundRemovalOptions, UpscaleOptions],
    governor: ResourceGovernor
) -> EncodedImage:
    """Encode the handle's surface off the event loop, then release it."""
    try:
        buffer = governor.as_buffer(handle)
        encoded = await asyncio.to_thread(encode, buffer, options.output_format, options.quality)
        logger.info(
            "output_encoded",
            mime_type=encoded.mime_type,
            output_bytes=len(encoded.data),
            dimensions=[encoded.width, encoded.height]
        )
        return encoded
    finally:
        governor.release(handle)
