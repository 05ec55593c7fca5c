"""
Global Exception Handling

Defines the processing error taxonomy and turns it into structured
JSON responses. Every error is terminal for its operation.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pixelcore.core.logging import get_logger, job_id_var, stage_var

logger = get_logger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Custom Exceptions
# =============================================================================

class PixelCoreError(Exception):
    """Base exception for pixel processing failures."""

    kind = "ProcessingError"

    def __init__(
        self,
        message: str,
        code: int = 500,
        job_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.job_id = job_id or job_id_var.get()
        self.stage = stage or stage_var.get()
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "kind": self.kind,
            "job_id": self.job_id,
            "code": self.code,
            "stage": self.stage,
            "details": self.details,
            "timestamp": _utc_timestamp(),
        }


class InvalidInput(PixelCoreError):
    """Raised for a wrong MIME type or an empty upload."""

    kind = "InvalidInput"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class FileTooLarge(PixelCoreError):
    """Raised when the upload exceeds the pipeline byte ceiling."""

    kind = "FileTooLarge"

    def __init__(self, size_bytes: int, limit_bytes: int, **kwargs):
        size_mb = size_bytes / (1024 * 1024)
        limit_mb = limit_bytes / (1024 * 1024)
        super().__init__(
            f"File too large ({size_mb:.1f}MB). Maximum {limit_mb:.0f}MB allowed.",
            code=413,
            **kwargs
        )
        self.details["size_bytes"] = size_bytes
        self.details["limit_bytes"] = limit_bytes


class UnsupportedFormat(PixelCoreError):
    """Raised when the bytes are not a recognizable image."""

    kind = "UnsupportedFormat"

    def __init__(self, message: str = "Unsupported image format", **kwargs):
        super().__init__(message, code=415, **kwargs)


class DecodeFailed(PixelCoreError):
    """Raised when a recognized image cannot be decoded."""

    kind = "DecodeFailed"

    def __init__(self, message: str = "Failed to decode image", **kwargs):
        super().__init__(message, code=422, **kwargs)


class ResourceExhausted(PixelCoreError):
    """Raised when too many operations are already in flight."""

    kind = "ResourceExhausted"

    def __init__(self, active: int, limit: int, **kwargs):
        super().__init__(
            "Too many images being processed. Please wait for current operations to complete.",
            code=429,
            **kwargs
        )
        self.details["active_operations"] = active
        self.details["limit"] = limit


class RenderingUnavailable(PixelCoreError):
    """Raised when a drawing surface cannot be created."""

    kind = "RenderingUnavailable"

    def __init__(self, message: str = "Drawing surface unavailable", **kwargs):
        super().__init__(message, code=500, **kwargs)


class ScaleTooSmall(PixelCoreError):
    """Raised when safety clamping leaves an upscale factor too close to 1."""

    kind = "ScaleTooSmall"

    def __init__(self, effective_scale: float, minimum: float, width: int, height: int, **kwargs):
        super().__init__(
            f"Scale factor too small or image too large for upscaling "
            f"(effective {effective_scale:.2f}x for {width}x{height}, minimum {minimum:.1f}x).",
            code=422,
            **kwargs
        )
        self.details["effective_scale"] = round(effective_scale, 4)
        self.details["minimum_scale"] = minimum
        self.details["source_dimensions"] = [width, height]


class EncodingFailed(PixelCoreError):
    """Raised when output serialization yields no data."""

    kind = "EncodingFailed"

    def __init__(self, message: str = "Failed to create output image", **kwargs):
        super().__init__(message, code=500, **kwargs)


# =============================================================================
# FastAPI Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(PixelCoreError)
    async def pixelcore_exception_handler(request: Request, exc: PixelCoreError):
        logger.warning(
            "processing_rejected",
            error=exc.message,
            kind=exc.kind,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )

        return JSONResponse(status_code=exc.code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        job_id = job_id_var.get()

        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "job_id": job_id,
                "code": 500,
                "timestamp": _utc_timestamp()
            }
        )
