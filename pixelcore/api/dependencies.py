"""
FastAPI Dependencies

Provides dependency injection for:
- Resource governor (one per process, built in the app lifespan)
"""

from fastapi import Request

from pixelcore.core.config import settings
from pixelcore.engines.governor import ResourceGovernor, psutil_memory_probe


def build_governor() -> ResourceGovernor:
    """Create the process-wide governor from settings.

    The memory-pressure check is only enabled when MEMORY_CEILING_BYTES is set.
    """
    memory_probe = None
    if settings.MEMORY_CEILING_BYTES:
        memory_probe = psutil_memory_probe(settings.MEMORY_CEILING_BYTES)

    return ResourceGovernor(
        max_active_operations=settings.MAX_ACTIVE_OPERATIONS,
        sweep_interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
        handle_ttl_seconds=settings.HANDLE_TTL_SECONDS,
        memory_pressure_ratio=settings.MEMORY_PRESSURE_RATIO,
        memory_probe=memory_probe,
    )


def get_governor(request: Request) -> ResourceGovernor:
    """Returns the governor from app state."""
    return request.app.state.governor
