"""
Resource Governor

Owns the safety layer shared by both pipelines:
1. Dimension and pixel-count ceilings (clamp_dimensions)
2. Processing surface acquisition and guaranteed release
3. Admission control over concurrent operations
4. Periodic sweep of stale surfaces and memory-pressure cleanup

One governor instance is created per process (the HTTP app builds it in its
lifespan) and passed explicitly to every pipeline entry point.
"""

import math
import time
import uuid
import asyncio
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np
import psutil

from pixelcore.core.exceptions import RenderingUnavailable, ResourceExhausted
from pixelcore.core.logging import get_logger
from pixelcore.core.metrics import (
    record_admission_rejection,
    record_forced_release,
    update_governor_metrics,
)
from pixelcore.engines.buffers import PixelBuffer

logger = get_logger(__name__)

# (used_bytes, ceiling_bytes) or None when telemetry is unavailable
MemoryProbe = Callable[[], Optional[Tuple[int, int]]]


# =============================================================================
# Governor defaults
# =============================================================================

DEFAULT_MAX_ACTIVE_OPERATIONS = 2
DEFAULT_SWEEP_INTERVAL_SECONDS = 15.0
DEFAULT_HANDLE_TTL_SECONDS = 120.0
DEFAULT_MEMORY_PRESSURE_RATIO = 0.8

# Largest single surface we will try to allocate
MAX_SURFACE_DIMENSION = 16384
MAX_SURFACE_PIXELS = 16384 * 16384


def clamp_dimensions(width: int, height: int, max_dimension: int, max_pixels: int) -> Tuple[int, int]:
    """
    Scale (width, height) down so the longer side is at most max_dimension and
    the area is at most max_pixels. Aspect ratio is preserved, results are
    floored with a minimum of 1, and the function is idempotent.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Dimensions must be positive, got {width}x{height}")

    scale = min(
        1.0,
        max_dimension / max(width, height),
        math.sqrt(max_pixels / (width * height)),
    )
    if scale >= 1.0:
        return width, height

    w = max(1, int(math.floor(width * scale)))
    h = max(1, int(math.floor(height * scale)))

    # Raising a floored side to 1 can push extreme aspect ratios over the area cap
    if w * h > max_pixels:
        if w >= h:
            w = max(1, max_pixels // h)
        else:
            h = max(1, max_pixels // w)
    return w, h


def psutil_memory_probe(ceiling_bytes: Optional[int] = None) -> MemoryProbe:
    """
    Build a probe reporting this process's RSS against a ceiling.

    Without an explicit ceiling the machine's total memory is used.
    """
    process = psutil.Process()

    def probe() -> Optional[Tuple[int, int]]:
        used = process.memory_info().rss
        ceiling = ceiling_bytes or psutil.virtual_memory().total
        if not ceiling:
            return None
        return used, ceiling

    return probe


@dataclass
class ResourceHandle:
    """A governed processing surface. Released exactly once."""
    id: str
    operation_id: str
    width: int
    height: int
    pixels: np.ndarray = field(repr=False)
    acquired_at: float
    released: bool = False


class OperationScope:
    """Handles acquired inside one admitted operation."""

    def __init__(self, governor: "ResourceGovernor", operation_id: str, name: str):
        self.governor = governor
        self.operation_id = operation_id
        self.name = name
        self.handles: List[ResourceHandle] = []

    def acquire(self, width: int, height: int, pixels: Optional[np.ndarray] = None) -> ResourceHandle:
        handle = self.governor.acquire(width, height, self.operation_id, pixels=pixels)
        self.handles.append(handle)
        return handle

    def release_all(self) -> int:
        released = 0
        for handle in self.handles:
            if self.governor.release(handle):
                released += 1
        self.handles.clear()
        return released


class ResourceGovernor:
    """Admission control and surface bookkeeping for pixel operations."""

    def __init__(
        self,
        max_active_operations: int = DEFAULT_MAX_ACTIVE_OPERATIONS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        handle_ttl_seconds: float = DEFAULT_HANDLE_TTL_SECONDS,
        memory_pressure_ratio: float = DEFAULT_MEMORY_PRESSURE_RATIO,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
        memory_probe: Optional[MemoryProbe] = None,
    ):
        self.max_active_operations = max_active_operations
        self.sweep_interval_seconds = sweep_interval_seconds
        self.handle_ttl_seconds = handle_ttl_seconds
        self.memory_pressure_ratio = memory_pressure_ratio
        self._clock = clock
        self._sleep = sleep
        self._memory_probe = memory_probe

        self._operations: Dict[str, str] = {}
        self._handles: Dict[str, ResourceHandle] = {}
        self._sweeper: Optional[asyncio.Task] = None

    clamp_dimensions = staticmethod(clamp_dimensions)

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    @property
    def active_operations(self) -> int:
        return len(self._operations)

    @property
    def active_handles(self) -> int:
        return len(self._handles)

    def _publish(self):
        update_governor_metrics(self.active_operations, self.active_handles)

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def admit(self, operation: str) -> str:
        """Register an in-flight operation; returns its id."""
        if self.active_operations >= self.max_active_operations:
            record_admission_rejection(operation)
            logger.warning(
                "admission_rejected",
                operation=operation,
                active_operations=self.active_operations,
                limit=self.max_active_operations
            )
            raise ResourceExhausted(self.active_operations, self.max_active_operations)

        operation_id = uuid.uuid4().hex
        self._operations[operation_id] = operation
        self._publish()
        logger.debug("operation_admitted", operation=operation, operation_id=operation_id)
        return operation_id

    def finish(self, operation_id: str):
        """Deregister an operation. Unknown ids are ignored."""
        if self._operations.pop(operation_id, None) is not None:
            self._publish()

    @contextmanager
    def operation(self, name: str) -> Iterator[OperationScope]:
        """
        Admit an operation for the duration of the block.

        Every handle acquired through the yielded scope is released on exit,
        whether the block returns, raises or is cancelled.
        """
        operation_id = self.admit(name)
        scope = OperationScope(self, operation_id, name)
        try:
            yield scope
        finally:
            scope.release_all()
            self.finish(operation_id)

    # -------------------------------------------------------------------------
    # Surfaces
    # -------------------------------------------------------------------------

    def acquire(
        self,
        width: int,
        height: int,
        operation_id: str,
        pixels: Optional[np.ndarray] = None
    ) -> ResourceHandle:
        """Allocate (or adopt) an RGBA surface of the given size."""
        if width <= 0 or height <= 0 or width > MAX_SURFACE_DIMENSION or height > MAX_SURFACE_DIMENSION \
                or width * height > MAX_SURFACE_PIXELS:
            raise RenderingUnavailable(f"Cannot create a {width}x{height} drawing surface")

        if pixels is None:
            try:
                pixels = np.zeros((height, width, 4), dtype=np.uint8)
            except MemoryError as e:
                raise RenderingUnavailable(
                    f"Out of memory allocating a {width}x{height} drawing surface"
                ) from e
        elif pixels.shape != (height, width, 4) or pixels.dtype != np.uint8:
            raise RenderingUnavailable(
                f"Surface data {pixels.shape} does not match {width}x{height} RGBA"
            )

        handle = ResourceHandle(
            id=uuid.uuid4().hex,
            operation_id=operation_id,
            width=width,
            height=height,
            pixels=pixels,
            acquired_at=self._clock(),
        )
        self._handles[handle.id] = handle
        self._publish()
        return handle

    @staticmethod
    def as_buffer(handle: ResourceHandle) -> PixelBuffer:
        if handle.released:
            raise RenderingUnavailable("Drawing surface was already released")
        return PixelBuffer(width=handle.width, height=handle.height, pixels=handle.pixels)

    def release(self, handle: ResourceHandle) -> bool:
        """Clear and shrink the surface, then deregister it. False if already released."""
        if handle.released:
            return False

        handle.pixels.fill(0)
        handle.pixels = np.zeros((1, 1, 4), dtype=np.uint8)
        handle.width = 1
        handle.height = 1
        handle.released = True
        self._handles.pop(handle.id, None)
        self._publish()
        return True

    # -------------------------------------------------------------------------
    # Sweeping
    # -------------------------------------------------------------------------

    def _memory_pressure(self) -> bool:
        if self._memory_probe is None:
            return False
        reading = self._memory_probe()
        if reading is None:
            return False
        used, ceiling = reading
        return used > ceiling * self.memory_pressure_ratio

    def sweep(self) -> int:
        """
        Force-release stale surfaces and, under memory pressure, orphans.

        Both passes only touch handles whose operation is no longer admitted;
        a live operation may still be reading its surface from a worker thread.
        """
        now = self._clock()
        stale = [
            h for h in self._handles.values()
            if h.operation_id not in self._operations and now - h.acquired_at > self.handle_ttl_seconds
        ]
        for handle in stale:
            self.release(handle)
        record_forced_release("ttl", len(stale))

        orphaned = 0
        if self._memory_pressure():
            orphans = [h for h in self._handles.values() if h.operation_id not in self._operations]
            for handle in orphans:
                self.release(handle)
            orphaned = len(orphans)
            record_forced_release("memory_pressure", orphaned)
            logger.warning("memory_pressure_sweep", released=orphaned)

        total = len(stale) + orphaned
        if total:
            logger.info(
                "sweep_completed",
                stale_released=len(stale),
                orphans_released=orphaned,
                active_handles=self.active_handles
            )
        return total

    async def _run_sweeper(self):
        while True:
            await self._sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.error("sweep_failed", error=str(e), error_type=type(e).__name__)

    def start(self):
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._run_sweeper())
            logger.info("governor_started", interval_seconds=self.sweep_interval_seconds)

    async def stop(self):
        """Stop the sweep and release everything still held."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        for handle in list(self._handles.values()):
            self.release(handle)
        logger.info("governor_stopped")
