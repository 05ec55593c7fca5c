import io

import numpy as np
import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image
from typing import AsyncGenerator

from pixelcore.main import app
from pixelcore.engines.governor import ResourceGovernor


def encode_image(array: np.ndarray, fmt: str = "PNG", **kwargs) -> bytes:
    """Serialize an RGB/RGBA numpy array into image bytes."""
    output = io.BytesIO()
    Image.fromarray(array).save(output, format=fmt, **kwargs)
    return output.getvalue()


def decode_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def solid_rgb(width: int, height: int, color) -> np.ndarray:
    array = np.zeros((height, width, 3), dtype=np.uint8)
    array[:, :] = color
    return array


def checkerboard(size: int = 100, square: int = 10) -> np.ndarray:
    """Black and white squares of the given size."""
    ys, xs = np.mgrid[0:size, 0:size]
    board = ((xs // square + ys // square) % 2 * 255).astype(np.uint8)
    return np.stack([board, board, board], axis=2)


def centered_subject(width: int = 200, height: int = 200) -> np.ndarray:
    """Grey background with a saturated orange disc in the middle."""
    array = solid_rgb(width, height, (200, 200, 200))
    ys, xs = np.mgrid[0:height, 0:width]
    disc = (xs - width / 2) ** 2 + (ys - height / 2) ** 2 < (min(width, height) / 4) ** 2
    array[disc] = (230, 120, 20)
    return array


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def governor(clock) -> ResourceGovernor:
    return ResourceGovernor(max_active_operations=2, handle_ttl_seconds=120.0, clock=clock)


@pytest.fixture
def red_png() -> bytes:
    return encode_image(solid_rgb(500, 500, (255, 0, 0)))


@pytest.fixture
def subject_png() -> bytes:
    return encode_image(centered_subject())


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
