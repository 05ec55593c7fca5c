import asyncio
import threading

import numpy as np
import pytest
from pydantic import ValidationError

from pixelcore.core.exceptions import FileTooLarge, ResourceExhausted, ScaleTooSmall, UnsupportedFormat
from pixelcore.engines import finalizer
from pixelcore.engines.schemas import (
    BackgroundRemovalOptions,
    OutputFormat,
    UpscaleAlgorithm,
    UpscaleOptions,
)
from pixelcore.pipeline import remove_background, upscale_image
from tests.conftest import decode_image, encode_image, solid_rgb


class ProgressRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, percent: int, label: str):
        self.events.append((percent, label))

    @property
    def percents(self):
        return [percent for percent, _ in self.events]


def _assert_idle(governor):
    assert governor.active_operations == 0
    assert governor.active_handles == 0


# =============================================================================
# Background removal
# =============================================================================

async def test_flat_red_background_removed(governor, red_png):
    # Act
    result = await remove_background(red_png, governor)

    # Assert
    image = decode_image(result.data)
    alpha = np.array(image)[..., 3]
    assert result.mime_type == "image/png"
    assert (result.width, result.height) == (500, 500)
    assert image.size == (500, 500)
    assert float((alpha == 0).mean()) > 0.95
    assert result.algorithms_used[:2] == ["color-clustering", "mask_fusion"]
    assert "edge_feathering" in result.algorithms_used
    assert set(result.quality_metrics) == {"edge_quality", "background_removal", "detail_preservation"}
    assert result.confidence == pytest.approx(0.3)
    assert result.scale_factor is None
    _assert_idle(governor)


async def test_background_progress_checkpoints(governor, subject_png):
    progress = ProgressRecorder()

    await remove_background(subject_png, governor, progress=progress)

    assert progress.percents == [5, 15, 25, 35, 75, 90, 100]
    assert progress.events[0] == (5, "Loading image")
    assert progress.events[-1] == (100, "Complete")


async def test_smoothing_and_hint_reported(governor, subject_png):
    options = BackgroundRemovalOptions(algorithm="portrait", smoothing_level=40, output_format=OutputFormat.WEBP)

    result = await remove_background(subject_png, governor, options)

    assert result.mime_type == "image/webp"
    assert result.algorithms_used[0] == "portrait"
    assert result.algorithms_used[-1] == "alpha_smoothing"


async def test_failing_progress_callback_is_ignored(governor, subject_png):
    def broken(percent, label):
        raise RuntimeError("listener went away")

    result = await remove_background(subject_png, governor, progress=broken)

    assert result.mime_type == "image/png"
    _assert_idle(governor)


async def test_oversized_upload_releases_everything(governor):
    progress = ProgressRecorder()
    payload = b"\x89PNG" + b"\x00" * (16 * 1024 * 1024)

    with pytest.raises(FileTooLarge):
        await remove_background(payload, governor, progress=progress)

    assert progress.events[-1] == (0, "Error occurred")
    _assert_idle(governor)


async def test_unsupported_bytes_release_everything(governor):
    with pytest.raises(UnsupportedFormat):
        await remove_background(b"GIF? no, just text", governor, content_type="image/png")

    _assert_idle(governor)


async def test_cancelled_encode_releases_everything(governor, subject_png, monkeypatch):
    started = threading.Event()
    gate = threading.Event()
    real_encode = finalizer.encode

    def slow_encode(buffer, output_format, quality):
        started.set()
        gate.wait(5)
        return real_encode(buffer, output_format, quality)

    monkeypatch.setattr(finalizer, "encode", slow_encode)
    task = asyncio.create_task(remove_background(subject_png, governor))

    try:
        assert await asyncio.to_thread(started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    finally:
        gate.set()

    _assert_idle(governor)


async def test_saturated_governor_rejects(governor, red_png):
    progress = ProgressRecorder()

    with governor.operation("upscale"), governor.operation("upscale"):
        with pytest.raises(ResourceExhausted) as exc_info:
            await remove_background(red_png, governor, progress=progress)

        assert governor.active_operations == 2

    assert exc_info.value.code == 429
    assert progress.events == [(0, "Error occurred")]
    _assert_idle(governor)


def test_jpeg_output_rejected_for_transparency():
    with pytest.raises(ValidationError):
        BackgroundRemovalOptions(output_format=OutputFormat.JPEG)


# =============================================================================
# Upscaling
# =============================================================================

async def test_upscale_doubles_small_image(governor, subject_png):
    progress = ProgressRecorder()

    result = await upscale_image(subject_png, governor, UpscaleOptions(scale_factor=2.0), progress=progress)

    assert (result.width, result.height) == (400, 400)
    assert decode_image(result.data).size == (400, 400)
    assert result.scale_factor == 2.0
    assert result.algorithms_used[0] in {a.value for a in UpscaleAlgorithm if a != UpscaleAlgorithm.AUTO}
    assert result.algorithms_used[1:] == [
        "detail_enhancement", "noise_reduction", "sharpening", "color_enhancement"
    ]
    assert set(result.quality_metrics) == {"sharpness", "noise", "artifacts"}
    assert progress.percents == [5, 15, 25, 35, 70, 90, 100]
    _assert_idle(governor)


async def test_upscale_explicit_algorithm_and_jpeg(governor, subject_png):
    options = UpscaleOptions(
        scale_factor=1.5,
        primary_algorithm=UpscaleAlgorithm.WAIFU2X,
        enhance_details=False,
        reduce_noise=False,
        sharpen_amount=0,
        color_enhancement=False,
        output_format=OutputFormat.JPEG,
        quality=70
    )

    result = await upscale_image(subject_png, governor, options)

    assert result.mime_type == "image/jpeg"
    assert result.algorithms_used == ["waifu2x"]
    assert (result.width, result.height) == (300, 300)
    assert decode_image(result.data).mode == "RGB"


async def test_upscale_clamps_to_output_ceiling(governor):
    payload = encode_image(solid_rgb(1000, 500, (10, 120, 60)))

    result = await upscale_image(payload, governor, UpscaleOptions(scale_factor=3.0))

    assert result.width <= 1536 and result.height <= 1536
    assert result.scale_factor == pytest.approx(1.536)


async def test_upscale_refuses_tiny_effective_scale(governor, red_png):
    progress = ProgressRecorder()
    options = UpscaleOptions(scale_factor=2.0, max_output_dimension=520)

    with pytest.raises(ScaleTooSmall) as exc_info:
        await upscale_image(red_png, governor, options, progress=progress)

    assert exc_info.value.stage == "scale"
    assert progress.events[-1] == (0, "Error occurred")
    _assert_idle(governor)
