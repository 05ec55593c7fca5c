import numpy as np
import pytest

from pixelcore.engines.analyzer import analyze
from pixelcore.engines.buffers import PixelBuffer
from pixelcore.engines.masks import (
    BACKGROUND,
    FOREGROUND,
    MaskSet,
    apply_algorithm_hint,
    apply_mask_to_alpha,
    background_quality_metrics,
    color_mask,
    dominant_border_color,
    edge_mask,
    feather_alpha,
    fuse_masks,
    fusion_weights,
    generate_masks,
    position_mask,
    select_mask_strategy,
    smooth_alpha,
)
from pixelcore.engines.schemas import BackgroundAlgorithm, ContentAnalysis
from tests.conftest import centered_subject, checkerboard, solid_rgb


def _weights():
    return fusion_weights(ContentAnalysis())


# =============================================================================
# Fusion
# =============================================================================

def test_fusion_of_identical_masks_is_identity():
    # Arrange
    rng = np.random.default_rng(3)
    mask = rng.integers(0, 256, size=(16, 24), dtype=np.uint8)
    masks = MaskSet(width=24, height=16, object=mask, edge=mask, color=mask, position=mask)

    # Act
    fused = fuse_masks(masks, _weights())

    # Assert
    np.testing.assert_array_equal(fused, mask)


def test_fusion_stays_in_range():
    rng = np.random.default_rng(11)
    masks = MaskSet(
        width=32, height=32,
        object=rng.integers(0, 256, size=(32, 32), dtype=np.uint8),
        edge=rng.integers(0, 256, size=(32, 32), dtype=np.uint8),
        color=None,
        position=rng.integers(0, 256, size=(32, 32), dtype=np.uint8),
    )

    fused = fuse_masks(masks, _weights())

    assert fused.dtype == np.uint8
    low = np.minimum(np.minimum(masks.object, masks.edge), masks.position)
    high = np.maximum(np.maximum(masks.object, masks.edge), masks.position)
    assert (fused >= low).all() and (fused <= high).all()


def test_fusion_normalizes_by_weights_present():
    ones = np.full((2, 2), 255, dtype=np.uint8)
    zeros = np.zeros((2, 2), dtype=np.uint8)
    masks = MaskSet(width=2, height=2, object=ones, edge=zeros)

    fused = fuse_masks(masks, _weights())

    # 0.4 * 255 / 0.65 = 156.92 -> 157
    assert (fused == 157).all()


def test_fusion_without_masks_is_all_foreground():
    fused = fuse_masks(MaskSet(width=5, height=3), _weights())

    assert fused.shape == (3, 5)
    assert not fused.any()


def test_fusion_weights_follow_subject_cues():
    assert _weights() == {"object": 0.4, "edge": 0.25, "color": 0.2, "position": 0.15}

    portrait = fusion_weights(ContentAnalysis(has_human=True, subject_in_center=True))

    assert portrait == {"object": 0.5, "edge": 0.3, "color": 0.2, "position": 0.25}


# =============================================================================
# Individual masks
# =============================================================================

def test_checkerboard_edge_mask_marks_square_boundaries():
    buffer = PixelBuffer.from_array(checkerboard(100, 10))

    mask = edge_mask(buffer, sensitivity=25)

    # Boundaries between squares are foreground, square interiors background
    assert mask[5, 9] == FOREGROUND
    assert mask[5, 10] == FOREGROUND
    assert mask[9, 5] == FOREGROUND
    assert mask[5, 5] == BACKGROUND
    assert mask[15, 15] == BACKGROUND
    assert set(np.unique(mask)) == {FOREGROUND, BACKGROUND}


def test_dominant_border_color_prefers_most_common_bucket():
    array = solid_rgb(100, 100, (10, 10, 10))
    array[0, :] = (250, 250, 250)

    assert dominant_border_color(PixelBuffer.from_array(array)) == (10, 10, 10)


def test_color_mask_marks_background_color():
    array = solid_rgb(60, 60, (0, 0, 255))
    array[20:40, 20:40] = (255, 255, 0)

    mask = color_mask(PixelBuffer.from_array(array), sensitivity=25)

    assert mask[0, 0] == BACKGROUND
    assert mask[30, 30] == FOREGROUND


def test_position_mask_keeps_center():
    mask = position_mask(100, 80)

    assert mask[40, 50] == FOREGROUND
    assert mask[0, 0] == BACKGROUND


def test_algorithm_hint_forces_subject_flags():
    analysis = ContentAnalysis()

    assert apply_algorithm_hint(analysis, BackgroundAlgorithm.PORTRAIT).has_human
    assert apply_algorithm_hint(analysis, BackgroundAlgorithm.ANIMAL).has_animal
    assert apply_algorithm_hint(analysis, BackgroundAlgorithm.OBJECT).has_object
    assert apply_algorithm_hint(analysis, BackgroundAlgorithm.AUTO) == analysis


@pytest.mark.parametrize("analysis,expected", [
    (ContentAnalysis(has_human=True), "portrait"),
    (ContentAnalysis(has_object=True, background_complexity=0.2), "object"),
    (ContentAnalysis(has_object=True, background_complexity=0.5), "edge-detection"),
    (ContentAnalysis(), "color-clustering"),
])
def test_mask_strategy_label(analysis, expected):
    assert select_mask_strategy(analysis, BackgroundAlgorithm.AUTO) == expected


# =============================================================================
# Alpha
# =============================================================================

def test_feathered_alpha_never_increases_away_from_subject():
    # Arrange: single foreground column at x=10
    buffer = PixelBuffer.from_array(solid_rgb(40, 5, (90, 90, 90)))
    fused = np.full((5, 40), 255, dtype=np.uint8)
    fused[:, 10] = 0

    # Act
    apply_mask_to_alpha(buffer, fused, feather_edges=True, preserve_details=False)

    # Assert
    row = buffer.alpha[2].astype(int)
    right = row[10:]
    left = row[:11][::-1]
    assert (np.diff(right) <= 0).all()
    assert (np.diff(left) <= 0).all()
    assert row[10] == 255
    assert row[30] == 0


def test_hard_cut_without_feathering():
    buffer = PixelBuffer.from_array(solid_rgb(10, 10, (90, 90, 90)))
    fused = np.full((10, 10), 200, dtype=np.uint8)
    fused[4:6, 4:6] = 100

    apply_mask_to_alpha(buffer, fused, feather_edges=False, preserve_details=True)

    assert (buffer.alpha[4:6, 4:6] == 255).all()
    assert buffer.alpha[0, 0] == 0
    assert int((buffer.alpha == 0).sum()) == 96


def test_preserve_details_boosts_partial_alpha():
    rgba = np.zeros((2, 2, 4), dtype=np.uint8)
    rgba[..., 3] = 200
    buffer = PixelBuffer.from_array(rgba)

    apply_mask_to_alpha(buffer, np.zeros((2, 2), dtype=np.uint8), feather_edges=False, preserve_details=True)

    assert (buffer.alpha == 210).all()


def test_smoothing_softens_hard_edge():
    rgba = np.zeros((20, 20, 4), dtype=np.uint8)
    rgba[:, 10:, 3] = 255
    buffer = PixelBuffer.from_array(rgba)

    smooth_alpha(buffer, smoothing_level=40)

    assert 0 < buffer.alpha[10, 9] < 255
    assert 0 < buffer.alpha[10, 10] < 255
    assert buffer.alpha[10, 0] == 0
    assert buffer.alpha[10, 19] == 255


def test_smoothing_below_radius_one_is_noop():
    rgba = np.zeros((6, 6, 4), dtype=np.uint8)
    rgba[:, 3:, 3] = 255
    buffer = PixelBuffer.from_array(rgba)
    before = buffer.alpha.copy()

    smooth_alpha(buffer, smoothing_level=19)

    np.testing.assert_array_equal(buffer.alpha, before)


# =============================================================================
# Scenarios
# =============================================================================

def test_flat_red_becomes_fully_transparent():
    # Arrange
    buffer = PixelBuffer.from_array(solid_rgb(500, 500, (255, 0, 0)))
    analysis = analyze(buffer)

    # Act
    masks = generate_masks(buffer, analysis, sensitivity=25)
    fused = fuse_masks(masks, fusion_weights(analysis))
    apply_mask_to_alpha(buffer, fused, feather_edges=True, preserve_details=True)

    # Assert
    transparent = float((buffer.alpha == 0).mean())
    assert transparent > 0.95
    metrics = background_quality_metrics(buffer)
    assert metrics["background_removal"] == 100.0
    assert metrics["detail_preservation"] <= 5.0


def test_centered_subject_keeps_foreground():
    buffer = PixelBuffer.from_array(centered_subject())
    analysis = analyze(buffer)

    masks = generate_masks(buffer, analysis, sensitivity=25)
    fused = fuse_masks(masks, fusion_weights(analysis))
    apply_mask_to_alpha(buffer, fused, feather_edges=True, preserve_details=True)

    assert buffer.alpha[100, 100] == 255
    assert buffer.alpha[2, 2] == 0


def test_feather_rounds_half_up():
    background = np.ones((5, 5), dtype=bool)
    background[2, 2] = False

    alpha = feather_alpha(background)

    assert alpha[2, 2] == 255
    # (1 - 1/8) * 255 = 223.125
    assert alpha[2, 3] == 223
    # (1 - sqrt(2)/8) * 255 = 209.92
    assert alpha[1, 1] == 210
    assert alpha[3, 3] == 210
