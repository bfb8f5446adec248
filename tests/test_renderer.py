"""Test the device field renderer against the host reference.

Tests for littlewood.renderer and littlewood.reference:
    - Parameter block byte layout (offsets, padding, size)
    - Tile counts are ceiling-divided
    - Empty root set renders black with opaque alpha
    - Device layer matches the numpy reference on a non-tile-aligned raster
    - Root chunking and dispatch banding do not change the layer
    - Each call overwrites the surface instead of accumulating
    - Layer orientation: positive imaginary roots appear in the top half
    - Released contexts refuse further work
    - Kernel build failures surface as KernelCompileError
    - An empty-root layer blended into a raster leaves it unchanged

Run:
    pytest tests/test_renderer.py -v
"""

import struct

import numpy as np
import pytest

import littlewood.renderer
from littlewood import (
    Compositor,
    FalloffSettings,
    FieldRenderer,
    KernelCompileError,
    ParameterBlock,
    RenderContext,
    tile_counts,
)
from littlewood.reference import shade_field, shade_pixel
from littlewood.renderer import PARAMETER_BLOCK_SIZE, root_pairs

CPU = "/CPU:0"
ROOTS = np.array([0.31 + 0.17j, -0.52 - 0.44j, 1.07 + 0.63j, -0.2 + 0.91j])
COLOUR = (0.8, 0.4, 0.2, 1.0)


def _block(context, roots, scale):
    return ParameterBlock(
        resolution=(float(context.width), float(context.height)),
        colour=COLOUR,
        scale=scale,
        root_count=len(roots),
    )


def test_parameter_block_layout():
    data = ParameterBlock(resolution=(640.0, 480.0), colour=(0.1, 0.2, 0.3, 1.0), scale=3.0, root_count=77).pack()

    assert len(data) == PARAMETER_BLOCK_SIZE == 40
    assert struct.unpack_from("<2f", data, 0) == (640.0, 480.0)
    assert data[8:16] == bytes(8)
    np.testing.assert_allclose(struct.unpack_from("<4f", data, 16), (0.1, 0.2, 0.3, 1.0), rtol=1e-6)
    assert struct.unpack_from("<f", data, 32) == (3.0,)
    assert struct.unpack_from("<i", data, 36) == (77,)


def test_parameter_block_unpack():
    block = ParameterBlock(resolution=(16.0, 9.0), colour=(0.5, 0.25, 0.0, 1.0), scale=2.0, root_count=5)
    assert ParameterBlock.unpack(block.pack()) == block


def test_parameter_block_rejects_bad_input():
    with pytest.raises(ValueError):
        ParameterBlock.unpack(bytes(36))
    with pytest.raises(ValueError):
        ParameterBlock(resolution=(1.0, 1.0), colour=(1.0, 1.0, 1.0), scale=1.0, root_count=0)


def test_tile_counts_round_up():
    assert tile_counts(4096, 2160) == (256, 135)
    assert tile_counts(17, 16) == (2, 1)
    assert tile_counts(1, 1) == (1, 1)


def test_root_pairs_drops_non_finite():
    pairs = root_pairs([1 + 2j, complex(np.nan, 0), complex(0, np.inf)])
    assert pairs.dtype == np.float32
    np.testing.assert_array_equal(pairs, [[1.0, 2.0]])
    assert root_pairs([]).shape == (0, 2)


def test_falloff_settings_validation():
    with pytest.raises(ValueError):
        FalloffSettings(falloff=0.0)
    with pytest.raises(ValueError):
        FalloffSettings(divisor=0.0)


def test_shade_pixel_formula():
    block = ParameterBlock(resolution=(20.0, 10.0), colour=COLOUR, scale=1.0, root_count=1)
    # Pixel (10, 5) maps to the origin; the root sits at distance 0.5.
    colour = shade_pixel((10, 5), block, [0.5 + 0j])
    intensity = 1.0 / (50.0 * 0.5)
    np.testing.assert_allclose(colour[:3], np.array(COLOUR[:3]) * intensity / 14.0)
    assert colour[3] == 1.0


def test_empty_root_set_is_black(renderer, small_context):
    layer = renderer.render(small_context, [], COLOUR, 3.0)

    assert layer.shape == (21, 37, 4)
    assert layer.dtype == np.float32
    np.testing.assert_allclose(layer[..., :3], 0.0, atol=1e-12)
    np.testing.assert_allclose(layer[..., 3], 1.0)


def test_matches_reference(renderer, small_context):
    layer = renderer.render(small_context, ROOTS, COLOUR, 2.0)
    expected = shade_field(_block(small_context, ROOTS, 2.0), ROOTS)
    np.testing.assert_allclose(layer, expected, rtol=1e-4, atol=1e-7)


def test_custom_falloff_matches_reference(small_context):
    falloff = FalloffSettings(numerator=2.0, falloff=10.0, divisor=3.0)
    layer = FieldRenderer(falloff).render(small_context, ROOTS, COLOUR, 1.5)
    expected = shade_field(_block(small_context, ROOTS, 1.5), ROOTS, falloff)
    np.testing.assert_allclose(layer, expected, rtol=1e-4, atol=1e-7)


def test_chunking_and_banding_do_not_change_layer(renderer, small_context):
    baseline = renderer.render(small_context, ROOTS, COLOUR, 2.0)
    fine = FieldRenderer(root_chunk=1, tile_rows_per_dispatch=3).render(small_context, ROOTS, COLOUR, 2.0)
    np.testing.assert_allclose(fine, baseline, rtol=1e-6)


def test_each_render_overwrites_surface(renderer, small_context):
    renderer.render(small_context, ROOTS, COLOUR, 2.0)
    layer = renderer.render(small_context, [], COLOUR, 2.0)
    np.testing.assert_allclose(layer[..., :3], 0.0, atol=1e-12)


def test_positive_imaginary_root_lands_in_top_half(renderer):
    with RenderContext(32, 32, device=CPU) as context:
        layer = renderer.render(context, [0.13 + 0.61j], (1.0, 1.0, 1.0, 1.0), 1.0)
    row, col = np.unravel_index(np.argmax(layer[..., 0]), layer.shape[:2])
    assert row < 16
    assert col > 16


def test_large_root_set_renders(renderer):
    rng = np.random.default_rng(7)
    roots = rng.normal(size=600) + 1j * rng.normal(size=600)
    with RenderContext(40, 24, device=CPU) as context:
        layer = renderer.render(context, roots, COLOUR, 3.0)
    assert np.all(np.isfinite(layer))
    assert layer[..., 0].max() > 0


def test_clear_zeroes_surface(renderer, small_context):
    renderer.render(small_context, ROOTS, COLOUR, 2.0)
    small_context.clear()
    np.testing.assert_array_equal(small_context.read_surface(), 0.0)


def test_closed_context_is_rejected(renderer):
    context = RenderContext(8, 8, device=CPU)
    context.close()

    assert context.closed
    with pytest.raises(RuntimeError):
        renderer.render(context, ROOTS, COLOUR, 1.0)
    context.close()


def test_invalid_resolution():
    with pytest.raises(ValueError):
        RenderContext(0, 10, device=CPU)


def test_kernel_build_failure_raises(monkeypatch):
    class BrokenKernel:
        def get_concrete_function(self):
            raise ValueError("unsupported op")

    monkeypatch.setattr(littlewood.renderer, "_shade", BrokenKernel())
    with pytest.raises(KernelCompileError, match="unsupported op"):
        FieldRenderer()


def test_empty_root_layer_leaves_composite_unchanged(renderer, small_context):
    compositor = Compositor(small_context.width, small_context.height)
    compositor.blend(renderer.render(small_context, ROOTS, COLOUR, 2.0))
    before = compositor.raster.copy()
    assert before[..., :3].max() > 0

    compositor.blend(renderer.render(small_context, [], COLOUR, 2.0))
    np.testing.assert_array_equal(compositor.raster, before)
