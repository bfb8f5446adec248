"""Host reference for the per-pixel field contract.

Mirrors the arithmetic of the device kernel in ``renderer`` with numpy so the
device output can be checked on small resolutions. Slow; not used for
production renders.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .renderer import FalloffSettings, ParameterBlock, root_pairs


def pixel_to_plane(pixel: np.ndarray, block: ParameterBlock) -> np.ndarray:
    """Map pixel coordinates ``(..., 2)`` to the centred, aspect-corrected plane."""

    width, height = block.resolution
    uv = np.asarray(pixel, dtype=np.float64) / height
    uv = (uv - np.array([0.5 * width / height, 0.5])) * 2.0
    return uv * block.scale


def _shade(uv: np.ndarray, block: ParameterBlock, pairs: np.ndarray, falloff: FalloffSettings) -> np.ndarray:
    points = uv.reshape(-1, 2)
    min_dist = np.full(points.shape[0], np.inf)
    for root in pairs.astype(np.float64):
        min_dist = np.minimum(min_dist, np.hypot(points[:, 0] - root[0], points[:, 1] - root[1]))

    with np.errstate(divide="ignore", invalid="ignore"):
        intensity = falloff.numerator / (falloff.falloff * min_dist)
        rgb = np.asarray(block.colour[:3], dtype=np.float64)[np.newaxis, :] * (intensity / falloff.divisor)[:, np.newaxis]
    alpha = np.ones((points.shape[0], 1))
    return np.concatenate([rgb, alpha], axis=1).reshape(uv.shape[:-1] + (4,))


def shade_pixel(
    pixel: Sequence[float],
    block: ParameterBlock,
    roots: Sequence[complex] | np.ndarray,
    falloff: Optional[FalloffSettings] = None,
) -> np.ndarray:
    """Colour of a single pixel, with ``pixel`` in kernel coordinates (y up)."""

    falloff = falloff if falloff is not None else FalloffSettings()
    uv = pixel_to_plane(np.asarray(pixel, dtype=np.float64), block)
    return _shade(uv[np.newaxis, :], block, root_pairs(roots), falloff)[0]


def shade_field(
    block: ParameterBlock,
    roots: Sequence[complex] | np.ndarray,
    falloff: Optional[FalloffSettings] = None,
) -> np.ndarray:
    """Full layer with the same orientation as ``FieldRenderer.render`` (row 0 on top)."""

    falloff = falloff if falloff is not None else FalloffSettings()
    width, height = (int(v) for v in block.resolution)
    X, Y = np.meshgrid(np.arange(width, dtype=np.float64), np.arange(height, dtype=np.float64))
    uv = pixel_to_plane(np.stack([X, Y], axis=-1), block)
    layer = _shade(uv, block, root_pairs(roots), falloff)
    return np.flipud(layer).astype(np.float32)
