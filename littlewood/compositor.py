"""Additive compositing of per-degree layers."""

from __future__ import annotations

import colorsys
from typing import Any

import numpy as np
import PIL.Image

HUE_OFFSET = 100.0
SATURATION = 0.5
LIGHTNESS = 0.3


def hsl_degree_colour(index: int, count: int) -> tuple[float, float, float, float]:
    """Base colour for degree ``index`` of a run over degrees ``1..count-1``.

    The hue sweeps the colour wheel with the degree at fixed saturation and
    lightness.
    """

    span = max(count - 1, 1)
    hue = ((index - 1) / span * 360.0 + HUE_OFFSET) % 360.0
    r, g, b = colorsys.hls_to_rgb(hue / 360.0, LIGHTNESS, SATURATION)
    return (r, g, b, 1.0)


def colormap_degree_colour(cmap: Any, index: int, count: int) -> tuple[float, float, float, float]:
    """Base colour sampled from a matplotlib colormap at the degree's position in the run."""

    position = (index - 1) / max(count - 2, 1)
    r, g, b, _ = cmap(float(np.clip(position, 0.0, 1.0)))
    return (float(r), float(g), float(b), 1.0)


class Compositor:
    """Accumulate layers into a floating-point RGBA raster with saturating addition."""

    def __init__(self, width: int, height: int, *, channel_max: float = 1.0) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Raster resolution must be positive.")
        self.width = int(width)
        self.height = int(height)
        self.channel_max = float(channel_max)
        self._raster = np.zeros((self.height, self.width, 4), dtype=np.float32)
        self._raster[..., 3] = self.channel_max
        self.layers = 0

    @property
    def raster(self) -> np.ndarray:
        return self._raster

    def blend(self, layer: np.ndarray) -> None:
        layer = np.asarray(layer, dtype=np.float32)
        if layer.shape != self._raster.shape:
            raise ValueError(f"Layer shape {layer.shape} does not match raster shape {self._raster.shape}.")
        # NaN from a root landing exactly on a pixel counts as black.
        layer = np.nan_to_num(layer, nan=0.0, posinf=self.channel_max, neginf=0.0)
        np.add(self._raster, layer, out=self._raster)
        np.clip(self._raster, 0.0, self.channel_max, out=self._raster)
        self.layers += 1

    def finalize(self) -> np.ndarray:
        """Convert the raster to 8-bit RGBA."""

        scaled = self._raster / self.channel_max * 255.0
        return np.uint8(np.clip(np.round(scaled), 0, 255))

    def to_image(self) -> PIL.Image.Image:
        return PIL.Image.fromarray(self.finalize())
