"""Public API for Littlewood root field rendering.

The renderer names are resolved on first access so that root-finding worker
processes, which import this package, never load TensorFlow.
"""

import importlib

from .polynomial import LittlewoodFamily, Polynomial, littlewood_polynomials, littlewood_up_to
from .solver import AberthResult, AberthSolver, golden_annulus
from .accumulator import RootAccumulator
from .compositor import Compositor, colormap_degree_colour, hsl_degree_colour

_RENDERER_NAMES = (
    "FalloffSettings",
    "FieldRenderer",
    "KernelCompileError",
    "ParameterBlock",
    "RenderContext",
    "tile_counts",
)


def __getattr__(name):
    if name in _RENDERER_NAMES:
        return getattr(importlib.import_module(".renderer", __name__), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AberthResult",
    "AberthSolver",
    "Compositor",
    "FalloffSettings",
    "FieldRenderer",
    "KernelCompileError",
    "LittlewoodFamily",
    "ParameterBlock",
    "Polynomial",
    "RenderContext",
    "RootAccumulator",
    "colormap_degree_colour",
    "golden_annulus",
    "hsl_degree_colour",
    "littlewood_polynomials",
    "littlewood_up_to",
    "tile_counts",
]
