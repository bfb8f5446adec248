"""Shared fixtures for the test suite."""

import pytest

from littlewood import FieldRenderer, RenderContext

CPU = "/CPU:0"


@pytest.fixture(scope="module")
def renderer():
    """Field renderer with default falloff constants."""
    return FieldRenderer()


@pytest.fixture
def small_context():
    """A 37x21 context, deliberately not a multiple of the tile size."""
    with RenderContext(37, 21, device=CPU) as context:
        yield context
