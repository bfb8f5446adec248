"""Device-parallel distance field rendering of root sets."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import tensorflow as tf

logger = logging.getLogger(__name__)

TILE_SIZE = 16
PARAMETER_WORDS = 10
PARAMETER_BLOCK_SIZE = PARAMETER_WORDS * 4

# std140 layout: vec2 resolution, vec4 colour (16-byte aligned), float scale, int root count.
PARAMETER_DTYPE = np.dtype(
    {
        "names": ["resolution", "colour", "scale", "root_count"],
        "formats": [("<f4", (2,)), ("<f4", (4,)), "<f4", "<i4"],
        "offsets": [0, 16, 32, 36],
        "itemsize": PARAMETER_BLOCK_SIZE,
    }
)


class KernelCompileError(RuntimeError):
    """Raised when the field kernel cannot be built for the requested device."""


@dataclass(frozen=True)
class FalloffSettings:
    """Tuning constants for turning root distance into brightness.

    ``intensity = numerator / (falloff * distance)``; the base colour is then
    scaled by ``intensity / divisor``.
    """

    numerator: float = 1.0
    falloff: float = 50.0
    divisor: float = 14.0

    def __post_init__(self) -> None:
        if self.falloff <= 0:
            raise ValueError("falloff must be positive.")
        if self.divisor == 0:
            raise ValueError("divisor must be non-zero.")

    def as_array(self) -> np.ndarray:
        return np.array([self.numerator, self.falloff, self.divisor], dtype=np.float32)


@dataclass(frozen=True)
class ParameterBlock:
    """Per-call parameters shared by the host and the kernel as a packed record."""

    resolution: tuple[float, float]
    colour: tuple[float, float, float, float]
    scale: float
    root_count: int

    def __post_init__(self) -> None:
        if len(self.resolution) != 2:
            raise ValueError("resolution must have 2 components.")
        if len(self.colour) != 4:
            raise ValueError("colour must have 4 channels.")

    def pack(self) -> bytes:
        record = np.zeros((), dtype=PARAMETER_DTYPE)
        record["resolution"] = self.resolution
        record["colour"] = self.colour
        record["scale"] = self.scale
        record["root_count"] = self.root_count
        return record.tobytes()

    @classmethod
    def unpack(cls, data: bytes) -> "ParameterBlock":
        if len(data) != PARAMETER_BLOCK_SIZE:
            raise ValueError(f"Parameter block must be {PARAMETER_BLOCK_SIZE} bytes, got {len(data)}.")
        record = np.frombuffer(data, dtype=PARAMETER_DTYPE)[0]
        return cls(
            resolution=tuple(float(v) for v in record["resolution"]),
            colour=tuple(float(v) for v in record["colour"]),
            scale=float(record["scale"]),
            root_count=int(record["root_count"]),
        )

    def words(self) -> np.ndarray:
        return np.frombuffer(self.pack(), dtype="<i4").copy()


def tile_counts(width: int, height: int, tile_size: int = TILE_SIZE) -> tuple[int, int]:
    """Number of tiles needed to cover ``width`` x ``height`` pixels."""

    return -(-width // tile_size), -(-height // tile_size)


def default_device() -> str:
    return "/GPU:0" if tf.config.list_logical_devices("GPU") else "/CPU:0"


def _decode_parameters(block: tf.Tensor) -> tuple[tf.Tensor, tf.Tensor, tf.Tensor, tf.Tensor]:
    """Unpack the int32 parameter words using the same layout as ``PARAMETER_DTYPE``."""

    floats = tf.bitcast(block, tf.float32)
    resolution = floats[0:2]
    colour = floats[4:8]
    scale = floats[8]
    root_count = block[9]
    return resolution, colour, scale, root_count


@tf.function
def _min_distance(uv: tf.Tensor, roots: tf.Tensor, root_count: tf.Tensor, root_chunk: tf.Tensor) -> tf.Tensor:
    """Distance from every coordinate to its nearest root, scanning roots in chunks."""

    i = tf.constant(0, dtype=tf.int32)
    best = tf.fill(tf.shape(uv)[:1], tf.constant(np.inf, dtype=uv.dtype))

    def cond(i: tf.Tensor, best: tf.Tensor) -> tf.Tensor:
        return tf.less(i, root_count)

    def body(i: tf.Tensor, best: tf.Tensor) -> tuple[tf.Tensor, tf.Tensor]:
        block = roots[i:i + root_chunk]
        dx = uv[:, 0:1] - block[tf.newaxis, :, 0]
        dy = uv[:, 1:2] - block[tf.newaxis, :, 1]
        dist = tf.sqrt(dx * dx + dy * dy)
        return i + root_chunk, tf.minimum(best, tf.reduce_min(dist, axis=1))

    _, best = tf.while_loop(cond, body, (i, best))
    return best


@tf.function(
    input_signature=[
        tf.TensorSpec(shape=(None, 2), dtype=tf.float32),
        tf.TensorSpec(shape=(PARAMETER_WORDS,), dtype=tf.int32),
        tf.TensorSpec(shape=(None, 2), dtype=tf.float32),
        tf.TensorSpec(shape=(), dtype=tf.int32),
        tf.TensorSpec(shape=(3,), dtype=tf.float32),
    ]
)
def _shade(pixels: tf.Tensor, block: tf.Tensor, roots: tf.Tensor, root_chunk: tf.Tensor, falloff: tf.Tensor) -> tf.Tensor:
    """Colour every pixel from its distance to the nearest root."""

    resolution, colour, scale, root_count = _decode_parameters(block)

    uv = pixels / resolution[1]
    centre = tf.stack([0.5 * resolution[0] / resolution[1], tf.constant(0.5, dtype=tf.float32)])
    uv = (uv - centre) * 2.0
    uv = uv * scale

    min_dist = _min_distance(uv, roots, root_count, root_chunk)
    intensity = falloff[0] / (falloff[1] * min_dist)

    rgb = colour[tf.newaxis, :3] * (intensity / falloff[2])[:, tf.newaxis]
    alpha = tf.ones_like(min_dist)[:, tf.newaxis]
    return tf.concat([rgb, alpha], axis=1)


def _band_pixels(y0: int, rows: int, cols: int) -> tf.Tensor:
    xs = tf.range(cols, dtype=tf.float32)
    ys = tf.range(y0, y0 + rows, dtype=tf.float32)
    X, Y = tf.meshgrid(xs, ys)
    return tf.reshape(tf.stack([X, Y], axis=-1), (-1, 2))


def root_pairs(roots: Sequence[complex] | np.ndarray) -> np.ndarray:
    """Convert complex roots into the float32 ``(real, imag)`` layout of the root buffer.

    Non-finite estimates left behind by diverged solves are dropped.
    """

    values = np.asarray(roots, dtype=np.complex128).reshape(-1)
    values = values[np.isfinite(values)]
    return np.stack([values.real, values.imag], axis=-1).astype(np.float32)


class RenderContext:
    """Device resources for one render session.

    Holds the output surface, the packed parameter block and the root buffer
    for a single resolution. The root buffer is released and recreated on
    every upload because its size follows the root count.
    """

    def __init__(self, width: int, height: int, *, device: Optional[str] = None) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Render resolution must be positive.")
        self.width = int(width)
        self.height = int(height)
        self.device = device if device is not None else default_device()
        with tf.device(self.device):
            self._surface = tf.Variable(
                tf.zeros((self.height, self.width, 4), dtype=tf.float32), trainable=False, name="surface"
            )
            self._parameters = tf.Variable(
                tf.zeros((PARAMETER_WORDS,), dtype=tf.int32), trainable=False, name="parameters"
            )
        self._roots: Optional[tf.Variable] = None
        self._closed = False
        logger.debug("Render context %dx%d created on %s", self.width, self.height, self.device)

    def __enter__(self) -> "RenderContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Render context has been released.")

    @property
    def surface(self) -> tf.Variable:
        self._check_open()
        return self._surface

    @property
    def parameters(self) -> tf.Variable:
        self._check_open()
        return self._parameters

    @property
    def root_buffer(self) -> tf.Variable:
        self._check_open()
        if self._roots is None:
            raise RuntimeError("No roots have been uploaded.")
        return self._roots

    def upload_roots(self, roots: Sequence[complex] | np.ndarray) -> int:
        self._check_open()
        pairs = root_pairs(roots)
        self._roots = None
        with tf.device(self.device):
            self._roots = tf.Variable(pairs, trainable=False, name="roots")
        return int(pairs.shape[0])

    def upload_parameters(self, block: ParameterBlock) -> None:
        self._check_open()
        self._parameters.assign(block.words())

    def clear(self) -> None:
        self._check_open()
        self._surface.assign(tf.zeros_like(self._surface))

    def synchronize(self) -> None:
        """Block until every queued device operation has finished."""

        tf.test.experimental.sync_devices()

    def read_surface(self) -> np.ndarray:
        """Copy the surface to the host with row 0 at the top of the image."""

        self._check_open()
        return np.ascontiguousarray(np.flipud(self._surface.numpy()))

    def close(self) -> None:
        if self._closed:
            return
        self._roots = None
        self._parameters = None
        self._surface = None
        self._closed = True
        logger.debug("Render context released")


class FieldRenderer:
    """Render a root set as an inverse-distance glow, one layer per call.

    Pixels are processed in ``tile_size`` square tiles, ceiling-divided over
    the resolution and dispatched in bands of ``tile_rows_per_dispatch`` tile
    rows. Each call overwrites the whole surface, so the returned layer never
    contains earlier calls.
    """

    def __init__(
        self,
        falloff: Optional[FalloffSettings] = None,
        *,
        tile_size: int = TILE_SIZE,
        tile_rows_per_dispatch: int = 1,
        root_chunk: int = 128,
    ) -> None:
        if tile_size < 1 or tile_rows_per_dispatch < 1 or root_chunk < 1:
            raise ValueError("tile_size, tile_rows_per_dispatch and root_chunk must be positive.")
        self.falloff = falloff if falloff is not None else FalloffSettings()
        self.tile_size = int(tile_size)
        self.tile_rows_per_dispatch = int(tile_rows_per_dispatch)
        self.root_chunk = int(root_chunk)
        try:
            _shade.get_concrete_function()
        except (TypeError, ValueError, tf.errors.OpError) as exc:
            raise KernelCompileError(f"Field kernel failed to build: {exc}") from exc

    def render(
        self,
        context: RenderContext,
        roots: Sequence[complex] | np.ndarray,
        colour: Sequence[float],
        scale: float,
    ) -> np.ndarray:
        """Render ``roots`` into ``context`` and return the layer as ``(height, width, 4)`` floats."""

        root_count = context.upload_roots(roots)
        block = ParameterBlock(
            resolution=(float(context.width), float(context.height)),
            colour=tuple(float(c) for c in colour),
            scale=float(scale),
            root_count=root_count,
        )
        context.upload_parameters(block)

        tiles_x, tiles_y = tile_counts(context.width, context.height, self.tile_size)
        band_cols = tiles_x * self.tile_size
        logger.info("Dispatching field kernel with %d roots over %dx%d tiles", root_count, tiles_x, tiles_y)

        start = time.perf_counter()
        dispatches = 0
        with tf.device(context.device):
            parameters = tf.convert_to_tensor(context.parameters)
            root_buffer = tf.convert_to_tensor(context.root_buffer)
            root_chunk = tf.constant(self.root_chunk, dtype=tf.int32)
            falloff = tf.constant(self.falloff.as_array())
            for first_row in range(0, tiles_y, self.tile_rows_per_dispatch):
                band_tiles = min(self.tile_rows_per_dispatch, tiles_y - first_row)
                y0 = first_row * self.tile_size
                rows = band_tiles * self.tile_size
                pixels = _band_pixels(y0, rows, band_cols)
                shaded = tf.reshape(_shade(pixels, parameters, root_buffer, root_chunk, falloff), (rows, band_cols, 4))
                y1 = min(y0 + rows, context.height)
                context.surface[y0:y1].assign(shaded[: y1 - y0, : context.width])
                dispatches += 1
        context.synchronize()
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.info("Field kernel completed in %.0fms (%d dispatches)", elapsed_ms, dispatches)

        return context.read_surface()
