import logging
import os
import sys
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

_VERBOSE_FLAGS = {"--verbose", "-v"}
_cli_verbose = any(arg in _VERBOSE_FLAGS for arg in sys.argv[1:])
_env_log_level = os.environ.get("TF_CPP_MIN_LOG_LEVEL")
_suppress_messages = (not _cli_verbose) and _env_log_level != "0"

if _suppress_messages and _env_log_level is None:
    os.environ["TF_CPP_MIN_LOG_LEVEL"] = "3"

if _suppress_messages:
    warnings.filterwarnings(
        "ignore",
        message=r"Protobuf gencode version .* is exactly one major version older than the runtime version .*",
        category=UserWarning,
        module="google.protobuf",
    )

VERBOSE = _cli_verbose


def log(message, *args, **kwargs):
    if VERBOSE:
        print(message, *args, **kwargs)


# Import libraries for root finding and rendering
import tensorflow as tf
import numpy as np

if _suppress_messages:
    tf.get_logger().setLevel("ERROR")
    for handler in tf.get_logger().handlers:
        handler.setLevel("ERROR")

# Imports for output
import PIL.Image
import imageio

from littlewood import (
    AberthSolver,
    Compositor,
    FalloffSettings,
    FieldRenderer,
    LittlewoodFamily,
    RenderContext,
    RootAccumulator,
    colormap_degree_colour,
    hsl_degree_colour,
)

from matplotlib import colormaps as _mpl_colormaps


def get_colormap(name):
    return _mpl_colormaps[name]


log("TensorFlow version: %s" % tf.__version__)


def select_device():
    """Pick the field kernel device, enabling memory growth on visible GPUs.

    Called from ``main``: worker processes re-import this script and must not
    touch the GPU.
    """

    gpus = tf.config.list_physical_devices('GPU')
    if not gpus:
        log("No GPU found, using CPU")
        return '/CPU:0'
    try:
        for gpu in gpus:
            tf.config.experimental.set_memory_growth(gpu, True)
    except RuntimeError as e:
        if VERBOSE:
            print(e)
        return '/CPU:0'
    log("GPU found, using %s" % gpus[0].name)
    return '/GPU:0'


from argparse import ArgumentParser


@dataclass
class RunConfig:
    degrees: int
    scale: float
    x_res: int
    y_res: int
    image_path: Path
    image_format: str
    layer_dir: Path | None
    gif_path: Path | None
    colormap: str | None
    device: str | None


def build_parser():
    parser = ArgumentParser(description='Render the roots of all Littlewood polynomials up to a degree.')

    parser.add_argument('--degrees', type=int,
                        dest='degrees', help='render degrees 1 through DEGREES-1',
                        metavar='DEGREES', default=15)

    parser.add_argument('--scale', type=float,
                        dest='scale', help='half-height of the viewed window in the complex plane',
                        metavar='SCALE', default=3.0)

    parser.add_argument('--x-res', type=int,
                        dest='x_res', help='width of the output image in pixels',
                        metavar='X_RES', default=4096)

    parser.add_argument('--y-res', type=int,
                        dest='y_res', help='height of the output image in pixels',
                        metavar='Y_RES', default=2160)

    parser.add_argument('--max-iterations', type=int,
                        dest='max_iterations', help='iteration cap for each Aberth-Ehrlich solve',
                        metavar='MAX_ITERATIONS', default=100000)

    parser.add_argument('--threshold', type=float,
                        dest='threshold', help='largest root correction accepted as converged',
                        metavar='THRESHOLD', default=0.001)

    parser.add_argument('--processes', type=int,
                        dest='processes', help='worker processes for root finding (default: one per CPU)',
                        metavar='PROCESSES', default=None)

    parser.add_argument('--chunk-size', type=int,
                        dest='chunk_size', help='polynomials solved per worker task',
                        metavar='CHUNK_SIZE', default=256)

    parser.add_argument('--intensity', type=float,
                        dest='intensity', help='numerator of the inverse-distance falloff',
                        metavar='INTENSITY', default=1.0)

    parser.add_argument('--falloff', type=float,
                        dest='falloff', help='distance multiplier of the inverse-distance falloff',
                        metavar='FALLOFF', default=50.0)

    parser.add_argument('--divisor', type=float,
                        dest='divisor', help='divisor applied to each layer colour',
                        metavar='DIVISOR', default=14.0)

    parser.add_argument('--colormap', type=str,
                        dest='colormap', help='matplotlib colormap used for the degree colours instead of the HSL sweep',
                        metavar='COLORMAP', default=None)

    parser.add_argument('--output', dest='output', type=str, default='out',
                        help='Destination of the final composite image. The --format extension is added when missing.')

    parser.add_argument('--format', type=str,
                        dest='format', help='file format for image outputs. Can be any extension supported by Pillow. Default: "png".',
                        metavar='FORMAT', default='png')

    parser.add_argument('--save-layers', dest='layer_dir', type=str, default=None,
                        help='Directory in which to store each degree layer as a numbered image.')

    parser.add_argument('--gif', dest='gif', type=str, default=None,
                        help='Write a GIF showing the composite after each degree.')

    parser.add_argument('--device', dest='device', type=str, default=None,
                        help='TensorFlow device for the field kernel, e.g. "/CPU:0". Default: first GPU when available.')

    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose logging, including TensorFlow and hardware diagnostics.')

    return parser


def resolve_run_config(opt, parser: ArgumentParser) -> RunConfig:
    if opt.degrees < 2:
        parser.error("--degrees must be at least 2.")
    if opt.scale <= 0:
        parser.error("--scale must be positive.")
    if opt.x_res <= 0 or opt.y_res <= 0:
        parser.error("--x-res and --y-res must be positive.")
    if opt.max_iterations < 1:
        parser.error("--max-iterations must be at least 1.")
    if opt.threshold <= 0:
        parser.error("--threshold must be positive.")
    if opt.processes is not None and opt.processes < 1:
        parser.error("--processes must be at least 1.")
    if opt.chunk_size < 1:
        parser.error("--chunk-size must be at least 1.")
    if opt.falloff <= 0:
        parser.error("--falloff must be positive.")
    if opt.divisor == 0:
        parser.error("--divisor must be non-zero.")

    if opt.colormap is not None and opt.colormap not in _mpl_colormaps:
        parser.error(f"Unknown colormap '{opt.colormap}'.")

    image_format = (getattr(opt, "format", "png") or "png").lower().lstrip(".")
    if not image_format:
        image_format = "png"

    output_arg = opt.output
    if str(output_arg).endswith(tuple(filter(None, {os.sep, os.altsep}))):
        parser.error("--output must be a file path.")
    output_path = Path(output_arg).expanduser()
    if output_path.exists() and output_path.is_dir():
        parser.error("--output must point to a file, not a directory.")
    expected_suffix = f".{image_format}"
    if output_path.suffix:
        if output_path.suffix.lower() != expected_suffix.lower():
            parser.error(f"--output extension {output_path.suffix} does not match --format {image_format}.")
    else:
        output_path = output_path.with_suffix(expected_suffix)

    layer_dir = Path(opt.layer_dir).expanduser().resolve() if opt.layer_dir else None

    gif_path = None
    if opt.gif:
        gif_path = Path(opt.gif).expanduser()
        if gif_path.suffix:
            if gif_path.suffix.lower() != ".gif":
                parser.error("GIF outputs must end with .gif.")
        else:
            gif_path = gif_path.with_suffix(".gif")
        gif_path = gif_path.resolve()

    return RunConfig(
        degrees=opt.degrees,
        scale=opt.scale,
        x_res=opt.x_res,
        y_res=opt.y_res,
        image_path=output_path.resolve(),
        image_format=image_format,
        layer_dir=layer_dir,
        gif_path=gif_path,
        colormap=opt.colormap,
        device=opt.device,
    )


def _pil_format_name(ext: str) -> str:
    upper = ext.upper()
    if upper == "JPG":
        return "JPEG"
    if upper == "TIF":
        return "TIFF"
    return upper


def write_single_image(image: PIL.Image.Image, output_path: Path, image_format: str) -> None:
    """Write a single image to ``output_path`` using the provided format."""

    pil_format = _pil_format_name(image_format)
    if pil_format == "JPEG" and image.mode == "RGBA":
        image = image.convert("RGB")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    image.save(str(output_path), format=pil_format)


def write_frame_sequence(
    image: PIL.Image.Image,
    frame_dir: Path,
    index: int,
    digits: int,
    image_format: str,
    prefix: str,
) -> Path:
    """Persist a frame in a numbered sequence inside ``frame_dir``."""

    pil_format = _pil_format_name(image_format)
    if pil_format == "JPEG" and image.mode == "RGBA":
        image = image.convert("RGB")
    frame_path = frame_dir / f"{prefix}{index:0{digits}d}.{image_format}"
    frame_dir.mkdir(parents=True, exist_ok=True)
    image.save(str(frame_path), format=pil_format)
    return frame_path


def write_gif(writer: Any, frame_array: np.ndarray) -> None:
    """Append ``frame_array`` to an active GIF writer."""

    writer.append_data(frame_array)


def layer_to_uint8(layer: np.ndarray) -> np.ndarray:
    layer = np.nan_to_num(layer, nan=0.0, posinf=1.0, neginf=0.0)
    return np.uint8(np.clip(layer * 255, 0, 255))


@dataclass
class OutputWriters:
    config: RunConfig
    frame_digits: int

    def __post_init__(self) -> None:
        self._gif_writer = None
        if self.config.gif_path is not None:
            self.config.gif_path.parent.mkdir(parents=True, exist_ok=True)
            self._gif_writer = imageio.get_writer(str(self.config.gif_path), mode='I', duration=0.5, loop=0)

    def write_layer(self, degree: int, layer: np.ndarray) -> None:
        if self.config.layer_dir is not None:
            write_frame_sequence(
                PIL.Image.fromarray(layer_to_uint8(layer)),
                self.config.layer_dir,
                degree,
                self.frame_digits,
                self.config.image_format,
                "degree",
            )

    def write_composite(self, compositor: Compositor) -> None:
        if self._gif_writer is not None:
            write_gif(self._gif_writer, compositor.finalize())

    def finalize(self, compositor: Compositor) -> None:
        write_single_image(compositor.to_image(), self.config.image_path, self.config.image_format)

    def close(self) -> None:
        if self._gif_writer is not None:
            self._gif_writer.close()
            self._gif_writer = None


def main(argv=None):
    parser = build_parser()
    opt = parser.parse_args(argv)

    config = resolve_run_config(opt, parser)

    global VERBOSE
    VERBOSE = bool(opt.verbose)
    if VERBOSE:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    device = config.device or select_device()
    renderer = FieldRenderer(FalloffSettings(numerator=opt.intensity, falloff=opt.falloff, divisor=opt.divisor))
    compositor = Compositor(config.x_res, config.y_res)
    cmap = get_colormap(config.colormap) if config.colormap else None

    writers = OutputWriters(config, frame_digits=max(2, len(str(config.degrees - 1))))
    log("Rendering on %s" % device)

    try:
        with RootAccumulator(
            solver=AberthSolver(max_iterations=opt.max_iterations, threshold=opt.threshold),
            processes=opt.processes,
            chunk_size=opt.chunk_size,
        ) as accumulator, RenderContext(config.x_res, config.y_res, device=device) as context:
            for degree in range(1, config.degrees):
                print("degree {0} out of {1}: finding roots of {2} polynomials".format(
                    degree, config.degrees - 1, len(LittlewoodFamily(degree))), end='\r')
                roots = accumulator.accumulate(degree)

                if cmap is not None:
                    colour = colormap_degree_colour(cmap, degree, config.degrees)
                else:
                    colour = hsl_degree_colour(degree, config.degrees)

                layer = renderer.render(context, roots, colour, config.scale)
                compositor.blend(layer)

                writers.write_layer(degree, layer)
                writers.write_composite(compositor)
        print()
        writers.finalize(compositor)
    finally:
        writers.close()

    log("Saved %s" % config.image_path)


if __name__ == '__main__':
    main()
