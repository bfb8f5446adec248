"""Test the render_roots command line entry point.

Test cases:
    - Option validation reports through argparse (exit status 2)
    - Output suffix handling follows --format, with or without --output
    - A small end-to-end run writes the composite, layer frames and GIF

Run:
    pytest tests/test_cli.py -v
"""

import numpy as np
import PIL.Image
import pytest

import render_roots


def _resolve(*args):
    parser = render_roots.build_parser()
    return render_roots.resolve_run_config(parser.parse_args(list(args)), parser)


@pytest.mark.parametrize(
    "args",
    [
        ["--degrees", "1"],
        ["--scale", "0"],
        ["--x-res", "0"],
        ["--threshold", "-1"],
        ["--processes", "0"],
        ["--falloff", "0"],
        ["--colormap", "not-a-colormap"],
        ["--output", "out.jpg"],
        ["--gif", "movie.mp4"],
    ],
)
def test_invalid_options_exit(args):
    with pytest.raises(SystemExit) as excinfo:
        _resolve(*args)
    assert excinfo.value.code == 2


def test_defaults(tmp_path):
    config = _resolve("--output", str(tmp_path / "final"))

    assert config.degrees == 15
    assert config.scale == 3.0
    assert (config.x_res, config.y_res) == (4096, 2160)
    assert config.image_path.name == "final.png"
    assert config.layer_dir is None
    assert config.gif_path is None


def test_default_output_takes_png_suffix():
    config = _resolve()
    assert config.image_path.name == "out.png"
    assert config.device is None


def test_format_alone_sets_output_suffix():
    config = _resolve("--format", "jpg")
    assert config.image_path.name == "out.jpg"
    assert config.image_format == "jpg"


def test_format_controls_suffix(tmp_path):
    config = _resolve("--format", "JPG", "--output", str(tmp_path / "final"))
    assert config.image_path.suffix == ".jpg"
    assert config.image_format == "jpg"


def test_end_to_end(tmp_path):
    output = tmp_path / "roots.png"
    layers = tmp_path / "layers"
    gif = tmp_path / "build.gif"

    render_roots.main([
        "--degrees", "4",
        "--x-res", "48",
        "--y-res", "32",
        "--processes", "1",
        "--device", "/CPU:0",
        "--output", str(output),
        "--save-layers", str(layers),
        "--gif", str(gif),
    ])

    with PIL.Image.open(output) as image:
        assert image.size == (48, 32)
        assert image.mode == "RGBA"
        pixels = np.asarray(image)
    assert pixels[..., :3].max() > 0
    assert np.all(pixels[..., 3] == 255)

    assert sorted(p.name for p in layers.iterdir()) == ["degree01.png", "degree02.png", "degree03.png"]
    assert gif.is_file()
