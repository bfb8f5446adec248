from __future__ import annotations

import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

EXAMPLES_ROOT = Path("examples/cli-options")
BASE_ARGS = ["--degrees", "8", "--x-res", "320", "--y-res", "180", "--processes", "2"]


@dataclass
class Expected:
    path: Path
    is_dir: bool = False


@dataclass
class Example:
    name: str
    args: list[str]
    expected: list[Expected]
    clean: list[Path] | None = None

    def full_args(self) -> list[str]:
        return [sys.executable, "render_roots.py", *self.args]


def _simple(name: str, extra: list[str], filename: str) -> Example:
    target = EXAMPLES_ROOT / name / filename
    return Example(
        name=name,
        args=[*BASE_ARGS, *extra, "--output", str(target)],
        expected=[Expected(target)],
        clean=[EXAMPLES_ROOT / name],
    )


EXAMPLES: list[Example] = [
    _simple("degrees", ["--degrees", "11"], "more-degrees.png"),
    _simple("scale", ["--scale", "1.6"], "close-up.png"),
    _simple("x-res", ["--x-res", "480"], "wide-resolution.png"),
    _simple("y-res", ["--y-res", "320"], "tall-resolution.png"),
    _simple("max-iterations", ["--max-iterations", "50"], "capped-solver.png"),
    _simple("threshold", ["--threshold", "0.1"], "loose-threshold.png"),
    _simple("intensity", ["--intensity", "2.5"], "brighter.png"),
    _simple("falloff", ["--falloff", "20"], "wide-glow.png"),
    _simple("divisor", ["--divisor", "4"], "saturated.png"),
    _simple("colormap", ["--colormap", "plasma"], "plasma.png"),
    _simple("format", ["--format", "webp"], "custom.webp"),
    _simple("device", ["--device", "/CPU:0"], "cpu-render.png"),
    _simple("verbose", ["--verbose"], "diagnostic.png"),
    Example(
        name="save-layers",
        args=[
            *BASE_ARGS,
            "--save-layers",
            str(EXAMPLES_ROOT / "save-layers" / "layers"),
            "--output",
            str(EXAMPLES_ROOT / "save-layers" / "composite.png"),
        ],
        expected=[
            Expected(EXAMPLES_ROOT / "save-layers" / "layers", is_dir=True),
            Expected(EXAMPLES_ROOT / "save-layers" / "composite.png"),
        ],
        clean=[EXAMPLES_ROOT / "save-layers"],
    ),
    Example(
        name="gif",
        args=[
            *BASE_ARGS,
            "--gif",
            str(EXAMPLES_ROOT / "gif" / "build-up.gif"),
            "--output",
            str(EXAMPLES_ROOT / "gif" / "composite.png"),
        ],
        expected=[
            Expected(EXAMPLES_ROOT / "gif" / "build-up.gif"),
            Expected(EXAMPLES_ROOT / "gif" / "composite.png"),
        ],
        clean=[EXAMPLES_ROOT / "gif"],
    ),
]


def _ensure_clean(paths: Iterable[Path]) -> None:
    for path in paths:
        if path.exists():
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()


def _prepare(example: Example) -> None:
    clean = example.clean or []
    _ensure_clean(clean)
    for expected in example.expected:
        expected.path.parent.mkdir(parents=True, exist_ok=True)


def _verify(example: Example) -> None:
    for expected in example.expected:
        if expected.is_dir:
            if not expected.path.is_dir():
                raise RuntimeError(f"Expected directory {expected.path} was not created")
            if not any(expected.path.iterdir()):
                raise RuntimeError(f"Directory {expected.path} is empty")
        else:
            if not expected.path.is_file():
                raise RuntimeError(f"Expected file {expected.path} was not created")


def main() -> None:
    EXAMPLES_ROOT.mkdir(parents=True, exist_ok=True)
    for example in EXAMPLES:
        print(f"\n[cli-example] {example.name}")
        _prepare(example)
        subprocess.run(example.full_args(), check=True)
        _verify(example)
    print("\nAll CLI examples generated successfully.")


if __name__ == "__main__":
    main()
