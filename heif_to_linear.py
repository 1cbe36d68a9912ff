#!/usr/bin/env python3
#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
HEIF to linear float inspector.

Decodes HEIF/HEIC/AVIF files into linear Rec.709 float channels (auxiliary
layers included, Apple HDR gain maps applied) and prints per-channel
statistics. Optionally writes a 16-bit sRGB PNG preview.

Requirements:
    - Python 3.12+
    - numpy, pillow, pillow-heif, piexif, rich, pypng

Usage:
    heif-to-linear IMG_0001.HEIC
    heif-to-linear IMG_0001.HEIC --channels hdrgainmap --preview out.png
"""

from __future__ import annotations

import argparse
import logging
import sys
from enum import StrEnum
from pathlib import Path
from typing import ClassVar, Final

from typing_extensions import override

import numpy as np
import png
from numpy.typing import NDArray
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from color_math import apply_primaries_matrix, to_srgb
from heif_errors import DecodeError, FormatError
from heif_image import DecodedImage
from heif_loader import HeifImageLoader
from loader_config import LoaderConfig
from thread_pool import ThreadPool

__version__: Final[str] = "1.0.0"

console = Console()


class _AnsiColor(StrEnum):
    """ANSI color codes for terminal output."""

    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    RED = "\033[0;31m"
    GRAY = "\033[0;37m"
    RESET = "\033[0m"


class _ColoredFormatter(logging.Formatter):
    """Logging formatter with colored output."""

    _LEVEL_COLORS: ClassVar[dict[int, str]] = {
        logging.DEBUG: _AnsiColor.GRAY,
        logging.INFO: _AnsiColor.GREEN,
        logging.WARNING: _AnsiColor.YELLOW,
        logging.ERROR: _AnsiColor.RED,
    }

    @override
    def format(self, record: logging.LogRecord) -> str:
        color = self._LEVEL_COLORS.get(record.levelno, _AnsiColor.RESET)
        return f"{color}[{record.levelname}]{_AnsiColor.RESET} {record.getMessage()}"


def _configure_logging(verbose: bool) -> None:
    """Route library logging to stderr with colors."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(isinstance(h.formatter, _ColoredFormatter) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_ColoredFormatter())
        root.addHandler(handler)


# ═══════════════════════════════════════════════════════════════════
#                        PREVIEW
# ═══════════════════════════════════════════════════════════════════


def _preview_rgb(image: DecodedImage) -> NDArray[np.float32]:
    """Display-encoded (sRGB) RGB array of the image's first channels."""
    width, height = image.size
    colour = image.channels[:3]
    if len(colour) < 3:
        colour = [colour[0]] * 3
    rgb = np.stack([c.view() for c in colour], axis=-1)
    if image.has_primaries_conversion():
        rgb = apply_primaries_matrix(rgb, image.to_rec709)
    return to_srgb(np.clip(rgb, 0.0, 1.0)).reshape(height, width, 3)


def _write_png_from_float(png_path: Path, img: NDArray[np.float32]) -> None:
    """Write normalized float32 array as 16-bit PNG using pypng."""
    img_16bit = np.clip(np.rint(img * 65535.0), 0, 65535).astype(np.uint16)
    height, width = img_16bit.shape[:2]
    writer = png.Writer(width=width, height=height, bitdepth=16, greyscale=False)
    # pypng expects rows as (H, W*3)
    rows = img_16bit.reshape(height, width * 3)
    with open(png_path, "wb") as f:
        writer.write(f, rows)


# ═══════════════════════════════════════════════════════════════════
#                        REPORTING
# ═══════════════════════════════════════════════════════════════════


def _channel_table(path: Path, image: DecodedImage) -> Table:
    table = Table(title=f"{path.name} ({image.size[0]}x{image.size[1]})")
    table.add_column("Channel", style="cyan")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Mean", justify="right")

    for channel in image.channels:
        data = channel.data
        table.add_row(
            channel.name,
            f"{float(data.min()):.4f}",
            f"{float(data.max()):.4f}",
            f"{float(data.mean()):.4f}",
        )
    return table


def _describe_colour(image: DecodedImage) -> str:
    if not image.has_primaries_conversion():
        return "Rec.709 primaries"
    rows = "\n".join("  " + " ".join(f"{v: .5f}" for v in row) for row in image.to_rec709)
    return f"Primaries conversion to Rec.709:\n{rows}"


# ═══════════════════════════════════════════════════════════════════
#                        CLI
# ═══════════════════════════════════════════════════════════════════


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Decode HEIF/HEIC/AVIF images to linear Rec.709 float channels.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables:
  HEIF_WORKERS             Worker threads (default: CPU count)
  HEIF_MIN_ROWS_PER_TASK   Minimum rows per parallel task (default: 1)

Examples:
  %(prog)s IMG_0001.HEIC
  %(prog)s IMG_0001.HEIC --channels "hdrgainmap,depth"
  %(prog)s IMG_0001.HEIC --preview preview.png
""",
    )
    parser.add_argument("files", nargs="+", type=Path, help="Input files")
    parser.add_argument(
        "--channels",
        "-c",
        default="",
        help="Auxiliary layer selector; comma or space separated, wildcards allowed (default: all)",
    )
    parser.add_argument(
        "--priority",
        type=int,
        default=0,
        help="Scheduling priority, higher runs sooner (default: 0)",
    )
    parser.add_argument(
        "--workers",
        "-j",
        type=int,
        default=None,
        help="Worker threads (default: $HEIF_WORKERS or CPU count)",
    )
    parser.add_argument(
        "--preview",
        type=Path,
        default=None,
        help="Write a 16-bit sRGB PNG preview of the first file",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _load(loader: HeifImageLoader, path: Path, args: argparse.Namespace) -> DecodedImage:
    with open(path, "rb") as f:
        [image] = loader.load_sync(f, channel_selector=args.channels, priority=args.priority)
    return image


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = LoaderConfig.create(num_workers=args.workers)
    except ValueError as exc:
        sys.exit(f"Error: Invalid configuration: {exc}")

    exit_code = 0
    try:
        with ThreadPool.from_config(config) as pool:
            loader = HeifImageLoader(pool=pool)
            decoded: list[tuple[Path, DecodedImage]] = []

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("Decoding...", total=len(args.files))
                for path in args.files:
                    try:
                        decoded.append((path, _load(loader, path, args)))
                    except FormatError as exc:
                        console.print(f"[yellow]✗[/] {path.name}: {exc}")
                        exit_code = max(exit_code, 2)
                    except (DecodeError, OSError) as exc:
                        console.print(f"[red]✗[/] {path.name}: {exc}")
                        exit_code = max(exit_code, 1)
                    progress.advance(task)

            for path, image in decoded:
                console.print(_channel_table(path, image))
                console.print(_describe_colour(image))

            if args.preview is not None and decoded:
                _write_png_from_float(args.preview, _preview_rgb(decoded[0][1]))
                console.print(f"[green]✓[/] Preview written to {args.preview}")

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        sys.exit(130)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
