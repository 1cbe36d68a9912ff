#!/usr/bin/env python3
"""
HEIF File-Type Probe Module.

Reads the ISOBMFF ``ftyp`` box at the start of a HEIF/AVIF container and
classifies the file from its brands, the same way libheif's
``heif_check_filetype`` does for the 12-byte header window.

SPDX-License-Identifier: MPL-2.0
Copyright (c) 2025-2026 Aryan Ameri
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Final

__all__: Final[list[str]] = [
    "FileTypeBox",
    "HeifFiletype",
    "HEADER_PROBE_SIZE",
    "check_filetype",
    "parse_ftyp",
]

# libheif needs the first 12 bytes (box size, "ftyp", major brand)
HEADER_PROBE_SIZE: Final[int] = 12

SUPPORTED_BRANDS: Final[frozenset[str]] = frozenset({
    "heic", "heix", "heim", "heis",  # HEVC still images
    "hevc", "hevx", "hevm", "hevs",  # HEVC image sequences
    "avif", "avis",                  # AV1
})

# Structural brands: the real codec is only known from compatible brands
GENERIC_BRANDS: Final[frozenset[str]] = frozenset({"mif1", "mif2", "msf1"})

UNSUPPORTED_BRANDS: Final[frozenset[str]] = frozenset({
    "jpeg", "jpgs", "j2ki", "j2is", "vvic", "vvis", "evbi", "evbs",
})


class HeifFiletype(IntEnum):
    """Verdict of the file-type probe (libheif numbering)."""

    NO = 0
    YES_SUPPORTED = 1
    YES_UNSUPPORTED = 2
    MAYBE = 3


@dataclass(frozen=True, slots=True)
class FileTypeBox:
    """Parsed ``ftyp`` box.

    Attributes:
        major_brand: 4-character major brand (e.g. "heic", "mif1")
        minor_version: Brand version
        compatible_brands: Brands listed after the minor version; empty when
            only the 12-byte header window was available
    """
    major_brand: str
    minor_version: int = 0
    compatible_brands: tuple[str, ...] = field(default=())

    def __repr__(self) -> str:
        return f"FileTypeBox(major={self.major_brand!r}, compatible={list(self.compatible_brands)})"


def parse_ftyp(data: bytes) -> FileTypeBox | None:
    """Parse the leading ``ftyp`` box.

    Box structure:
    - size (4 bytes, big-endian): Total box size including header
    - type (4 bytes, ASCII): "ftyp"
    - major_brand (4 bytes)
    - minor_version (4 bytes, big-endian)
    - compatible_brands (4 bytes each, up to the box end)

    Returns None if ``data`` does not start with an ``ftyp`` box.
    """
    if len(data) < HEADER_PROBE_SIZE:
        return None
    size = struct.unpack(">I", data[0:4])[0]
    if data[4:8] != b"ftyp" or size < HEADER_PROBE_SIZE:
        return None

    major_brand = data[8:12].decode("ascii", errors="replace")
    if len(data) < 16:
        return FileTypeBox(major_brand=major_brand)

    minor_version = struct.unpack(">I", data[12:16])[0]
    end = min(size, len(data))
    compatible = tuple(
        data[pos : pos + 4].decode("ascii", errors="replace")
        for pos in range(16, end - 3, 4)
    )
    return FileTypeBox(
        major_brand=major_brand,
        minor_version=minor_version,
        compatible_brands=compatible,
    )


def check_filetype(data: bytes) -> HeifFiletype:
    """Classify a container from its leading bytes.

    Fewer than 12 bytes is never enough to decide and yields ``NO``.
    """
    box = parse_ftyp(data)
    if box is None:
        return HeifFiletype.NO

    if box.major_brand in SUPPORTED_BRANDS:
        return HeifFiletype.YES_SUPPORTED
    if box.major_brand in UNSUPPORTED_BRANDS:
        return HeifFiletype.YES_UNSUPPORTED
    if box.major_brand in GENERIC_BRANDS:
        # Only resolvable when the compatible brands were part of the window
        if any(b in SUPPORTED_BRANDS for b in box.compatible_brands):
            return HeifFiletype.YES_SUPPORTED
        return HeifFiletype.MAYBE
    return HeifFiletype.NO
