#!/usr/bin/env python3
"""
Apple Maker Note Parser Module.

Parses the vendor MakerNote that iPhones embed in EXIF. The HDR gain map
headroom is derived from two of its tags (33 and 48).

Layout (all multi-byte values big-endian):
- signature: "Apple iOS\\0" (10 bytes)
- version: 2 bytes (u16)
- byte order mark: "MM" (2 bytes)
- IFD at offset 14: entry count (u16) followed by 12-byte entries
  (tag u16, type u16, count u32, value-or-offset u32)

Offsets inside the IFD are relative to the start of the maker note.

SPDX-License-Identifier: MPL-2.0
Copyright (c) 2025-2026 Aryan Ameri
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Final, Self

from heif_errors import MetadataError

__all__: Final[list[str]] = [
    "APPLE_MAKER_NOTE_SIGNATURE",
    "AppleMakerNote",
    "MakerNoteEntry",
    "is_apple_maker_note",
]

APPLE_MAKER_NOTE_SIGNATURE: Final[bytes] = b"Apple iOS\x00"

# Signature (10) + version (2) + "MM" (2)
_IFD_OFFSET: Final[int] = 14
_ENTRY_SIZE: Final[int] = 12

# TIFF type id -> (struct code, bytes per component)
_TIFF_TYPES: Final[dict[int, tuple[str, int]]] = {
    1: ("B", 1),    # BYTE
    2: ("s", 1),    # ASCII
    3: ("H", 2),    # SHORT
    4: ("I", 4),    # LONG
    5: ("II", 8),   # RATIONAL
    6: ("b", 1),    # SBYTE
    7: ("s", 1),    # UNDEFINED
    8: ("h", 2),    # SSHORT
    9: ("i", 4),    # SLONG
    10: ("ii", 8),  # SRATIONAL
    11: ("f", 4),   # FLOAT
    12: ("d", 8),   # DOUBLE
}


def is_apple_maker_note(data: bytes | None) -> bool:
    """Check for the Apple maker note signature."""
    return data is not None and len(data) >= _IFD_OFFSET and data.startswith(APPLE_MAKER_NOTE_SIGNATURE)


@dataclass(frozen=True, slots=True)
class MakerNoteEntry:
    """One IFD entry.

    Attributes:
        tag: Tag id
        type_id: TIFF field type
        values: Decoded values; rationals become floats, ASCII/UNDEFINED
            stay as a single ``bytes`` element
    """
    tag: int
    type_id: int
    values: tuple[int | float | bytes, ...]

    def __repr__(self) -> str:
        return f"MakerNoteEntry(tag={self.tag}, type={self.type_id}, values={self.values!r})"


def _decode_values(type_id: int, count: int, raw: bytes) -> tuple[int | float | bytes, ...]:
    code, _ = _TIFF_TYPES[type_id]
    if code == "s":
        return (raw,)
    if code in ("II", "ii"):
        pairs = struct.unpack(f">{count * 2}{code[0]}", raw)
        return tuple(
            (num / den) if den != 0 else 0.0
            for num, den in zip(pairs[0::2], pairs[1::2], strict=True)
        )
    return struct.unpack(f">{count}{code}", raw)


@dataclass(frozen=True, slots=True)
class AppleMakerNote:
    """Parsed Apple maker note, keyed by tag id."""

    entries: dict[int, MakerNoteEntry]

    @classmethod
    def from_bytes(cls, data: bytes) -> Self:
        """Parse a maker note payload.

        Entries with unknown types or out-of-range offsets are skipped.

        Raises:
            MetadataError: If the signature or IFD header is invalid
        """
        if not is_apple_maker_note(data):
            raise MetadataError("Not an Apple maker note")
        if data[12:14] != b"MM":
            raise MetadataError("Apple maker note is not big-endian")
        if len(data) < _IFD_OFFSET + 2:
            raise MetadataError("Apple maker note is truncated")

        num_entries = struct.unpack(">H", data[_IFD_OFFSET : _IFD_OFFSET + 2])[0]
        entries: dict[int, MakerNoteEntry] = {}

        pos = _IFD_OFFSET + 2
        for _ in range(num_entries):
            if pos + _ENTRY_SIZE > len(data):
                break
            tag, type_id, count = struct.unpack(">HHI", data[pos : pos + 8])
            value_field = data[pos + 8 : pos + 12]
            pos += _ENTRY_SIZE

            if type_id not in _TIFF_TYPES:
                continue
            size = _TIFF_TYPES[type_id][1] * count
            if size <= 4:
                raw = value_field[:size]
            else:
                offset = struct.unpack(">I", value_field)[0]
                if offset + size > len(data):
                    continue
                raw = data[offset : offset + size]

            entries[tag] = MakerNoteEntry(tag=tag, type_id=type_id, values=_decode_values(type_id, count, raw))

        return cls(entries=entries)

    def has_key(self, tag: int) -> bool:
        return tag in self.entries

    def get_float(self, tag: int, default: float = 0.0) -> float:
        """First numeric value of ``tag`` as float, or ``default``."""
        entry = self.entries.get(tag)
        if entry is None or not entry.values:
            return default
        value = entry.values[0]
        if isinstance(value, bytes):
            return default
        return float(value)
