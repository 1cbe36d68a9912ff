#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Pull-based reader over a seekable byte stream.

Mirrors libheif's ``heif_reader`` callback table (get_position, read, seek,
wait_for_file_size). Failures are reported as return values, never raised,
so the codec bridge decides how to surface them.
"""

from __future__ import annotations

import io
import os
from enum import IntEnum
from typing import BinaryIO, Final

__all__: Final[list[str]] = [
    "GrowStatus",
    "SampleSource",
]


class GrowStatus(IntEnum):
    """Result of a ``wait_for_file_size`` probe (libheif numbering)."""

    SIZE_REACHED = 0
    TIMEOUT = 1
    SIZE_BEYOND_EOF = 2


class SampleSource:
    """A cursor over a seekable stream. Does not own the stream."""

    __slots__ = ("_stream", "_size")

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        start = stream.tell()
        self._size = stream.seek(0, os.SEEK_END)
        stream.seek(start)

    @property
    def size(self) -> int:
        """Total byte size, measured once when the adapter was created."""
        return self._size

    def get_position(self) -> int:
        """Current stream position, or -1 if it cannot be queried."""
        try:
            return self._stream.tell()
        except (OSError, ValueError):
            return -1

    def read(self, size: int) -> bytes | None:
        """Read exactly ``size`` bytes, or return ``None`` on a short read or error."""
        if size < 0:
            return None
        try:
            data = self._stream.read(size)
        except (OSError, ValueError):
            return None
        if data is None or len(data) != size:
            return None
        return bytes(data)

    def seek(self, position: int) -> bool:
        if position < 0:
            return False
        try:
            self._stream.seek(position, os.SEEK_SET)
        except (OSError, ValueError):
            return False
        return True

    def wait_for_file_size(self, target_size: int) -> GrowStatus:
        if self._size < target_size:
            return GrowStatus.SIZE_BEYOND_EOF
        return GrowStatus.SIZE_REACHED

    @classmethod
    def from_bytes(cls, data: bytes) -> SampleSource:
        return cls(io.BytesIO(data))
