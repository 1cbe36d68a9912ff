#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Codec-facing types: the contract the loader needs from a HEIF decoder.

The decoder itself (container parsing, entropy decoding) is external. Any
object satisfying ``HeifCodec`` can drive the loader; ``heif_pillow_codec``
provides the libheif-backed implementation.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Final, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from color_math import Chromaticities, REC709_PRIMARIES, primaries_for_code
from heif_source import SampleSource

__all__: Final[list[str]] = [
    "CodecError",
    "HeifCodec",
    "HeifContext",
    "HeifErrorCode",
    "HeifImageHandle",
    "NclxProfile",
    "RawSamples",
    "native_uint16",
]

# Code point for ITU-R BT.709-5 primaries in NCLX / H.273
BT709_PRIMARIES_CODE: Final[int] = 1


class HeifErrorCode(IntEnum):
    """Subset of libheif error codes the loader distinguishes."""

    OK = 0
    INPUT_DOES_NOT_EXIST = 1
    INVALID_INPUT = 2
    UNSUPPORTED_FILETYPE = 3
    UNSUPPORTED_FEATURE = 4
    USAGE_ERROR = 5
    MEMORY_ALLOCATION_ERROR = 6
    DECODER_PLUGIN_ERROR = 7
    COLOR_PROFILE_DOES_NOT_EXIST = 8


class CodecError(Exception):
    """Raised by codec implementations; carries a libheif-style error code."""

    __slots__ = ("code",)

    def __init__(self, message: str, *, code: HeifErrorCode = HeifErrorCode.INVALID_INPUT) -> None:
        super().__init__(message)
        self.code = code


def native_uint16() -> np.dtype[np.uint16]:
    """16-bit sample dtype in host byte order."""
    return np.dtype("<u2" if sys.byteorder == "little" else ">u2")


@dataclass(frozen=True, slots=True, kw_only=True)
class RawSamples:
    """Interleaved RGB(A) samples as produced by the codec.

    ``buffer`` holds ``height`` rows of ``stride`` bytes each; every row
    starts with ``width * num_channels`` samples of ``sample_dtype``.
    Sample values span ``[0, 2**bits_per_sample - 1]``.
    """

    buffer: bytes | bytearray | memoryview
    stride: int
    width: int
    height: int
    num_channels: int
    bits_per_sample: int
    premultiplied_alpha: bool = False
    sample_dtype: np.dtype = field(default_factory=native_uint16)

    def __post_init__(self) -> None:
        if self.num_channels not in (3, 4):
            msg = f"num_channels must be 3 or 4, got {self.num_channels}"
            raise ValueError(msg)
        row_bytes = self.width * self.num_channels * self.sample_dtype.itemsize
        if self.stride < row_bytes:
            msg = f"stride {self.stride} smaller than row size {row_bytes}"
            raise ValueError(msg)
        if len(self.buffer) < self.stride * (self.height - 1) + row_bytes:
            msg = "buffer too small for the declared image geometry"
            raise ValueError(msg)

    @property
    def channel_scale(self) -> float:
        return 1.0 / float((1 << self.bits_per_sample) - 1)

    @property
    def samples_per_row(self) -> int:
        return self.width * self.num_channels

    def row(self, y: int) -> NDArray[np.integer]:
        """Return row ``y`` as a read-only view of ``width * num_channels`` samples."""
        return np.frombuffer(
            self.buffer,
            dtype=self.sample_dtype,
            count=self.samples_per_row,
            offset=y * self.stride,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class NclxProfile:
    """Colour description from an NCLX (``colr``) box."""

    color_primaries: int
    transfer_characteristics: int = 2
    matrix_coefficients: int = 2
    full_range: bool = True
    chromaticities: Chromaticities | None = None

    @property
    def is_rec709(self) -> bool:
        return self.color_primaries == BT709_PRIMARIES_CODE

    def resolved_chromaticities(self) -> Chromaticities | None:
        """Explicit coordinates if present, otherwise the named primaries."""
        if self.chromaticities is not None:
            return self.chromaticities
        if self.is_rec709:
            return REC709_PRIMARIES
        return primaries_for_code(self.color_primaries)


@runtime_checkable
class HeifImageHandle(Protocol):
    """An image (primary or auxiliary) inside an open container.

    Handles are context managers: leaving the ``with`` block releases any
    native resources they hold.
    """

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...

    @property
    def has_alpha_channel(self) -> bool: ...

    @property
    def is_premultiplied_alpha(self) -> bool: ...

    def decode(self, num_channels: int) -> RawSamples:
        """Decode to interleaved RGB (3) or RGBA (4) host-endian samples."""
        ...

    def raw_color_profile(self) -> bytes | None:
        """ICC profile bytes, ``None`` if there is none. Raises CodecError."""
        ...

    def nclx_color_profile(self) -> NclxProfile | None:
        """NCLX profile, ``None`` if there is none. Raises CodecError."""
        ...

    def metadata_block_ids(self, type_filter: str) -> list[int]: ...

    def metadata(self, block_id: int) -> bytes: ...

    def auxiliary_image_ids(self) -> list[int]: ...

    def auxiliary_image_handle(self, aux_id: int) -> HeifImageHandle: ...

    def auxiliary_type(self) -> str | None: ...

    def __enter__(self) -> HeifImageHandle: ...

    def __exit__(self, *exc_info: object) -> None: ...


class HeifContext(Protocol):
    """An open container. Leaving the ``with`` block frees it."""

    def primary_image_handle(self) -> HeifImageHandle: ...

    def __enter__(self) -> HeifContext: ...

    def __exit__(self, *exc_info: object) -> None: ...


@runtime_checkable
class HeifCodec(Protocol):
    """Factory for decode contexts."""

    def check_filetype(self, header: bytes) -> bool:
        """True if the leading bytes belong to a container this codec decodes."""
        ...

    def open(self, source: SampleSource) -> HeifContext:
        """Read a container through ``source``. Raises CodecError."""
        ...
