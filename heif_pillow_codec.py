#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
libheif-backed codec using pillow-heif.

pillow-heif decodes whole images; this module adapts its ``HeifFile`` /
``HeifImage`` objects to the handle protocol in ``heif_codec``. HDR content
is requested at full precision (``convert_hdr_to_8bit=False``) and arrives
as 16-bit samples.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Mapping
from typing import Any, Final, Self

import numpy as np
import pillow_heif

from color_math import Chromaticities
from heif_brand import HeifFiletype, check_filetype
from heif_codec import CodecError, HeifErrorCode, NclxProfile, RawSamples
from heif_source import GrowStatus, SampleSource

__all__: Final[list[str]] = [
    "PillowHeifCodec",
    "PillowHeifContext",
    "PillowHeifHandle",
]

logger = logging.getLogger(__name__)

# Errors pillow-heif surfaces for libheif failures
_PILLOW_HEIF_ERRORS: Final[tuple[type[Exception], ...]] = (RuntimeError, ValueError, OSError, EOFError)

_NCLX_CHROMATICITY_KEYS: Final[tuple[str, ...]] = (
    "color_primary_red_x", "color_primary_red_y",
    "color_primary_green_x", "color_primary_green_y",
    "color_primary_blue_x", "color_primary_blue_y",
    "color_primary_white_x", "color_primary_white_y",
)


def _mode_channels(mode: str) -> int:
    base = mode.split(";")[0]
    return {"L": 1, "I": 1, "LA": 2, "RGB": 3, "RGBA": 4, "BGR": 3, "BGRA": 4}.get(base, 0)


def _mode_is_16bit(mode: str) -> bool:
    return mode.endswith(";16") or mode.startswith("I;16")


def _expand_samples(
    data: bytes | memoryview,
    stride: int,
    size: tuple[int, int],
    src_channels: int,
    dst_channels: int,
    dtype: np.dtype,
) -> tuple[bytes, int]:
    """Repack samples to ``dst_channels`` interleaved channels.

    Grey is replicated to RGB; a missing alpha channel is filled opaque.
    """
    width, height = size
    itemsize = dtype.itemsize
    rows = np.frombuffer(data, dtype=np.uint8, count=stride * height).reshape(height, stride)
    samples = rows[:, : width * src_channels * itemsize].copy().view(dtype).reshape(height, width, src_channels)

    grey = src_channels in (1, 2)
    colour = np.repeat(samples[..., :1], 3, axis=2) if grey else samples[..., :3]
    if dst_channels == 4:
        has_alpha = src_channels in (2, 4)
        if has_alpha:
            alpha = samples[..., -1:]
        else:
            opaque = np.iinfo(dtype).max
            alpha = np.full((height, width, 1), opaque, dtype=dtype)
        colour = np.concatenate([colour, alpha], axis=2)

    packed = np.ascontiguousarray(colour, dtype=dtype)
    return packed.tobytes(), width * dst_channels * itemsize


class PillowHeifHandle:
    """A primary or auxiliary image of an open ``pillow_heif.HeifFile``."""

    __slots__ = ("_image", "_aux_type")

    def __init__(self, image: Any, *, aux_type: str | None = None) -> None:
        self._image = image
        self._aux_type = aux_type

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        # pillow-heif frees the decoded planes together with the image object
        self._image = None

    def _require_image(self) -> Any:
        if self._image is None:
            raise CodecError("Image handle already released", code=HeifErrorCode.USAGE_ERROR)
        return self._image

    @property
    def _info(self) -> Mapping[str, Any]:
        return getattr(self._require_image(), "info", {}) or {}

    @property
    def width(self) -> int:
        return int(self._require_image().size[0])

    @property
    def height(self) -> int:
        return int(self._require_image().size[1])

    @property
    def has_alpha_channel(self) -> bool:
        return _mode_channels(self._require_image().mode) in (2, 4)

    @property
    def is_premultiplied_alpha(self) -> bool:
        return bool(getattr(self._require_image(), "premultiplied_alpha", False))

    def decode(self, num_channels: int) -> RawSamples:
        image = self._require_image()
        mode: str = image.mode
        src_channels = _mode_channels(mode)
        if src_channels == 0:
            raise CodecError(f"Unsupported decoded mode: {mode}", code=HeifErrorCode.UNSUPPORTED_FEATURE)

        is_16bit = _mode_is_16bit(mode)
        dtype = np.dtype("<u2") if is_16bit else np.dtype(np.uint8)
        try:
            data = image.data
            stride = int(image.stride)
        except _PILLOW_HEIF_ERRORS as exc:
            raise CodecError(f"Failed to decode image: {exc}", code=HeifErrorCode.DECODER_PLUGIN_ERROR) from exc

        size = (self.width, self.height)
        # 10/12-bit content is widened to the full 16-bit range by pillow-heif
        bits_per_sample = 16 if is_16bit else 8
        try:
            if src_channels != num_channels:
                data, stride = _expand_samples(data, stride, size, src_channels, num_channels, dtype)
            return RawSamples(
                buffer=data,
                stride=stride,
                width=size[0],
                height=size[1],
                num_channels=num_channels,
                bits_per_sample=bits_per_sample,
                premultiplied_alpha=self.is_premultiplied_alpha,
                sample_dtype=dtype,
            )
        except ValueError as exc:
            msg = f"Decoded buffer does not match image layout: {exc}"
            raise CodecError(msg, code=HeifErrorCode.DECODER_PLUGIN_ERROR) from exc

    def raw_color_profile(self) -> bytes | None:
        icc = self._info.get("icc_profile")
        if icc is None or len(icc) == 0:
            return None
        if not isinstance(icc, (bytes, bytearray)):
            raise CodecError(f"Unexpected ICC profile payload: {type(icc).__name__}")
        return bytes(icc)

    def nclx_color_profile(self) -> NclxProfile | None:
        nclx = self._info.get("nclx_profile")
        if nclx is None:
            return None
        if not isinstance(nclx, Mapping):
            raise CodecError(f"Unexpected NCLX profile payload: {type(nclx).__name__}")

        chroma: Chromaticities | None = None
        if all(k in nclx for k in _NCLX_CHROMATICITY_KEYS):
            rx, ry, gx, gy, bx, by, wx, wy = (float(nclx[k]) for k in _NCLX_CHROMATICITY_KEYS)
            chroma = Chromaticities(red=(rx, ry), green=(gx, gy), blue=(bx, by), white=(wx, wy))

        try:
            return NclxProfile(
                color_primaries=int(nclx["color_primaries"]),
                transfer_characteristics=int(nclx.get("transfer_characteristics", 2)),
                matrix_coefficients=int(nclx.get("matrix_coefficients", 2)),
                full_range=bool(nclx.get("full_range_flag", True)),
                chromaticities=chroma,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CodecError(f"Malformed NCLX profile: {exc}") from exc

    def metadata_block_ids(self, type_filter: str) -> list[int]:
        if type_filter != "Exif":
            return []
        return [0] if self._info.get("exif") else []

    def metadata(self, block_id: int) -> bytes:
        exif = self._info.get("exif")
        if block_id != 0 or not exif:
            raise CodecError(f"No metadata block {block_id}", code=HeifErrorCode.USAGE_ERROR)
        exif = bytes(exif)
        # pillow-heif strips the HEIF offset header; restore it as a zero offset
        if exif.startswith((b"Exif", b"II", b"MM")):
            return b"\x00\x00\x00\x00" + exif
        return exif

    def _aux_map(self) -> Mapping[str, list[int]]:
        aux = self._info.get("aux") or {}
        return aux if isinstance(aux, Mapping) else {}

    def auxiliary_image_ids(self) -> list[int]:
        return [aux_id for ids in self._aux_map().values() for aux_id in ids]

    def auxiliary_image_handle(self, aux_id: int) -> PillowHeifHandle:
        image = self._require_image()
        aux_type = next((t for t, ids in self._aux_map().items() if aux_id in ids), None)
        try:
            aux_image = image.get_aux_image(aux_id)
        except (*_PILLOW_HEIF_ERRORS, AttributeError) as exc:
            raise CodecError(f"Failed to get auxiliary image {aux_id}: {exc}") from exc
        return PillowHeifHandle(aux_image, aux_type=aux_type)

    def auxiliary_type(self) -> str | None:
        return self._aux_type


class PillowHeifContext:
    """An open container; ``primary_image_handle`` picks the primary item."""

    __slots__ = ("_heif_file",)

    def __init__(self, heif_file: Any) -> None:
        self._heif_file = heif_file

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._heif_file = None

    def primary_image_handle(self) -> PillowHeifHandle:
        if self._heif_file is None:
            raise CodecError("Context already released", code=HeifErrorCode.USAGE_ERROR)
        try:
            index = getattr(self._heif_file, "primary_index", 0)
            return PillowHeifHandle(self._heif_file[index])
        except (*_PILLOW_HEIF_ERRORS, IndexError) as exc:
            raise CodecError(f"Failed to get primary image handle: {exc}") from exc


class PillowHeifCodec:
    """``HeifCodec`` implementation over pillow-heif."""

    def check_filetype(self, header: bytes) -> bool:
        return check_filetype(header) == HeifFiletype.YES_SUPPORTED

    def open(self, source: SampleSource) -> PillowHeifContext:
        if not source.seek(0):
            raise CodecError("Failed to seek to start of stream", code=HeifErrorCode.INVALID_INPUT)
        if source.wait_for_file_size(source.size) != GrowStatus.SIZE_REACHED:
            raise CodecError("Stream ended before its reported size", code=HeifErrorCode.INVALID_INPUT)

        data = source.read(source.size)
        if data is None:
            raise CodecError("Failed to read image data", code=HeifErrorCode.INVALID_INPUT)

        logger.debug("Opening HEIF container (%d bytes)", len(data))
        try:
            heif_file = pillow_heif.open_heif(io.BytesIO(data), convert_hdr_to_8bit=False)
        except _PILLOW_HEIF_ERRORS as exc:
            raise CodecError(f"Failed to read image: {exc}") from exc
        return PillowHeifContext(heif_file)
