#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Container decode bridge.

Drives a ``HeifCodec`` to probe, open and decode HEIF containers and to pull
colour profiles and EXIF metadata out of image handles. Hard failures become
``DecodeError``; everything metadata-related degrades to ``None`` with a
logged warning.
"""

from __future__ import annotations

import contextlib
import logging
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO, Final

import piexif

from apple_maker_note import is_apple_maker_note
from heif_brand import HEADER_PROBE_SIZE
from heif_codec import CodecError, HeifCodec, HeifContext, HeifErrorCode, HeifImageHandle, NclxProfile, RawSamples
from heif_errors import DecodeError, MetadataError
from heif_source import SampleSource

__all__: Final[list[str]] = [
    "AuxiliaryImage",
    "aux_layer_name",
    "can_decode",
    "decode_samples",
    "iter_auxiliaries",
    "open_primary",
    "read_embedded_color_profile",
    "read_exif_maker_note",
    "read_nclx_profile",
]

logger = logging.getLogger(__name__)

# HEIF Exif items start with a 4-byte offset to the TIFF header
_EXIF_OFFSET_SIZE: Final[int] = 4

# Errors piexif raises on malformed TIFF structures
_EXIF_PARSE_ERRORS: Final[tuple[type[Exception], ...]] = (ValueError, struct.error, IndexError, KeyError)


@dataclass(frozen=True, slots=True)
class AuxiliaryImage:
    """An auxiliary image handle with its role label and derived layer name."""

    handle: HeifImageHandle
    type_label: str | None
    layer_name: str


def can_decode(codec: HeifCodec, stream: BinaryIO) -> bool:
    """Probe the leading bytes without consuming the stream.

    The stream position is restored on every path.
    """
    start = stream.tell()
    try:
        header = stream.read(HEADER_PROBE_SIZE)
    except (OSError, ValueError):
        return False
    finally:
        stream.seek(start)

    if header is None or len(header) != HEADER_PROBE_SIZE:
        return False
    return codec.check_filetype(bytes(header))


@contextlib.contextmanager
def open_primary(codec: HeifCodec, source: SampleSource) -> Iterator[tuple[HeifContext, HeifImageHandle]]:
    """Open a decode context and its primary image handle.

    Both are released when the ``with`` block exits, however it exits.

    Raises:
        DecodeError: If the context cannot be read or has no primary image
    """
    with contextlib.ExitStack() as stack:
        try:
            context = stack.enter_context(codec.open(source))
        except CodecError as exc:
            if exc.code == HeifErrorCode.MEMORY_ALLOCATION_ERROR:
                raise DecodeError("Failed to allocate libheif context.") from exc
            raise DecodeError(f"Failed to read image: {exc}") from exc

        try:
            handle = stack.enter_context(context.primary_image_handle())
        except CodecError as exc:
            raise DecodeError(f"Failed to get primary image handle: {exc}") from exc

        yield context, handle


def decode_samples(handle: HeifImageHandle) -> RawSamples:
    """Decode a handle to interleaved RGB or RGBA samples.

    Raises:
        DecodeError: For zero-area images and codec failures
    """
    if handle.width == 0 or handle.height == 0:
        raise DecodeError("Image has zero pixels.")

    num_channels = 4 if handle.has_alpha_channel else 3
    try:
        raw = handle.decode(num_channels)
    except CodecError as exc:
        raise DecodeError(f"Failed to decode image: {exc}") from exc

    if raw.num_channels != num_channels:
        raise DecodeError(f"Codec returned {raw.num_channels} channels, expected {num_channels}")
    return raw


def aux_layer_name(type_label: str | None, ordinal: int) -> str:
    """Layer name for an auxiliary image: label with ':' as '.', plus a trailing '.'."""
    name = f"{type_label}." if type_label else f"{ordinal}."
    return name.replace(":", ".")


def iter_auxiliaries(handle: HeifImageHandle) -> Iterator[AuxiliaryImage]:
    """Yield the auxiliary images of ``handle``.

    Each yielded handle stays open until the consumer advances the iterator.
    Auxiliaries that cannot be opened or typed are skipped with a warning.
    """
    try:
        aux_ids = handle.auxiliary_image_ids()
    except CodecError as exc:
        logger.warning("Failed to list auxiliary images: %s", exc)
        return

    if aux_ids:
        logger.debug("Found %d auxiliary image(s)", len(aux_ids))

    for ordinal, aux_id in enumerate(aux_ids):
        try:
            aux_handle = handle.auxiliary_image_handle(aux_id)
        except CodecError as exc:
            logger.warning("Failed to get auxiliary image handle: %s", exc)
            continue

        with aux_handle:
            try:
                aux_type = aux_handle.auxiliary_type()
            except CodecError as exc:
                logger.warning("Failed to get auxiliary image type: %s", exc)
                continue

            yield AuxiliaryImage(
                handle=aux_handle,
                type_label=aux_type,
                layer_name=aux_layer_name(aux_type, ordinal),
            )


def read_embedded_color_profile(handle: HeifImageHandle) -> bytes | None:
    """Raw ICC profile bytes, or None if absent or unreadable."""
    try:
        profile = handle.raw_color_profile()
    except CodecError as exc:
        if exc.code == HeifErrorCode.COLOR_PROFILE_DOES_NOT_EXIST:
            return None
        logger.warning("Failed to read ICC profile: %s", exc)
        return None

    if not profile:
        return None
    return profile


def read_nclx_profile(handle: HeifImageHandle) -> NclxProfile | None:
    """NCLX profile, or None if absent or unreadable.

    A read failure only warns; the image decodes as if no profile existed.
    """
    try:
        nclx = handle.nclx_color_profile()
    except CodecError as exc:
        if exc.code == HeifErrorCode.COLOR_PROFILE_DOES_NOT_EXIST:
            return None
        logger.warning("Failed to read NCLX profile: %s", exc)
        return None

    if nclx is not None:
        logger.debug("Found NCLX color profile.")
    return nclx


def _maker_note_from_exif_block(block: bytes) -> bytes:
    """Extract the MakerNote payload from one HEIF Exif item.

    Raises:
        MetadataError: If the block is malformed or carries no MakerNote
    """
    if len(block) <= _EXIF_OFFSET_SIZE:
        raise MetadataError("Failed to get size of EXIF data")

    offset = struct.unpack(">I", block[:_EXIF_OFFSET_SIZE])[0]
    tiff = block[_EXIF_OFFSET_SIZE + offset :]
    # piexif treats anything else as a file name
    if not tiff.startswith((b"Exif", b"II", b"MM")):
        raise MetadataError("Failed to decode EXIF data")

    try:
        exif = piexif.load(tiff)
    except _EXIF_PARSE_ERRORS as exc:
        raise MetadataError(f"Failed to decode EXIF data: {exc}") from exc

    maker_note = exif.get("Exif", {}).get(piexif.ExifIFD.MakerNote)
    if not maker_note:
        raise MetadataError("EXIF data has no maker note")
    return bytes(maker_note)


def read_exif_maker_note(handle: HeifImageHandle) -> bytes | None:
    """Return the first Apple maker note found in the handle's Exif blocks.

    Malformed blocks are skipped with a warning; returns None when no block
    carries an Apple maker note.
    """
    try:
        block_ids = handle.metadata_block_ids("Exif")
    except CodecError as exc:
        logger.warning("Failed to list EXIF metadata: %s", exc)
        return None

    if not block_ids:
        logger.warning("No EXIF metadata found")
        return None
    if len(block_ids) > 1:
        logger.debug("Found %d EXIF metadata block(s)", len(block_ids))

    for block_id in block_ids:
        try:
            block = handle.metadata(block_id)
        except CodecError as exc:
            logger.warning("Failed to read EXIF data: %s", exc)
            continue

        try:
            maker_note = _maker_note_from_exif_block(block)
        except MetadataError as exc:
            logger.warning("%s", exc)
            continue

        if is_apple_maker_note(maker_note):
            return maker_note

    return None
