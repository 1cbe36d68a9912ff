#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Auxiliary layer compositing.

Merges the auxiliary images of a primary handle (depth, mattes, Apple HDR
gain maps, ...) into the primary ``DecodedImage`` as extra named channels.
Layers are decoded one after another; a layer that fails is skipped and the
rest continue. When a layer is an Apple HDR gain map, the gain map applier is
run on the primary image first.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Final, Protocol, TypeAlias

from apple_maker_note import AppleMakerNote
from heif_bridge import AuxiliaryImage, iter_auxiliaries, read_exif_maker_note
from heif_codec import HeifImageHandle
from heif_errors import AuxiliaryDecodeError, DecodeError, MetadataError
from heif_image import DecodedImage
from resample import resize_image
from thread_pool import ThreadPool

__all__: Final[list[str]] = [
    "GainMapApplier",
    "LayerCompositor",
    "is_apple_gain_map",
    "load_apple_maker_note",
    "matches_fuzzy",
]

logger = logging.getLogger(__name__)

DecodeLayer: TypeAlias = Callable[[HeifImageHandle, str, int], Awaitable[DecodedImage]]

_SELECTOR_SPLIT: Final[re.Pattern[str]] = re.compile(r"[,\s]+")
_WILDCARD_CHARS: Final[frozenset[str]] = frozenset("*?[")


class GainMapApplier(Protocol):
    """Applies a decoded gain map to the primary image in place."""

    def __call__(
        self,
        image: DecodedImage,
        gain_map: DecodedImage,
        priority: int,
        maker_note: AppleMakerNote,
    ) -> Awaitable[None]: ...


def matches_fuzzy(text: str, selector: str) -> bool:
    """Case-insensitive match of ``text`` against any term of ``selector``.

    Terms are separated by commas or whitespace. A term with ``*``, ``?`` or
    ``[`` is a wildcard pattern, any other term matches as a substring. An
    empty selector matches everything.
    """
    terms = [t for t in _SELECTOR_SPLIT.split(selector.lower()) if t]
    if not terms:
        return True

    text = text.lower()
    for term in terms:
        if _WILDCARD_CHARS.intersection(term):
            if fnmatch.fnmatchcase(text, term):
                return True
        elif term in text:
            return True
    return False


def is_apple_gain_map(layer_name: str) -> bool:
    name = layer_name.lower()
    return "apple" in name and "hdrgainmap" in name


def load_apple_maker_note(handle: HeifImageHandle) -> AppleMakerNote:
    """Find and parse the Apple maker note in ``handle``'s EXIF.

    Raises:
        MetadataError: If there is none or it cannot be parsed
    """
    data = read_exif_maker_note(handle)
    if data is None:
        raise MetadataError("No Apple maker note found in EXIF data")
    return AppleMakerNote.from_bytes(data)


class LayerCompositor:
    """Decodes auxiliary layers and merges them into the primary image."""

    def __init__(
        self,
        decode_layer: DecodeLayer,
        pool: ThreadPool,
        gain_map_applier: GainMapApplier | None = None,
    ) -> None:
        self._decode_layer = decode_layer
        self._pool = pool
        self._gain_map_applier = gain_map_applier

    async def merge(
        self,
        image: DecodedImage,
        handle: HeifImageHandle,
        channel_selector: str = "",
        priority: int = 0,
    ) -> None:
        """Append the channels of every selected auxiliary layer of ``handle`` to ``image``."""
        maker_note: AppleMakerNote | None = None
        maker_note_failed = False

        for aux in iter_auxiliaries(handle):
            if not matches_fuzzy(aux.layer_name, channel_selector):
                logger.debug("Skipping auxiliary layer %s", aux.layer_name)
                continue

            try:
                layer = await self._decode_auxiliary(aux, image, priority)
            except AuxiliaryDecodeError as exc:
                logger.warning("%s", exc)
                continue

            if self._gain_map_applier is not None and is_apple_gain_map(aux.layer_name):
                logger.debug("Found Apple HDR gain map: %s", aux.layer_name)
                if maker_note is None and not maker_note_failed:
                    try:
                        maker_note = load_apple_maker_note(handle)
                    except MetadataError as exc:
                        logger.warning("Not applying gain map: %s", exc)
                        maker_note_failed = True
                if maker_note is not None:
                    await self._gain_map_applier(image, layer, priority, maker_note)

            image.append_channels(layer.channels)

    async def _decode_auxiliary(self, aux: AuxiliaryImage, image: DecodedImage, priority: int) -> DecodedImage:
        try:
            layer = await self._decode_layer(aux.handle, aux.layer_name, priority)
            return await resize_image(layer, image.size, aux.layer_name, self._pool, priority)
        except (DecodeError, ValueError) as exc:
            raise AuxiliaryDecodeError(f"Failed to decode auxiliary image {aux.layer_name}: {exc}") from exc
