#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
HEIF/HEIC/AVIF image loader.

Decodes the primary image of a HEIF container into linear-light float
channels, merges its auxiliary images as extra channels and, for iPhone
photos, applies the Apple HDR gain map.

Pipeline per image handle:
1. decode interleaved RGB(A) samples
2. ICC profile -> linear Rec.709 row transform, or sRGB linearization
3. NCLX primaries -> ``to_rec709`` matrix (linearization path only)
4. auxiliary layers: decode, resample to the primary size, append

Example:
    >>> loader = HeifImageLoader()
    >>> with open("IMG_0001.HEIC", "rb") as f:
    ...     [image] = loader.load_sync(f, channel_selector="hdrgainmap")
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import BinaryIO, Final

from apple_gainmap import apply_apple_gain_map
from color_profiles import ColorProfileEngine, PillowCmsEngine
from color_resolution import NoTransform, PrimariesMatrix, resolve_icc_transform, resolve_primaries_transform
from heif_bridge import can_decode, decode_samples, open_primary
from heif_codec import HeifCodec, HeifImageHandle
from heif_errors import DecodeError, FormatError
from heif_image import DecodedImage
from heif_pillow_codec import PillowHeifCodec
from heif_source import SampleSource
from layer_compositor import GainMapApplier, LayerCompositor
from pixel_transform import apply_row_transform, linearize_rows
from thread_pool import ThreadPool

__all__: Final[list[str]] = [
    "HeifImageLoader",
]

logger = logging.getLogger(__name__)


class HeifImageLoader:
    """Loads HEIF containers into ``DecodedImage`` objects.

    Args:
        codec: Container codec; defaults to pillow-heif
        engine: ICC profile engine; defaults to Pillow ImageCms
        pool: Worker pool; defaults to the process-wide pool
        gain_map_applier: Apple HDR gain map applier; defaults to
            ``apply_apple_gain_map`` on ``pool``
    """

    def __init__(
        self,
        codec: HeifCodec | None = None,
        engine: ColorProfileEngine | None = None,
        pool: ThreadPool | None = None,
        gain_map_applier: GainMapApplier | None = None,
    ) -> None:
        self._codec = codec or PillowHeifCodec()
        self._engine = engine or PillowCmsEngine()
        self._pool = pool or ThreadPool.global_pool()
        if gain_map_applier is None:
            gain_map_applier = partial(apply_apple_gain_map, pool=self._pool)
        self._compositor = LayerCompositor(self._decode_image, self._pool, gain_map_applier)

    def can_load_file(self, stream: BinaryIO) -> bool:
        """Whether ``stream`` starts with a supported container header.

        The stream position is left unchanged.
        """
        return can_decode(self._codec, stream)

    async def load(self, stream: BinaryIO, channel_selector: str = "", priority: int = 0) -> list[DecodedImage]:
        """Decode ``stream`` into a list holding one image.

        Raises:
            FormatError: If the stream is not a supported HEIF container
            DecodeError: If the primary image cannot be decoded
        """
        if not self.can_load_file(stream):
            raise FormatError("File is not a supported HEIF image.")

        source = SampleSource(stream)
        with open_primary(self._codec, source) as (_, handle):
            image = await self._decode_image(handle, "", priority)
            await self._compositor.merge(image, handle, channel_selector, priority)

        logger.debug("Loaded HEIF image with %d channel(s)", image.num_channels)
        return [image]

    def load_sync(self, stream: BinaryIO, channel_selector: str = "", priority: int = 0) -> list[DecodedImage]:
        """Blocking wrapper around ``load``; must not be called from a running event loop."""
        return asyncio.run(self.load(stream, channel_selector, priority))

    async def _decode_image(self, handle: HeifImageHandle, prefix: str, priority: int) -> DecodedImage:
        """Decode one handle to linear channels.

        Raises:
            DecodeError: For any failure in the decode or pixel phases
        """
        try:
            return await self._decode_channels(handle, prefix, priority)
        except DecodeError:
            raise
        except Exception as exc:
            raise DecodeError(f"Failed to decode image: {exc}") from exc

    async def _decode_channels(self, handle: HeifImageHandle, prefix: str, priority: int) -> DecodedImage:
        raw = decode_samples(handle)
        premultiplied = raw.num_channels == 4 and handle.is_premultiplied_alpha

        icc = resolve_icc_transform(handle, self._engine, raw.num_channels, premultiplied, raw.bits_per_sample)
        if icc is not None:
            channels = await apply_row_transform(raw, icc, self._pool, priority, prefix)
            # The ICC transform outputs straight alpha
            return DecodedImage(channels=channels, has_premultiplied_alpha=False)

        channels = await linearize_rows(raw, self._pool, priority, prefix)
        image = DecodedImage(channels=channels, has_premultiplied_alpha=premultiplied)

        match resolve_primaries_transform(handle):
            case PrimariesMatrix(matrix=matrix):
                image.to_rec709 = matrix
            case NoTransform():
                pass

        return image
