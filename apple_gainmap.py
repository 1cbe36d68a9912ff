"""
Apple HDR Gain Map Module

Reconstructs the HDR rendition of an iPhone photo from its SDR base image and
the ``urn:com:apple:photo:2020:aux:hdrgainmap`` auxiliary image.

Apple does not store ISO 21496-1 metadata. The headroom (in stops) is
derived from two maker note tags:

- tag 33: selects one of two piecewise-linear curves
- tag 48: the curve input

Both curves bend at 0.01. The gain in linear light is then::

    hdr = sdr * (1 + (headroom - 1) * gain)

with ``gain`` read from the first channel of the (linear) gain map.

Key functions:
- headroom_from_maker_note(): Linear headroom factor from the maker note
- apply_apple_gain_map(): Scale the first three channels in place

SPDX-License-Identifier: MPL-2.0
Copyright (c) 2025-2026 Aryan Ameri
"""

from __future__ import annotations

import logging
from typing import Final

import numpy as np

from apple_maker_note import AppleMakerNote
from heif_image import DecodedImage
from thread_pool import ThreadPool

__all__: Final[list[str]] = [
    "HEADROOM_CURVE_TAG",
    "HEADROOM_INPUT_TAG",
    "apply_apple_gain_map",
    "headroom_from_maker_note",
    "headroom_stops",
]

logger = logging.getLogger(__name__)

HEADROOM_CURVE_TAG: Final[int] = 33
HEADROOM_INPUT_TAG: Final[int] = 48

_CURVE_KNEE: Final[float] = 0.01


def headroom_stops(maker33: float, maker48: float) -> float:
    """Headroom in stops for the given maker note values."""
    if maker33 < 1.0:
        if maker48 <= _CURVE_KNEE:
            return -20.0 * maker48 + 1.8
        return -0.101 * maker48 + 1.601
    if maker48 <= _CURVE_KNEE:
        return -70.0 * maker48 + 3.0
    return -0.303 * maker48 + 2.303


def headroom_from_maker_note(maker_note: AppleMakerNote) -> float:
    """Linear headroom factor; never below 1."""
    maker33 = maker_note.get_float(HEADROOM_CURVE_TAG, 0.0)
    maker48 = maker_note.get_float(HEADROOM_INPUT_TAG, 0.0)
    stops = headroom_stops(maker33, maker48)
    return float(2.0 ** max(stops, 0.0))


async def apply_apple_gain_map(
    image: DecodedImage,
    gain_map: DecodedImage,
    priority: int,
    maker_note: AppleMakerNote,
    *,
    pool: ThreadPool | None = None,
) -> None:
    """Apply ``gain_map`` to the first three channels of ``image`` in place.

    ``gain_map`` must already have the size of ``image``.
    """
    if gain_map.size != image.size:
        msg = f"Gain map size {gain_map.size} does not match image size {image.size}"
        raise ValueError(msg)
    if image.num_channels < 3 or gain_map.num_channels < 1:
        msg = "Gain map application needs an RGB image and a non-empty gain map"
        raise ValueError(msg)

    pool = pool or ThreadPool.global_pool()
    headroom = headroom_from_maker_note(maker_note)
    logger.debug("Applying Apple gain map with headroom %.3f", headroom)

    scale = np.float32(headroom - 1.0)
    gain = gain_map.channels[0].view()
    colour = [c.view() for c in image.channels[:3]]

    def apply_row(y: int) -> None:
        factor = np.float32(1.0) + scale * gain[y]
        for channel in colour:
            channel[y] *= factor

    await pool.parallel_for_async(0, image.size[1], apply_row, priority)
