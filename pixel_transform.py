#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Row-parallel conversion of raw codec samples to linear float channels.

Two conversions exist:

- ``apply_row_transform``: rows go through an ICC row transform into an
  RGBA scratch buffer, then get split into channels. Output alpha is always
  straight.
- ``linearize_rows``: colour samples are treated as sRGB-encoded and
  linearized; alpha is copied unchanged.

Both normalize integer samples by ``1 / (2**bits - 1)`` and do one
contiguous range of rows per pool task.
"""

from __future__ import annotations

from typing import Final

import numpy as np

from color_math import to_linear
from color_resolution import IccRowTransform
from heif_codec import RawSamples
from heif_image import Channel, make_n_channels
from thread_pool import ThreadPool

__all__: Final[list[str]] = [
    "apply_row_transform",
    "linearize_rows",
]

_RGBA: Final[int] = 4


async def apply_row_transform(
    raw: RawSamples,
    transform: IccRowTransform,
    pool: ThreadPool,
    priority: int = 0,
    prefix: str = "",
) -> list[Channel]:
    """Convert ``raw`` with ``transform`` into ``raw.num_channels`` linear channels."""
    width, height = raw.width, raw.height
    scale = np.float32(raw.channel_scale)
    scratch = np.empty((height, width * _RGBA), dtype=np.float32)

    def convert_row(y: int) -> None:
        src = raw.row(y).astype(np.float32) * scale
        transform.fn(src, scratch[y], width)

    await pool.parallel_for_async(0, height, convert_row, priority)

    channels = make_n_channels(raw.num_channels, (width, height), prefix)
    pixels = scratch.reshape(height, width, _RGBA)
    for c, channel in enumerate(channels):
        channel.view()[:] = pixels[:, :, c]
    return channels


async def linearize_rows(
    raw: RawSamples,
    pool: ThreadPool,
    priority: int = 0,
    prefix: str = "",
) -> list[Channel]:
    """Normalize ``raw`` and apply the inverse sRGB transfer to colour channels."""
    width, height, num_channels = raw.width, raw.height, raw.num_channels
    scale = np.float32(raw.channel_scale)
    channels = make_n_channels(num_channels, (width, height), prefix)
    views = [c.view() for c in channels]

    def convert_row(y: int) -> None:
        pixels = raw.row(y).reshape(width, num_channels).astype(np.float32) * scale
        for c in range(3):
            views[c][y] = to_linear(pixels[:, c])
        if num_channels == _RGBA:
            views[3][y] = pixels[:, 3]

    await pool.parallel_for_async(0, height, convert_row, priority)
    return channels
