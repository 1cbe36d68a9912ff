#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Bilinear resampling of decoded images."""

from __future__ import annotations

import logging
from typing import Final

import numpy as np
from numpy.typing import NDArray

from heif_image import Channel, DecodedImage, Size
from thread_pool import ThreadPool

__all__: Final[list[str]] = [
    "resize_image",
    "sample_positions",
]

logger = logging.getLogger(__name__)


def sample_positions(src_len: int, dst_len: int) -> tuple[NDArray[np.intp], NDArray[np.intp], NDArray[np.float32]]:
    """Source lattice indices and blend weight for each destination index.

    Pixel centres are aligned: ``src = (dst + 0.5) * src_len / dst_len - 0.5``.
    Indices are clamped to ``[0, src_len - 1]`` so borders repeat the edge
    sample. Returns ``(i0, i1, w1)`` where the result is ``(1 - w1) * s[i0] + w1 * s[i1]``.
    """
    pos = (np.arange(dst_len, dtype=np.float32) + np.float32(0.5)) * np.float32(src_len / dst_len) - np.float32(0.5)
    base = np.floor(pos)
    w1 = (pos - base).astype(np.float32)
    i0 = np.clip(base.astype(np.intp), 0, src_len - 1)
    i1 = np.clip(base.astype(np.intp) + 1, 0, src_len - 1)
    return i0, i1, w1


async def resize_image(
    image: DecodedImage,
    target_size: Size,
    prefix: str,
    pool: ThreadPool,
    priority: int = 0,
) -> DecodedImage:
    """Return ``image`` resampled to ``target_size``.

    The same object comes back untouched when the size already matches.
    Otherwise channel names become ``{prefix}{suffix}`` with the suffix taken
    from the last character of the source name; colour metadata is carried over.
    """
    if image.size == target_size:
        return image

    src_w, src_h = image.size
    dst_w, dst_h = target_size
    logger.debug("Resizing %dx%d -> %dx%d", src_w, src_h, dst_w, dst_h)

    x0, x1, wx1 = sample_positions(src_w, dst_w)
    y0, y1, wy1 = sample_positions(src_h, dst_h)
    wx0 = np.float32(1.0) - wx1

    sources = [c.view() for c in image.channels]
    resized = [Channel.zeros(f"{prefix}{c.name[-1:]}", target_size) for c in image.channels]
    targets = [c.view() for c in resized]

    def resample_row(y: int) -> None:
        wy = wy1[y]
        for src, dst in zip(sources, targets, strict=True):
            top = src[y0[y]]
            bottom = src[y1[y]]
            dst[y] = (np.float32(1.0) - wy) * (wx0 * top[x0] + wx1 * top[x1]) + wy * (
                wx0 * bottom[x0] + wx1 * bottom[x1]
            )

    await pool.parallel_for_async(0, dst_h, resample_row, priority)

    return DecodedImage(
        channels=resized,
        has_premultiplied_alpha=image.has_premultiplied_alpha,
        to_rec709=image.to_rec709.copy(),
    )
