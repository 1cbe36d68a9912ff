#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
ICC profile engine.

Builds per-row transforms from an embedded ICC profile to linear Rec.709
RGBA. The production engine uses Pillow's ImageCms (lcms2): it transforms to
sRGB with perceptual intent and linearizes the result, which is the same
destination as a linear-gamma Rec.709/D65 profile.

ImageCms works on 8-bit images. 8-bit sources go through it directly. For
deeper sources the transform is sampled once on a 52^3 grid of 8-bit codes
and rows are interpolated trilinearly in that LUT, so shadows keep their
gradation instead of collapsing onto 8-bit steps.
"""

from __future__ import annotations

import io
import itertools
import logging
from typing import Final, Protocol

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageCms

from color_math import to_linear
from heif_errors import ColorProfileError

__all__: Final[list[str]] = [
    "ColorProfileEngine",
    "PillowCmsEngine",
    "PillowCmsRowTransform",
    "RowTransformFn",
    "interpolate_lut",
    "sample_transform_lut",
]

logger = logging.getLogger(__name__)

# 51 intervals of 5 codes, so every node is an exact 8-bit value
LUT_NODES: Final[int] = 52


class RowTransformFn(Protocol):
    """Reentrant transform of one row.

    ``src`` holds ``width * num_channels`` normalized samples in the source
    encoding; ``dst`` receives ``width * 4`` linear RGBA samples.
    """

    def __call__(self, src: NDArray[np.float32], dst: NDArray[np.float32], width: int) -> None: ...


class ColorProfileEngine(Protocol):
    """Builds row transforms from ICC profiles."""

    def build_transform(
        self,
        profile: bytes,
        num_channels: int,
        premultiplied_alpha: bool,
        bits_per_sample: int = 8,
    ) -> RowTransformFn:
        """Raises ColorProfileError if the profile or the transform is unusable."""
        ...


def sample_transform_lut(transform: ImageCms.ImageCmsTransform) -> NDArray[np.float32]:
    """Run an RGB -> RGB transform over the LUT grid.

    Returns:
        ``(LUT_NODES, LUT_NODES, LUT_NODES, 3)`` normalized encoded output,
        indexed ``[r, g, b]``
    """
    codes = np.arange(LUT_NODES, dtype=np.uint8) * (255 // (LUT_NODES - 1))
    r, g, b = np.meshgrid(codes, codes, codes, indexing="ij")
    grid = np.stack([r, g, b], axis=-1)
    image = Image.frombytes("RGB", (LUT_NODES, LUT_NODES * LUT_NODES), grid.tobytes())
    encoded = np.asarray(transform.apply(image), dtype=np.float32)
    return encoded.reshape(LUT_NODES, LUT_NODES, LUT_NODES, 3) / 255.0


def interpolate_lut(lut: NDArray[np.float32], rgb: NDArray[np.float32]) -> NDArray[np.float32]:
    """Trilinear lookup of ``(n, 3)`` normalized samples in ``lut``."""
    last = lut.shape[0] - 1
    pos = np.clip(rgb, 0.0, 1.0) * last
    lo = np.minimum(np.floor(pos).astype(np.intp), last - 1)
    frac = (pos - lo).astype(np.float32)
    hi = lo + 1

    out = np.zeros((rgb.shape[0], 3), dtype=np.float32)
    for dr, dg, db in itertools.product((0, 1), repeat=3):
        idx = [hi[:, c] if d else lo[:, c] for c, d in enumerate((dr, dg, db))]
        weight = np.ones(rgb.shape[0], dtype=np.float32)
        for c, d in enumerate((dr, dg, db)):
            weight *= frac[:, c] if d else 1.0 - frac[:, c]
        out += weight[:, None] * lut[idx[0], idx[1], idx[2]]
    return out


class PillowCmsRowTransform:
    """Row transform backed by an ``ImageCms.ImageCmsTransform``.

    With ``lut`` set, rows are looked up in the sampled transform instead of
    being quantized and run through ImageCms.
    """

    __slots__ = ("_transform", "_num_channels", "_premultiplied", "_mode", "_lut")

    def __init__(
        self,
        transform: ImageCms.ImageCmsTransform,
        num_channels: int,
        premultiplied_alpha: bool,
        lut: NDArray[np.float32] | None = None,
    ) -> None:
        self._transform = transform
        self._num_channels = num_channels
        self._premultiplied = premultiplied_alpha and num_channels == 4
        self._mode = "RGBA" if num_channels == 4 else "RGB"
        self._lut = lut

    def __call__(self, src: NDArray[np.float32], dst: NDArray[np.float32], width: int) -> None:
        pixels = src.reshape(width, self._num_channels)
        colour = pixels[:, :3]
        if self._premultiplied:
            alpha = pixels[:, 3:4]
            with np.errstate(divide="ignore", invalid="ignore"):
                colour = np.where(alpha > 0, colour / alpha, 0.0)

        if self._lut is not None:
            encoded = interpolate_lut(self._lut, colour)
        else:
            encoded = self._apply_8bit(pixels, colour, width)

        out = dst.reshape(width, 4)
        out[:, :3] = to_linear(encoded)
        # lcms does not premultiply; alpha leaves unscaled and straight
        out[:, 3] = pixels[:, 3] if self._num_channels == 4 else 1.0

    def _apply_8bit(self, pixels: NDArray[np.float32], colour: NDArray[np.float32], width: int) -> NDArray[np.float32]:
        quantized = np.empty((width, self._num_channels), dtype=np.uint8)
        quantized[:, :3] = np.clip(np.rint(colour * 255.0), 0, 255)
        if self._num_channels == 4:
            quantized[:, 3] = np.clip(np.rint(pixels[:, 3] * 255.0), 0, 255)

        image = Image.frombytes(self._mode, (width, 1), quantized.tobytes())
        encoded = np.asarray(self._transform.apply(image), dtype=np.float32).reshape(width, self._num_channels)
        return encoded[:, :3] / 255.0


class PillowCmsEngine:
    """``ColorProfileEngine`` over Pillow ImageCms."""

    def build_transform(
        self,
        profile: bytes,
        num_channels: int,
        premultiplied_alpha: bool,
        bits_per_sample: int = 8,
    ) -> PillowCmsRowTransform:
        try:
            src_profile = ImageCms.getOpenProfile(io.BytesIO(profile))
        except (ImageCms.PyCMSError, OSError) as exc:
            raise ColorProfileError("Failed to create ICC profile from raw data") from exc

        try:
            dst_profile = ImageCms.createProfile("sRGB")
        except ImageCms.PyCMSError as exc:
            raise ColorProfileError("Failed to create Rec.709 color profile") from exc

        # Alpha never passes through lcms on the LUT path
        mode = "RGBA" if num_channels == 4 and bits_per_sample <= 8 else "RGB"
        try:
            transform = ImageCms.buildTransform(
                src_profile,
                dst_profile,
                mode,
                mode,
                renderingIntent=ImageCms.Intent.PERCEPTUAL,
                flags=ImageCms.Flags.NOCACHE,
            )
        except ImageCms.PyCMSError as exc:
            raise ColorProfileError("Failed to create color transform from ICC profile to Rec.709") from exc

        if bits_per_sample <= 8:
            return PillowCmsRowTransform(transform, num_channels, premultiplied_alpha)

        try:
            lut = sample_transform_lut(transform)
        except ImageCms.PyCMSError as exc:
            raise ColorProfileError("Failed to sample ICC color transform") from exc
        logger.debug("Sampled %d-bit ICC transform into a %d^3 LUT", bits_per_sample, LUT_NODES)
        return PillowCmsRowTransform(transform, num_channels, premultiplied_alpha, lut=lut)
