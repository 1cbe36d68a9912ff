#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Colour path resolution for one image handle.

Three mutually exclusive outcomes:

1. ``IccRowTransform``  - an embedded ICC profile converts samples directly
   to linear Rec.709 RGBA.
2. ``PrimariesMatrix``  - samples are linearized as sRGB, then an NCLX box
   says the primaries are not Rec.709.
3. ``NoTransform``      - samples are linearized as sRGB and already use
   Rec.709 primaries.

ICC problems fall through to the sRGB path; NCLX problems fall back to
``NoTransform``. Both only log warnings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final, TypeAlias

import numpy as np
from numpy.typing import NDArray

from color_math import primaries_conversion_matrix
from color_profiles import ColorProfileEngine, RowTransformFn
from heif_bridge import read_embedded_color_profile, read_nclx_profile
from heif_codec import HeifImageHandle
from heif_errors import ColorProfileError

__all__: Final[list[str]] = [
    "ColorTransform",
    "IccRowTransform",
    "NoTransform",
    "PrimariesMatrix",
    "resolve_icc_transform",
    "resolve_primaries_transform",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NoTransform:
    """Samples are already in Rec.709 primaries after linearization."""


@dataclass(frozen=True, slots=True)
class PrimariesMatrix:
    """4x4 linear source-primaries to Rec.709 matrix."""

    matrix: NDArray[np.float32]


@dataclass(frozen=True, slots=True)
class IccRowTransform:
    """Row transform built from an embedded ICC profile."""

    fn: RowTransformFn
    num_channels: int
    premultiplied_alpha: bool


ColorTransform: TypeAlias = NoTransform | PrimariesMatrix | IccRowTransform


def resolve_icc_transform(
    handle: HeifImageHandle,
    engine: ColorProfileEngine,
    num_channels: int,
    premultiplied_alpha: bool,
    bits_per_sample: int = 8,
) -> IccRowTransform | None:
    """Build a transform from the handle's ICC profile, or None.

    None means no profile, or a profile that could not be used.
    """
    profile = read_embedded_color_profile(handle)
    if profile is None:
        return None

    try:
        fn = engine.build_transform(profile, num_channels, premultiplied_alpha, bits_per_sample)
    except ColorProfileError as exc:
        logger.warning("%s", exc)
        return None

    logger.debug("Found ICC color profile.")
    return IccRowTransform(fn=fn, num_channels=num_channels, premultiplied_alpha=premultiplied_alpha)


def resolve_primaries_transform(handle: HeifImageHandle) -> NoTransform | PrimariesMatrix:
    """Primaries conversion implied by the handle's NCLX profile."""
    nclx = read_nclx_profile(handle)
    # Only convert if not already in Rec.709/sRGB
    if nclx is None or nclx.is_rec709:
        return NoTransform()

    chroma = nclx.resolved_chromaticities()
    if chroma is None:
        logger.warning("Unknown NCLX color primaries %d; assuming Rec.709", nclx.color_primaries)
        return NoTransform()

    try:
        matrix = primaries_conversion_matrix(chroma)
    except (ValueError, np.linalg.LinAlgError) as exc:
        logger.warning("Failed to build primaries conversion matrix: %s", exc)
        return NoTransform()

    return PrimariesMatrix(matrix=matrix)
