#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Transfer functions and RGB primaries conversion.

Primaries matrices are derived from CIE 1931 chromaticity coordinates with
the white point mapped to Y = 1. No chromatic adaptation is applied, so
white is only preserved exactly between spaces that share a white point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, TypeAlias

import numpy as np
from numpy.typing import NDArray

__all__: Final[list[str]] = [
    "Chromaticities",
    "NAMED_PRIMARIES",
    "REC709_PRIMARIES",
    "apply_primaries_matrix",
    "primaries_conversion_matrix",
    "primaries_for_code",
    "rgb_to_xyz_matrix",
    "to_linear",
    "to_srgb",
]

XY: TypeAlias = tuple[float, float]


# ═══════════════════════════════════════════════════════════════════
#                        TRANSFER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════


def to_linear(srgb: NDArray[np.floating]) -> NDArray[np.float32]:
    """Inverse sRGB transfer function (IEC 61966-2-1).

    Piecewise:
        x <= 0.04045: x / 12.92
        x > 0.04045:  ((x + 0.055) / 1.055)^2.4
    """
    srgb = np.asarray(srgb, dtype=np.float32)
    return np.where(
        srgb <= 0.04045,
        srgb / np.float32(12.92),
        np.power(np.maximum((srgb + np.float32(0.055)) / np.float32(1.055), 0.0), np.float32(2.4)),
    ).astype(np.float32)


def to_srgb(linear: NDArray[np.floating]) -> NDArray[np.float32]:
    """Apply sRGB transfer function (IEC 61966-2-1)."""
    linear = np.asarray(linear, dtype=np.float32)
    return np.where(
        linear <= 0.0031308,
        12.92 * linear,
        1.055 * np.power(np.maximum(linear, 0.0), 1.0 / 2.4) - 0.055,
    ).astype(np.float32)


# ═══════════════════════════════════════════════════════════════════
#                        PRIMARIES
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Chromaticities:
    """CIE 1931 xy coordinates of the RGB primaries and the white point."""

    red: XY
    green: XY
    blue: XY
    white: XY


_D65: Final[XY] = (0.3127, 0.3290)
_ILLUMINANT_C: Final[XY] = (0.310, 0.316)

REC709_PRIMARIES: Final[Chromaticities] = Chromaticities(
    red=(0.640, 0.330), green=(0.300, 0.600), blue=(0.150, 0.060), white=_D65
)

# Keyed by ITU-T H.273 ColourPrimaries code points
NAMED_PRIMARIES: Final[dict[int, Chromaticities]] = {
    1: REC709_PRIMARIES,
    4: Chromaticities(red=(0.67, 0.33), green=(0.21, 0.71), blue=(0.14, 0.08), white=_ILLUMINANT_C),
    5: Chromaticities(red=(0.64, 0.33), green=(0.29, 0.60), blue=(0.15, 0.06), white=_D65),
    6: Chromaticities(red=(0.630, 0.340), green=(0.310, 0.595), blue=(0.155, 0.070), white=_D65),
    7: Chromaticities(red=(0.630, 0.340), green=(0.310, 0.595), blue=(0.155, 0.070), white=_D65),
    8: Chromaticities(red=(0.681, 0.319), green=(0.243, 0.692), blue=(0.145, 0.049), white=_ILLUMINANT_C),
    9: Chromaticities(red=(0.708, 0.292), green=(0.170, 0.797), blue=(0.131, 0.046), white=_D65),
    11: Chromaticities(red=(0.680, 0.320), green=(0.265, 0.690), blue=(0.150, 0.060), white=(0.314, 0.351)),
    12: Chromaticities(red=(0.680, 0.320), green=(0.265, 0.690), blue=(0.150, 0.060), white=_D65),
    22: Chromaticities(red=(0.630, 0.340), green=(0.295, 0.605), blue=(0.155, 0.077), white=_D65),
}


def primaries_for_code(code: int) -> Chromaticities | None:
    """Look up named primaries by H.273 code, or None if unknown."""
    return NAMED_PRIMARIES.get(code)


def _xy_to_xyz(xy: XY) -> NDArray[np.float64]:
    x, y = xy
    if y <= 0.0:
        msg = f"Chromaticity y must be positive, got {y}"
        raise ValueError(msg)
    return np.array([x / y, 1.0, (1.0 - x - y) / y], dtype=np.float64)


def rgb_to_xyz_matrix(chroma: Chromaticities, luminance: float = 1.0) -> NDArray[np.float64]:
    """3x3 matrix taking linear RGB column vectors to XYZ.

    Each primary's XYZ direction is scaled so that RGB (1, 1, 1) lands on the
    white point with Y = ``luminance``.

    Raises:
        ValueError: If the primaries are degenerate
    """
    primaries = np.stack(
        [_xy_to_xyz(chroma.red), _xy_to_xyz(chroma.green), _xy_to_xyz(chroma.blue)],
        axis=1,
    )
    white = _xy_to_xyz(chroma.white) * luminance
    try:
        scale = np.linalg.solve(primaries, white)
    except np.linalg.LinAlgError as exc:
        raise ValueError(f"Degenerate primaries: {chroma}") from exc
    return primaries * scale[np.newaxis, :]


def primaries_conversion_matrix(
    src: Chromaticities, dst: Chromaticities = REC709_PRIMARIES
) -> NDArray[np.float32]:
    """4x4 homogeneous matrix converting linear RGB in ``src`` to ``dst``.

    Goes through XYZ: ``inv(RGBtoXYZ(dst)) @ RGBtoXYZ(src)``. Column-vector
    convention, translation part is zero.
    """
    m3 = np.linalg.inv(rgb_to_xyz_matrix(dst)) @ rgb_to_xyz_matrix(src)
    m4 = np.eye(4, dtype=np.float64)
    m4[:3, :3] = m3
    return m4.astype(np.float32)


def apply_primaries_matrix(rgb: NDArray[np.float32], matrix: NDArray[np.float32]) -> NDArray[np.float32]:
    """Apply a 4x4 primaries matrix to an (..., 3) linear RGB array."""
    shape = rgb.shape
    flat = rgb.reshape(-1, 3)
    converted = flat @ matrix[:3, :3].T + matrix[:3, 3]
    return converted.reshape(shape).astype(np.float32)
