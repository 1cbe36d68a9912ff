#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Exception hierarchy for the HEIF linear-light loader.

Only ``FormatError`` and ``DecodeError`` ever reach callers of the loader.
The remaining classes are raised internally and caught where the pipeline
degrades to a reduced result, at which point they are logged as warnings.
"""

from __future__ import annotations

from typing import Final

__all__: Final[list[str]] = [
    "HeifLoadError",
    "FormatError",
    "DecodeError",
    "ColorProfileError",
    "MetadataError",
    "AuxiliaryDecodeError",
]


class HeifLoadError(Exception):
    """Base exception for HEIF loading errors."""


class FormatError(HeifLoadError):
    """Input bytes are not a supported HEIF container. Try another loader."""


class DecodeError(HeifLoadError):
    """Decoding the primary image failed. Aborts the whole load."""


class ColorProfileError(HeifLoadError):
    """An ICC or NCLX profile is present but unusable."""


class MetadataError(HeifLoadError):
    """EXIF or maker-note metadata is missing, malformed or unrecognized."""


class AuxiliaryDecodeError(HeifLoadError):
    """A single auxiliary layer could not be enumerated or decoded."""
