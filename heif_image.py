#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Decoded image containers.

A ``DecodedImage`` is an ordered list of named single-precision channels that
all share one size. Channel names follow the ``{prefix}R/G/B/A`` convention,
so auxiliary layers merged into a primary image keep distinct names such as
``urn.com.apple.photo.2020.aux.hdrgainmap.R``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Final, TypeAlias

import numpy as np
from numpy.typing import NDArray

__all__: Final[list[str]] = [
    "CHANNEL_NAMES",
    "Channel",
    "DecodedImage",
    "Size",
    "make_n_channels",
]

# (width, height)
Size: TypeAlias = tuple[int, int]

CHANNEL_NAMES: Final[tuple[str, ...]] = ("R", "G", "B", "A")


@dataclass(slots=True, eq=False)
class Channel:
    """A 2D grid of float32 samples stored as a flat, owned buffer."""

    name: str
    width: int
    height: int
    data: NDArray[np.float32] = field(repr=False)

    def __post_init__(self) -> None:
        expected = self.width * self.height
        if self.data.shape != (expected,):
            msg = f"Channel {self.name!r} expects {expected} samples, got shape {self.data.shape}"
            raise ValueError(msg)

    @classmethod
    def zeros(cls, name: str, size: Size) -> Channel:
        width, height = size
        return cls(name, width, height, np.zeros(width * height, dtype=np.float32))

    @property
    def size(self) -> Size:
        return (self.width, self.height)

    def at(self, index: int) -> float:
        return float(self.data[index])

    def view(self) -> NDArray[np.float32]:
        """Return a (height, width) view onto the channel's storage."""
        return self.data.reshape(self.height, self.width)


def make_n_channels(num_channels: int, size: Size, prefix: str = "") -> list[Channel]:
    """Create ``num_channels`` zeroed channels named ``{prefix}R``, ``{prefix}G``, ..."""
    if not 1 <= num_channels <= len(CHANNEL_NAMES):
        msg = f"num_channels must be in [1, {len(CHANNEL_NAMES)}], got {num_channels}"
        raise ValueError(msg)
    return [Channel.zeros(f"{prefix}{CHANNEL_NAMES[c]}", size) for c in range(num_channels)]


@dataclass(slots=True, eq=False)
class DecodedImage:
    """Linear-light channels of one decoded image plus colour metadata.

    ``to_rec709`` converts linear RGB in the source primaries to linear
    Rec.709 RGB. It uses the column-vector convention, i.e.
    ``to_rec709 @ [r, g, b, 1]``, and is the identity when no conversion is
    needed. It is only meaningful when no ICC transform was applied.
    """

    channels: list[Channel] = field(default_factory=list)
    has_premultiplied_alpha: bool = False
    to_rec709: NDArray[np.float32] = field(default_factory=lambda: np.eye(4, dtype=np.float32))

    @property
    def size(self) -> Size:
        if not self.channels:
            return (0, 0)
        return self.channels[0].size

    @property
    def num_channels(self) -> int:
        return len(self.channels)

    def channel_names(self) -> list[str]:
        return [c.name for c in self.channels]

    def channel(self, name: str) -> Channel | None:
        for c in self.channels:
            if c.name == name:
                return c
        return None

    def append_channels(self, channels: Iterable[Channel]) -> None:
        """Append channels after the existing ones; existing order is kept."""
        size = self.size
        for c in channels:
            if self.channels and c.size != size:
                msg = f"Channel {c.name!r} has size {c.size}, image has {size}"
                raise ValueError(msg)
            self.channels.append(c)

    def has_primaries_conversion(self) -> bool:
        return not np.allclose(self.to_rec709, np.eye(4))
