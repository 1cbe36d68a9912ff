#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Loader configuration with environment variable fallbacks."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final, Self

__all__: Final[list[str]] = [
    "LoaderConfig",
]


def _get_cpu_count() -> int:
    """Get CPU count with fallback."""
    return os.cpu_count() or 1


def _get_env_int(var_name: str, /) -> int | None:
    """Get a positive int from environment variable, or None if invalid."""
    value = os.environ.get(var_name, "").strip()
    if not value:
        return None
    try:
        result = int(value)
        return result if result > 0 else None
    except ValueError:
        return None


@dataclass(frozen=True, slots=True, kw_only=True)
class LoaderConfig:
    """Worker pool configuration."""

    num_workers: int
    min_rows_per_task: int = 1

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.num_workers < 1:
            msg = f"num_workers must be >= 1, got {self.num_workers}"
            raise ValueError(msg)
        if self.min_rows_per_task < 1:
            msg = f"min_rows_per_task must be >= 1, got {self.min_rows_per_task}"
            raise ValueError(msg)

    @classmethod
    def create(
        cls,
        *,
        num_workers: int | None = None,
        min_rows_per_task: int | None = None,
    ) -> Self:
        """Create config from arguments with environment variable fallbacks."""
        return cls(
            num_workers=num_workers or _get_env_int("HEIF_WORKERS") or _get_cpu_count(),
            min_rows_per_task=min_rows_per_task or _get_env_int("HEIF_MIN_ROWS_PER_TASK") or 1,
        )
