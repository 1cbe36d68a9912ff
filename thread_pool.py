#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Priority-aware worker pool with an awaitable parallel-for.

Work items wait in a heap ordered by priority (higher first, FIFO among
equals). Every ``submit`` schedules one trampoline on the underlying
``ThreadPoolExecutor``, which pops whichever item is most urgent at the time
a worker becomes free.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import math
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, ClassVar, Final, Self, TypeAlias

from loader_config import LoaderConfig

__all__: Final[list[str]] = [
    "ThreadPool",
    "partition_range",
]

logger = logging.getLogger(__name__)

_WorkItem: TypeAlias = tuple[int, int, Callable[[], Any], Future[Any]]


def partition_range(start: int, end: int, num_tasks: int) -> list[tuple[int, int]]:
    """Split ``[start, end)`` into at most ``num_tasks`` contiguous ranges."""
    count = end - start
    if count <= 0:
        return []
    num_tasks = max(1, min(num_tasks, count))
    batch = math.ceil(count / num_tasks)
    return [(lo, min(lo + batch, end)) for lo in range(start, end, batch)]


def _run_range(body: Callable[[int], None], lo: int, hi: int) -> None:
    for i in range(lo, hi):
        body(i)


class ThreadPool:
    """Shared worker pool for row-parallel image work."""

    _global: ClassVar[ThreadPool | None] = None
    _global_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, num_workers: int, *, min_task_size: int = 1) -> None:
        if num_workers < 1:
            msg = f"num_workers must be >= 1, got {num_workers}"
            raise ValueError(msg)
        self._num_workers = num_workers
        self._min_task_size = min_task_size
        self._executor = ThreadPoolExecutor(max_workers=num_workers, thread_name_prefix="heif-worker")
        self._pending: list[_WorkItem] = []
        self._lock = threading.Lock()
        self._sequence = itertools.count()

    @classmethod
    def from_config(cls, config: LoaderConfig) -> Self:
        return cls(config.num_workers, min_task_size=config.min_rows_per_task)

    @classmethod
    def global_pool(cls) -> ThreadPool:
        """Lazily created process-wide pool sized from ``LoaderConfig.create()``."""
        with cls._global_lock:
            if cls._global is None:
                config = LoaderConfig.create()
                logger.debug("Creating global thread pool with %d worker(s)", config.num_workers)
                cls._global = cls.from_config(config)
            return cls._global

    @property
    def num_workers(self) -> int:
        return self._num_workers

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def submit(self, fn: Callable[[], Any], priority: int = 0) -> Future[Any]:
        """Queue ``fn``; higher ``priority`` runs sooner."""
        future: Future[Any] = Future()
        with self._lock:
            heapq.heappush(self._pending, (-priority, next(self._sequence), fn, future))
        self._executor.submit(self._run_next)
        return future

    def _run_next(self) -> None:
        with self._lock:
            _, _, fn, future = heapq.heappop(self._pending)

        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    async def parallel_for_async(
        self,
        start: int,
        end: int,
        body: Callable[[int], None],
        priority: int = 0,
        *,
        num_tasks: int | None = None,
    ) -> None:
        """Run ``body(i)`` for every ``i`` in ``[start, end)`` and await completion.

        Indices are grouped into contiguous ranges, one task per range. All
        tasks are awaited even if one fails; the first failure is re-raised.
        """
        if num_tasks is None:
            num_tasks = max(1, min(self._num_workers, (end - start) // self._min_task_size))
        ranges = partition_range(start, end, num_tasks)
        if not ranges:
            return

        futures = [self.submit(partial(_run_range, body, lo, hi), priority) for lo, hi in ranges]
        results = await asyncio.gather(*(asyncio.wrap_future(f) for f in futures), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
