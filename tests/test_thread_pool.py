"""Tests for thread_pool and loader_config."""

import asyncio
import threading

import pytest

from loader_config import LoaderConfig
from thread_pool import ThreadPool, partition_range


class TestPartitionRange:
    def test_even_split(self):
        assert partition_range(0, 8, 4) == [(0, 2), (2, 4), (4, 6), (6, 8)]

    def test_uneven_split_covers_range(self):
        ranges = partition_range(3, 13, 3)
        assert ranges[0][0] == 3
        assert ranges[-1][1] == 13
        assert all(a[1] == b[0] for a, b in zip(ranges, ranges[1:]))

    def test_more_tasks_than_items(self):
        assert partition_range(0, 2, 8) == [(0, 1), (1, 2)]

    def test_empty(self):
        assert partition_range(5, 5, 4) == []


class TestParallelFor:
    def test_every_index_once(self, pool):
        seen = []
        lock = threading.Lock()

        def body(i):
            with lock:
                seen.append(i)

        asyncio.run(pool.parallel_for_async(0, 100, body))
        assert sorted(seen) == list(range(100))

    def test_explicit_task_count(self, pool):
        hits = [0] * 10

        def body(i):
            hits[i] += 1

        asyncio.run(pool.parallel_for_async(0, 10, body, num_tasks=7))
        assert hits == [1] * 10

    def test_empty_range(self, pool):
        asyncio.run(pool.parallel_for_async(4, 4, lambda i: pytest.fail("called")))

    def test_failure_propagates_after_all_tasks(self, pool):
        done = []

        def body(i):
            if i == 0:
                raise RuntimeError("row 0")
            done.append(i)

        with pytest.raises(RuntimeError, match="row 0"):
            asyncio.run(pool.parallel_for_async(0, 4, body, num_tasks=4))
        assert sorted(done) == [1, 2, 3]


class TestSubmit:
    def test_result(self, pool):
        assert pool.submit(lambda: 42).result(timeout=5) == 42

    def test_higher_priority_runs_first(self):
        order = []
        gate = threading.Event()
        with ThreadPool(1) as pool:
            blocker = pool.submit(gate.wait)
            low = pool.submit(lambda: order.append("low"), priority=0)
            high = pool.submit(lambda: order.append("high"), priority=10)
            gate.set()
            for future in (blocker, low, high):
                future.result(timeout=5)
        assert order == ["high", "low"]

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            ThreadPool(0)


class TestLoaderConfig:
    def test_explicit(self):
        config = LoaderConfig.create(num_workers=3, min_rows_per_task=8)
        assert config.num_workers == 3
        assert config.min_rows_per_task == 8

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("HEIF_WORKERS", "5")
        monkeypatch.setenv("HEIF_MIN_ROWS_PER_TASK", "16")
        config = LoaderConfig.create()
        assert config.num_workers == 5
        assert config.min_rows_per_task == 16

    def test_invalid_env_ignored(self, monkeypatch):
        monkeypatch.setenv("HEIF_WORKERS", "-2")
        monkeypatch.setenv("HEIF_MIN_ROWS_PER_TASK", "lots")
        config = LoaderConfig.create()
        assert config.num_workers >= 1
        assert config.min_rows_per_task == 1

    def test_validation(self):
        with pytest.raises(ValueError):
            LoaderConfig(num_workers=0)

    def test_pool_from_config(self):
        with ThreadPool.from_config(LoaderConfig(num_workers=2)) as pool:
            assert pool.num_workers == 2
