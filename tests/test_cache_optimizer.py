# tests/test_cache_optimizer.py

import asyncio
from unittest.mock import MagicMock

import numpy as np
import pytest

from manual_rag.application.cache_optimizer import CacheOptimizer
from manual_rag.infrastructure.embedding_cache import EmbeddingCache


def _filled_cache(n: int) -> EmbeddingCache:
    cache = EmbeddingCache()
    for i in range(n):
        cache.set(f"k{i}", np.ones(4))
    return cache


def test_small_cache_is_left_alone():
    cache = MagicMock(wraps=_filled_cache(3))
    optimizer = CacheOptimizer(cache, min_entries=100)

    assert optimizer.run_once() is False
    cache.optimize.assert_not_called()


def test_large_cache_is_optimized():
    optimizer = CacheOptimizer(_filled_cache(5), min_entries=2)
    assert optimizer.run_once() is True
    assert optimizer.runs == 1


def test_background_task_runs_until_stopped():
    optimizer = CacheOptimizer(_filled_cache(2), interval_seconds=0.01, min_entries=1)

    async def scenario():
        optimizer.start()
        assert optimizer.is_running
        await asyncio.sleep(0.1)
        await optimizer.stop()

    asyncio.run(scenario())

    assert optimizer.runs >= 1
    assert optimizer.is_running is False


def test_stop_without_start_is_harmless():
    optimizer = CacheOptimizer(EmbeddingCache())
    asyncio.run(optimizer.stop())
    assert optimizer.runs == 0


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        CacheOptimizer(EmbeddingCache(), interval_seconds=0)
