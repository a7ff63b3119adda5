# manual_rag/application/cache_optimizer.py

import asyncio
import logging
from typing import Optional

from manual_rag.infrastructure.embedding_cache import EmbeddingCache


logger = logging.getLogger(__name__)


DEFAULT_INTERVAL_SECONDS = 300.0
DEFAULT_MIN_ENTRIES = 100


class CacheOptimizer:
    """
    Runs cache.optimize() on a fixed interval, independent of request traffic.

    Owned by the process: the API lifespan and the CLI call start() and stop().
    Small caches (≤ min_entries) are left alone.
    """

    def __init__(
        self,
        cache: EmbeddingCache,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        min_entries: int = DEFAULT_MIN_ENTRIES,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        self._cache = cache
        self._interval = interval_seconds
        self._min_entries = min_entries
        self._task: Optional[asyncio.Task] = None
        self._runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def runs(self) -> int:
        return self._runs

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("[CacheOptimizer] Started (every %ss).", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[CacheOptimizer] Stopped.")

    def run_once(self) -> bool:
        """Optimize now if the cache is big enough. Returns whether it ran."""
        if self._cache.stats().total_entries <= self._min_entries:
            return False
        self._cache.optimize()
        self._runs += 1
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.run_once()
            except Exception:
                logger.exception("[CacheOptimizer] Optimization pass failed.")
