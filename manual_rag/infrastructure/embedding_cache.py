# manual_rag/infrastructure/embedding_cache.py

import json
import logging
import math
import threading
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from manual_rag.domain.errors import CacheImportError
from manual_rag.domain.models import CacheEntry, CacheStats


logger = logging.getLogger(__name__)


# ── Constants ─────────────────────────────────────────────────────────────────

EXPORT_VERSION = "1.0"

# Timestamps, access counters and dict slot per entry.
ENTRY_OVERHEAD_BYTES = 64
COMPRESSION_DECIMALS = 4

# Memory-pressure pass removes this share of entries (at least one).
PRESSURE_EVICTION_RATIO = 0.2
ACCESS_WEIGHT = 0.7
RECENCY_WEIGHT = 0.3
# optimize() trims entries while usage is above this share of the budget.
OPTIMIZE_HIGH_WATER = 0.9
# Age in seconds at which the recency term has decayed to one half.
RECENCY_HALF_LIFE = 60.0

VectorLike = Union[np.ndarray, Sequence[float]]


class EmbeddingCache:
    """
    Bounded key → vector store with two-tier eviction:

    ┌──────────────────────────────────────────────────────────────┐
    │  Entry cap hit   →  evict the single least recently used key │
    │  Memory cap hit  →  evict lowest-scoring 20% in one pass     │
    └──────────────────────────────────────────────────────────────┘

    Score = access_count * 0.7 + recency * 0.3, lower is evicted first.
    recency is 1.0 for an entry touched just now and decays with age.

    Vectors longer than `compression_threshold` are rounded and stored as
    float32; `get` always hands back a float64 copy.

    Every public method runs under one re-entrant lock so concurrent
    callers never observe a half-evicted map.
    """

    def __init__(
        self,
        max_size: int = 1000,
        max_memory_mb: float = 50,
        compression_threshold: int = 100,
        clock=time.time,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive.")
        if max_memory_mb <= 0:
            raise ValueError("max_memory_mb must be positive.")

        self._max_size = max_size
        self._max_memory_bytes = int(max_memory_mb * 1024 * 1024)
        self._compression_threshold = compression_threshold
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def max_memory_bytes(self) -> int:
        return self._max_memory_bytes

    # ─── Public API ──────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            entry.access_count += 1
            entry.last_accessed = self._clock()
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.vector.astype(np.float64)

    def set(self, key: str, vector: VectorLike) -> None:
        array = np.asarray(vector, dtype=np.float64)
        should_compress = array.size > self._compression_threshold
        stored = self._compress(array) if should_compress else array.copy()

        now = self._clock()
        entry = CacheEntry(
            vector=stored,
            timestamp=now,
            access_count=1,
            last_accessed=now,
            compressed=should_compress,
        )
        entry_bytes = entry.memory_bytes + ENTRY_OVERHEAD_BYTES

        if entry_bytes > self._max_memory_bytes:
            logger.warning(
                "[EmbeddingCache] Vector for '%s' (%d bytes) exceeds the whole memory budget; not cached.",
                key, entry_bytes,
            )
            return

        with self._lock:
            if key in self._entries:
                del self._entries[key]
            self._ensure_capacity(entry_bytes)
            self._entries[key] = entry

        logger.debug("[EmbeddingCache] Cached embedding: %s (compressed: %s)", key, should_compress)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
        logger.info("[EmbeddingCache] Cache cleared.")

    def keys(self) -> List[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests) * 100 if total_requests else 0.0
            return CacheStats(
                total_entries=len(self._entries),
                memory_bytes=self._memory_usage(),
                hit_rate=round(hit_rate, 2),
                evictions=self._evictions,
            )

    def optimize(self) -> int:
        """
        Compress any large uncompressed vectors, then run memory-pressure passes
        while usage sits above the high-water mark.
        Returns the number of vectors compressed. Safe on an empty cache.
        """
        with self._lock:
            snapshot = list(self._entries.items())
            compressed = 0
            for _, entry in snapshot:
                if not entry.compressed and entry.vector.size > self._compression_threshold:
                    entry.vector = self._compress(entry.vector)
                    entry.compressed = True
                    compressed += 1

            high_water = self._max_memory_bytes * OPTIMIZE_HIGH_WATER
            while self._entries and self._memory_usage() > high_water:
                self._evict_by_memory_pressure()

        logger.info("[EmbeddingCache] Optimization complete: %d embeddings compressed.", compressed)
        return compressed

    # ─── Export / Import ─────────────────────────────────────────────────────

    def export_cache(self) -> str:
        with self._lock:
            entries = [
                [key, {
                    "embedding": [float(v) for v in entry.vector],
                    "timestamp": entry.timestamp,
                    "accessCount": entry.access_count,
                    "lastAccessed": entry.last_accessed,
                    "compressed": entry.compressed,
                }]
                for key, entry in self._entries.items()
            ]
            payload = {
                "version": EXPORT_VERSION,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "entries": entries,
                "stats": {
                    "hits": self._hits,
                    "misses": self._misses,
                    "evictions": self._evictions,
                },
            }
        return json.dumps(payload, indent=2)

    def import_cache(self, exported: str) -> int:
        """
        Replace the cache contents with previously exported data.

        The new contents are fully parsed before anything is swapped in, so a
        malformed payload leaves the cache untouched.
        """
        try:
            data = json.loads(exported)
        except (TypeError, json.JSONDecodeError) as error:
            raise CacheImportError(f"Cache export is not valid JSON: {error}") from error

        if not isinstance(data, dict):
            raise CacheImportError("Cache export must be a JSON object.")
        if data.get("version") != EXPORT_VERSION:
            raise CacheImportError(f"Unsupported cache version: {data.get('version')!r}")

        entries = self._parse_entries(data.get("entries"))
        hits, misses, evictions = self._parse_stats(data.get("stats"))

        with self._lock:
            self._entries = entries
            self._hits = hits
            self._misses = misses
            self._evictions = evictions
            self._trim_to_limits()
            imported = len(self._entries)

        logger.info("[EmbeddingCache] Cache imported: %d entries.", imported)
        return imported

    # ─── Private: Eviction ───────────────────────────────────────────────────

    def _ensure_capacity(self, incoming_bytes: int) -> None:
        while len(self._entries) >= self._max_size:
            self._evict_least_recently_used()

        while self._entries and self._memory_usage() + incoming_bytes > self._max_memory_bytes:
            self._evict_by_memory_pressure()

    def _evict_least_recently_used(self) -> None:
        if not self._entries:
            return
        key, _ = self._entries.popitem(last=False)
        self._evictions += 1
        logger.debug("[EmbeddingCache] Evicted LRU entry: %s", key)

    def _evict_by_memory_pressure(self) -> None:
        if not self._entries:
            return

        now = self._clock()
        ranked = sorted(
            self._entries.items(),
            key=lambda item: self._priority(item[1], now),
        )
        target_size = math.floor(len(ranked) * (1 - PRESSURE_EVICTION_RATIO))
        to_remove = max(1, len(ranked) - target_size)

        for key, _ in ranked[:to_remove]:
            del self._entries[key]
            self._evictions += 1

        logger.info("[EmbeddingCache] Memory pressure eviction: %d entries removed.", to_remove)

    def _trim_to_limits(self) -> None:
        ordered = sorted(self._entries.items(), key=lambda item: item[1].last_accessed)
        self._entries = OrderedDict(ordered)
        while len(self._entries) > self._max_size:
            self._evict_least_recently_used()
        while self._entries and self._memory_usage() > self._max_memory_bytes:
            self._evict_by_memory_pressure()

    @staticmethod
    def _priority(entry: CacheEntry, now: float) -> float:
        age = max(0.0, now - entry.last_accessed)
        recency = 1.0 / (1.0 + age / RECENCY_HALF_LIFE)
        return entry.access_count * ACCESS_WEIGHT + recency * RECENCY_WEIGHT

    # ─── Private: Helpers ────────────────────────────────────────────────────

    def _memory_usage(self) -> int:
        return sum(
            entry.memory_bytes + ENTRY_OVERHEAD_BYTES
            for entry in self._entries.values()
        )

    @staticmethod
    def _compress(vector: np.ndarray) -> np.ndarray:
        return np.round(vector, COMPRESSION_DECIMALS).astype(np.float32)

    @staticmethod
    def _parse_stats(raw_stats) -> Tuple[int, int, int]:
        if raw_stats is None:
            return 0, 0, 0
        try:
            return (
                int(raw_stats.get("hits", 0)),
                int(raw_stats.get("misses", 0)),
                int(raw_stats.get("evictions", 0)),
            )
        except (TypeError, ValueError, AttributeError) as error:
            raise CacheImportError(f"Malformed cache stats: {error}") from error

    @staticmethod
    def _parse_entries(raw_entries) -> "OrderedDict[str, CacheEntry]":
        if not isinstance(raw_entries, list):
            raise CacheImportError("Cache export has no entry list.")

        parsed: "OrderedDict[str, CacheEntry]" = OrderedDict()
        for position, item in enumerate(raw_entries):
            try:
                key, raw = item
                compressed = bool(raw.get("compressed", False))
                dtype = np.float32 if compressed else np.float64
                vector = np.asarray(raw["embedding"], dtype=dtype)
                if vector.ndim != 1:
                    raise ValueError("embedding must be one-dimensional")
                parsed[str(key)] = CacheEntry(
                    vector=vector,
                    timestamp=float(raw["timestamp"]),
                    access_count=int(raw["accessCount"]),
                    last_accessed=float(raw["lastAccessed"]),
                    compressed=compressed,
                )
            except (TypeError, ValueError, KeyError, AttributeError) as error:
                raise CacheImportError(f"Malformed cache entry at position {position}: {error}") from error
        return parsed
