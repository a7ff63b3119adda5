# tests/test_embedding_cache.py

import json

import numpy as np
import pytest

from manual_rag.domain.errors import CacheImportError
from manual_rag.infrastructure.embedding_cache import EmbeddingCache


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def _vec(n: int = 10, value: float = 0.5) -> np.ndarray:
    return np.full(n, value)


# ── Capacity ─────────────────────────────────────────────────────────────────

def test_lru_eviction_keeps_recently_accessed_key():
    cache = EmbeddingCache(max_size=3)
    for key in ("A", "B", "C"):
        cache.set(key, _vec())

    cache.get("A")
    cache.set("D", _vec())

    assert set(cache.keys()) == {"A", "C", "D"}
    assert cache.stats().evictions == 1


def test_entry_count_never_exceeds_max_size():
    cache = EmbeddingCache(max_size=5)
    for i in range(50):
        cache.set(f"k{i}", _vec())
        assert len(cache) <= 5


def test_memory_never_exceeds_budget():
    cache = EmbeddingCache(max_memory_mb=0.001)
    for i in range(20):
        cache.set(f"k{i}", _vec(10, float(i)))
        assert cache.stats().memory_bytes <= cache.max_memory_bytes

    assert 0 < len(cache) < 20
    assert cache.stats().evictions > 0


def test_vector_larger_than_budget_is_not_cached():
    cache = EmbeddingCache(max_memory_mb=0.001, compression_threshold=100_000)
    cache.set("huge", _vec(1_000))
    assert not cache.has("huge")


def test_memory_pressure_evicts_least_used_first():
    clock = FakeClock()
    # Room for three 10-float entries (144 bytes each) but not four.
    cache = EmbeddingCache(max_memory_mb=500 / (1024 * 1024), clock=clock)
    cache.set("cold", _vec())
    cache.set("warm", _vec())
    cache.set("hot", _vec())
    for _ in range(3):
        cache.get("hot")
        cache.get("warm")
    cache.get("hot")

    clock.now += 600
    cache.set("new", _vec())

    assert not cache.has("cold")
    assert cache.has("hot")
    assert cache.has("new")


def test_overwriting_key_does_not_grow_cache():
    cache = EmbeddingCache(max_size=2)
    cache.set("a", _vec(value=1.0))
    cache.set("a", _vec(value=2.0))
    assert len(cache) == 1
    assert cache.get("a")[0] == 2.0


# ── Compression ──────────────────────────────────────────────────────────────

def test_long_vectors_are_compressed_within_tolerance():
    cache = EmbeddingCache(compression_threshold=100)
    original = np.linspace(-1, 1, 150) + 0.000012345
    cache.set("long", original)

    restored = cache.get("long")
    assert restored.dtype == np.float64
    assert np.allclose(restored, original, atol=1e-4)

    exported = json.loads(cache.export_cache())
    assert exported["entries"][0][1]["compressed"] is True


def test_short_vectors_are_stored_exactly():
    cache = EmbeddingCache(compression_threshold=100)
    original = np.array([0.123456789, -0.987654321])
    cache.set("short", original)
    assert np.array_equal(cache.get("short"), original)


def test_get_returns_a_copy():
    cache = EmbeddingCache()
    cache.set("a", _vec(value=1.0))
    cache.get("a")[0] = 99.0
    assert cache.get("a")[0] == 1.0


# ── Stats ────────────────────────────────────────────────────────────────────

def test_hit_rate_is_a_percentage():
    cache = EmbeddingCache()
    cache.set("a", _vec())
    cache.get("a")
    cache.get("missing")
    assert cache.stats().hit_rate == 50.0


def test_clear_resets_everything():
    cache = EmbeddingCache()
    cache.set("a", _vec())
    cache.get("a")
    cache.clear()
    stats = cache.stats()
    assert (stats.total_entries, stats.hit_rate, stats.evictions) == (0, 0.0, 0)
    assert cache.delete("a") is False


# ── Optimize ─────────────────────────────────────────────────────────────────

def test_optimize_on_empty_cache_is_a_no_op():
    cache = EmbeddingCache()
    assert cache.optimize() == 0
    assert len(cache) == 0


def test_optimize_compresses_imported_uncompressed_vectors():
    payload = {
        "version": "1.0",
        "entries": [
            ["big", {"embedding": [0.123456] * 150, "timestamp": 1.0, "accessCount": 1,
                     "lastAccessed": 1.0, "compressed": False}],
            ["small", {"embedding": [0.5] * 4, "timestamp": 1.0, "accessCount": 1,
                       "lastAccessed": 1.0, "compressed": False}],
        ],
    }
    cache = EmbeddingCache(compression_threshold=100)
    cache.import_cache(json.dumps(payload))

    assert cache.optimize() == 1
    assert cache.optimize() == 0


# ── Export / import ──────────────────────────────────────────────────────────

def test_export_then_import_restores_entries_and_order():
    source = EmbeddingCache()
    source.set("a", _vec(value=1.0))
    source.set("b", _vec(value=2.0))
    source.get("a")

    target = EmbeddingCache()
    assert target.import_cache(source.export_cache()) == 2
    assert target.keys() == source.keys()
    assert np.array_equal(target.get("b"), _vec(value=2.0))


def test_import_rejects_unknown_version_and_keeps_contents():
    cache = EmbeddingCache()
    cache.set("keep", _vec())

    with pytest.raises(CacheImportError, match="version"):
        cache.import_cache(json.dumps({"version": "2.0", "entries": []}))

    assert cache.has("keep")


@pytest.mark.parametrize("payload", [
    "not json at all",
    json.dumps([1, 2, 3]),
    json.dumps({"version": "1.0"}),
    json.dumps({"version": "1.0", "entries": [["k", {"embedding": [1.0]}]]}),
    json.dumps({"version": "1.0", "entries": [], "stats": {"hits": "lots"}}),
    json.dumps({"version": "1.0", "entries": [], "stats": [1, 2, 3]}),
])
def test_import_rejects_malformed_payloads(payload):
    cache = EmbeddingCache()
    with pytest.raises(CacheImportError):
        cache.import_cache(payload)


def test_bad_stats_leave_previous_contents_in_place():
    source = EmbeddingCache()
    source.set("new", _vec())
    exported = json.loads(source.export_cache())
    exported["stats"] = {"hits": "lots"}

    target = EmbeddingCache()
    target.set("old", _vec())

    with pytest.raises(CacheImportError, match="stats"):
        target.import_cache(json.dumps(exported))

    assert target.keys() == ["old"]


def test_import_trims_to_limits():
    source = EmbeddingCache(max_size=10)
    for i in range(10):
        source.set(f"k{i}", _vec())

    target = EmbeddingCache(max_size=4)
    target.import_cache(source.export_cache())
    assert len(target) == 4


def test_invalid_limits_rejected():
    with pytest.raises(ValueError):
        EmbeddingCache(max_size=0)
    with pytest.raises(ValueError):
        EmbeddingCache(max_memory_mb=0)
