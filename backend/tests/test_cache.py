"""
Tests for the local point cache and its key/value stores.
"""

import json
from datetime import datetime, timezone

import pytest

from livetrack.config import CacheConfig
from livetrack.models.tracking import LocationPoint, StoreTimestamp
from livetrack.services.cache import LocalPointCache, merge_points
from livetrack.services.kv_store import (
    DirectoryKeyValueStore,
    MemoryKeyValueStore,
    QuotaExceededError,
    StorageError,
)
from livetrack.utils.timestamps import resolve_millis


T0 = 1_700_000_000_000
HOUR_MS = 3600 * 1000


class FakeClock:
    """Settable epoch-ms clock."""

    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def _points(n: int, start_ms: int = T0, step_ms: int = 1000) -> list[LocationPoint]:
    return [
        LocationPoint(
            latitude=43.5 + i * 1e-4,
            longitude=16.4 + i * 1e-4,
            speed=1.2,
            accuracy=5.0,
            timestamp=StoreTimestamp.from_millis(start_ms + i * step_ms),
            timestamp_ms=start_ms + i * step_ms,
        )
        for i in range(n)
    ]


@pytest.fixture
def clock():
    return FakeClock(T0 + 10 * HOUR_MS)


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def cache(store, clock):
    return LocalPointCache(store, CacheConfig(), clock=clock)


class TestSaveAndLoad:
    """Round-trip and bookkeeping."""

    def test_round_trip(self, cache):
        points = _points(5)

        assert cache.save("s1", points) is True
        loaded = cache.load("s1")

        assert loaded is not None
        assert loaded.points == points
        assert loaded.last_timestamp == resolve_millis(points[-1])
        assert loaded.version == "v1"

    def test_round_trip_keeps_timestamp_variants(self, cache):
        points = [
            LocationPoint(latitude=1.0, longitude=2.0, timestamp=StoreTimestamp(1_700_000_000, 5_000_000)),
            LocationPoint(latitude=1.0, longitude=2.0, timestamp=datetime(2023, 11, 14, 22, 13, 21, tzinfo=timezone.utc)),
            LocationPoint(latitude=1.0, longitude=2.0, timestamp=T0 + 2000),
            LocationPoint(latitude=1.0, longitude=2.0, speed=None, accuracy=None),
        ]

        cache.save("s1", points)
        loaded = cache.load("s1")

        assert loaded.points == points
        assert [resolve_millis(p) for p in loaded.points] == [T0 + 5, T0 + 1000, T0 + 2000, 0]

    def test_key_uses_prefix(self, cache, store):
        cache.save("abc", _points(1))
        assert store.keys() == ["livetrack_cache_abc"]

    def test_empty_sequence_uses_wall_clock(self, cache, clock):
        cache.save("s1", [])
        loaded = cache.load("s1")

        assert loaded.points == []
        assert loaded.last_timestamp == clock.now

    def test_unresolvable_last_point_uses_wall_clock(self, cache, clock):
        cache.save("s1", [LocationPoint(latitude=1.0, longitude=2.0)])
        assert cache.load("s1").last_timestamp == clock.now

    def test_missing_entry(self, cache):
        assert cache.load("nope") is None


class TestEviction:
    """Expiry, version mismatch and corruption."""

    def test_entry_within_retention_is_served(self, cache, clock):
        cache.save("s1", _points(2))
        clock.advance(24 * HOUR_MS)

        assert cache.load("s1") is not None

    def test_expired_entry_is_evicted(self, cache, store, clock):
        cache.save("s1", _points(2))
        clock.advance(24 * HOUR_MS + 1)

        assert cache.load("s1") is None
        assert store.get_item("livetrack_cache_s1") is None

    def test_short_retention_from_config(self, store, clock):
        cache = LocalPointCache(store, CacheConfig(retention_s=60), clock=clock)
        cache.save("s1", _points(2))
        clock.advance(61_000)

        assert cache.load("s1") is None

    def test_version_mismatch_is_evicted(self, store, clock):
        LocalPointCache(store, CacheConfig(schema_version="v1"), clock=clock).save("s1", _points(2))
        cache_v2 = LocalPointCache(store, CacheConfig(schema_version="v2"), clock=clock)

        assert cache_v2.load("s1") is None
        assert store.get_item("livetrack_cache_s1") is None

    def test_corrupt_entry_is_absent_but_kept(self, cache, store):
        store.set_item("livetrack_cache_s1", "{not json")

        assert cache.load("s1") is None
        assert store.get_item("livetrack_cache_s1") == "{not json"

    def test_unrecognized_shape_is_absent_but_kept(self, cache, store):
        store.set_item("livetrack_cache_s1", json.dumps({"points": "nope"}))

        assert cache.load("s1") is None
        assert store.get_item("livetrack_cache_s1") is not None

    def test_invalid_fields_are_absent(self, cache, store):
        store.set_item("livetrack_cache_s1", json.dumps({"version": "v1", "points": [{"latitude": "x"}]}))
        assert cache.load("s1") is None


class TestAppend:
    """Tests for append()."""

    def test_append_on_absent_cache_equals_save(self, clock):
        points = _points(3)
        store_a = MemoryKeyValueStore()
        store_b = MemoryKeyValueStore()

        LocalPointCache(store_a, clock=clock).append("s1", points)
        LocalPointCache(store_b, clock=clock).save("s1", points)

        assert store_a.get_item("livetrack_cache_s1") == store_b.get_item("livetrack_cache_s1")

    def test_append_concatenates(self, cache):
        points = _points(5)
        cache.save("s1", points[:3])
        cache.append("s1", points[3:])

        loaded = cache.load("s1")
        assert loaded.points == points
        assert loaded.last_timestamp == resolve_millis(points[-1])

    def test_append_same_delta_twice_is_idempotent(self, cache):
        points = _points(5)
        cache.save("s1", points[:3])
        cache.append("s1", points[3:])
        cache.append("s1", points[3:])

        assert len(cache.load("s1").points) == 5


class TestMergePoints:

    def test_keeps_order_and_drops_duplicates(self):
        points = _points(4)
        merged = merge_points(points[:3], points[2:])
        assert merged == points

    def test_sorts_out_of_order_points(self):
        points = _points(4)
        merged = merge_points([points[0], points[2]], [points[1], points[3]])
        assert merged == points

    def test_unresolvable_points_are_never_deduplicated(self):
        p = LocationPoint(latitude=1.0, longitude=2.0)
        assert len(merge_points([p], [p])) == 2

    def test_same_time_different_position_is_kept(self):
        a = LocationPoint(latitude=1.0, longitude=2.0, timestamp_ms=T0)
        b = LocationPoint(latitude=1.5, longitude=2.0, timestamp_ms=T0)
        assert merge_points([a], [b]) == [a, b]


class TestClearing:

    def test_clear_single(self, cache):
        cache.save("s1", _points(1))
        cache.save("s2", _points(1))
        cache.clear("s1")

        assert cache.load("s1") is None
        assert cache.load("s2") is not None

    def test_clear_reports_whether_entry_existed(self, cache, store, clock):
        cache.save("s1", _points(1))
        store.set_item("livetrack_cache_broken", "{")
        clock.advance(25 * HOUR_MS)

        assert cache.clear("s1") is True
        assert cache.clear("broken") is True
        assert cache.clear("s1") is False
        assert store.keys() == []

    def test_clear_all_keeps_foreign_keys(self, cache, store):
        store.set_item("other_app_key", "value")
        cache.save("s1", _points(1))
        cache.save("s2", _points(1))

        assert cache.clear_all() == 2
        assert store.keys() == ["other_app_key"]

    def test_clear_expired(self, cache, store, clock):
        cache.save("old", _points(1))
        clock.advance(20 * HOUR_MS)
        cache.save("fresh", _points(1))
        store.set_item("livetrack_cache_broken", "{")
        clock.advance(5 * HOUR_MS)

        assert cache.clear_expired() == 2
        assert sorted(store.keys()) == ["livetrack_cache_fresh"]


class TestQuota:
    """Persistence failures are absorbed."""

    def test_quota_failure_does_not_raise_and_evicts_expired(self, clock):
        store = MemoryKeyValueStore(max_bytes=2000)
        cache = LocalPointCache(store, clock=clock)
        assert cache.save("old", _points(1)) is True

        clock.advance(25 * HOUR_MS)
        assert cache.save("big", _points(50)) is False

        assert store.get_item("livetrack_cache_big") is None
        assert store.get_item("livetrack_cache_old") is None

    def test_failed_save_leaves_previous_entry(self, clock):
        store = MemoryKeyValueStore(max_bytes=2000)
        cache = LocalPointCache(store, clock=clock)
        cache.save("s1", _points(1))

        assert cache.append("s1", _points(50, start_ms=T0 + 10_000)) is False
        assert len(cache.load("s1").points) == 1


class TestStats:

    def test_stats(self, cache, store):
        store.set_item("unrelated", "x" * 100)
        cache.save("s1", _points(3))
        cache.save("s2", _points(4))

        stats = cache.stats()

        assert stats.session_count == 2
        assert stats.total_point_count == 7
        expected_size = sum(
            len(store.get_item(k).encode("utf-8"))
            for k in ("livetrack_cache_s1", "livetrack_cache_s2")
        )
        assert stats.approximate_size_bytes == expected_size
        assert stats.size_label.endswith(" KB")

    def test_stats_skip_corrupt_entries(self, cache, store):
        store.set_item("livetrack_cache_bad", "{")
        assert cache.stats().session_count == 0

    def test_stats_skip_entries_without_point_list(self, cache, store):
        store.set_item("livetrack_cache_bad", '{"points": null, "version": "v1"}')
        store.set_item("livetrack_cache_worse", '{"points": 5, "version": "v1"}')
        cache.save("s1", _points(2))

        stats = cache.stats()

        assert stats.session_count == 1
        assert stats.total_point_count == 2


class TestMemoryKeyValueStore:

    def test_quota(self):
        store = MemoryKeyValueStore(max_bytes=10)
        store.set_item("k", "12345")
        with pytest.raises(QuotaExceededError):
            store.set_item("k2", "123456789")

    def test_overwrite_counts_replacement_only(self):
        store = MemoryKeyValueStore(max_bytes=10)
        store.set_item("k", "123456789")
        store.set_item("k", "987654321")
        assert store.get_item("k") == "987654321"

    def test_quota_error_is_storage_error(self):
        assert issubclass(QuotaExceededError, StorageError)


class TestDirectoryKeyValueStore:

    def test_round_trip(self, tmp_path):
        store = DirectoryKeyValueStore(tmp_path / "cache")

        store.set_item("livetrack_cache_a/b", "payload")

        assert store.get_item("livetrack_cache_a/b") == "payload"
        assert store.keys() == ["livetrack_cache_a/b"]

        store.remove_item("livetrack_cache_a/b")
        assert store.get_item("livetrack_cache_a/b") is None
        assert store.keys() == []

    def test_remove_missing_is_noop(self, tmp_path):
        DirectoryKeyValueStore(tmp_path).remove_item("missing")

    def test_cache_survives_new_instance(self, tmp_path, clock):
        folder = tmp_path / "cache"
        LocalPointCache(DirectoryKeyValueStore(folder), clock=clock).save("s1", _points(3))

        loaded = LocalPointCache(DirectoryKeyValueStore(folder), clock=clock).load("s1")

        assert loaded is not None
        assert len(loaded.points) == 3
