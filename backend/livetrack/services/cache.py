"""
Local point cache - persists each session's point sequence and sync cursor.

One JSON entry per session under "{key_prefix}{session_id}" in a
KeyValueStore. Entries carry a schema version and a cached_at stamp; a
version mismatch or an entry older than the retention window is evicted
on read. Storage failures never reach the caller.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Callable, Iterable, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field, ValidationError

from livetrack.config import CacheConfig
from livetrack.models.tracking import CachedSession, LocationPoint, StoreTimestamp
from livetrack.services.kv_store import KeyValueStore, StorageError
from livetrack.utils.timestamps import now_millis, resolve_millis, sort_by_timestamp


logger = logging.getLogger(__name__)


# ============================================================================
# On-disk schema
# ============================================================================

class MillisTimestampRecord(BaseModel):
    kind: Literal["millis"] = "millis"
    value: Union[int, float]


class DatetimeTimestampRecord(BaseModel):
    kind: Literal["datetime"] = "datetime"
    value: datetime


class StoreTimestampRecord(BaseModel):
    kind: Literal["store"] = "store"
    seconds: int
    nanoseconds: int = 0


TimestampRecord = Annotated[
    Union[MillisTimestampRecord, DatetimeTimestampRecord, StoreTimestampRecord],
    Field(discriminator="kind"),
]


class PointRecord(BaseModel):
    """Serialized LocationPoint; the timestamp keeps its variant tag."""

    latitude: float
    longitude: float
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    timestamp: Optional[TimestampRecord] = None
    timestamp_ms: Optional[int] = None

    @classmethod
    def from_point(cls, point: LocationPoint) -> "PointRecord":
        ts = point.timestamp
        if isinstance(ts, datetime):
            record = DatetimeTimestampRecord(value=ts)
        elif isinstance(ts, StoreTimestamp):
            record = StoreTimestampRecord(seconds=ts.seconds, nanoseconds=ts.nanoseconds)
        elif isinstance(ts, (int, float)) and not isinstance(ts, bool):
            record = MillisTimestampRecord(value=ts)
        else:
            record = None
        return cls(
            latitude=point.latitude,
            longitude=point.longitude,
            speed=point.speed,
            accuracy=point.accuracy,
            timestamp=record,
            timestamp_ms=int(point.timestamp_ms) if point.timestamp_ms is not None else None,
        )

    def to_point(self) -> LocationPoint:
        ts = self.timestamp
        if isinstance(ts, StoreTimestampRecord):
            raw = StoreTimestamp(seconds=ts.seconds, nanoseconds=ts.nanoseconds)
        elif ts is not None:
            raw = ts.value
        else:
            raw = None
        return LocationPoint(
            latitude=self.latitude,
            longitude=self.longitude,
            speed=self.speed,
            accuracy=self.accuracy,
            timestamp=raw,
            timestamp_ms=self.timestamp_ms,
        )


class CachedSessionRecord(BaseModel):
    session_id: str
    points: list[PointRecord]
    last_timestamp: int
    cached_at: int
    version: str


# ============================================================================
# Merge
# ============================================================================

def merge_points(
    existing: Sequence[LocationPoint],
    incoming: Iterable[LocationPoint],
) -> list[LocationPoint]:
    """
    Append incoming points to existing ones.

    A point whose (resolved timestamp, lat, lon) is already present is
    dropped, so re-applying the same delta is a no-op. Unresolvable points
    (timestamp 0) are never deduplicated. The result is stably sorted by
    resolved timestamp.
    """
    seen = set()
    for p in existing:
        t = resolve_millis(p)
        if t:
            seen.add((t, p.latitude, p.longitude))

    merged = list(existing)
    for p in incoming:
        t = resolve_millis(p)
        if t:
            identity = (t, p.latitude, p.longitude)
            if identity in seen:
                continue
            seen.add(identity)
        merged.append(p)

    return sort_by_timestamp(merged)


# ============================================================================
# Cache
# ============================================================================

@dataclass(frozen=True)
class CacheStats:
    session_count: int
    total_point_count: int
    approximate_size_bytes: int

    @property
    def size_label(self) -> str:
        return f"{self.approximate_size_bytes / 1024:.2f} KB"


class LocalPointCache:
    """
    Versioned, age-limited cache of per-session point sequences.

    Mutations for a tracked session are expected to come from the sync
    engine's tracker for that session only.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], int] = now_millis,
    ):
        """
        Initialize the cache.

        Args:
            store: Backing key/value store
            config: Prefix, schema version and retention (defaults if None)
            clock: Wall-clock source in epoch milliseconds
        """
        self._store = store
        self._config = config or CacheConfig()
        self._clock = clock

    @property
    def config(self) -> CacheConfig:
        return self._config

    def save(self, session_id: str, points: Sequence[LocationPoint]) -> bool:
        """
        Replace the cached sequence for a session.

        Returns False if the store rejected the write; expired entries are
        then evicted and this save is dropped.
        """
        now = self._clock()
        last_timestamp = resolve_millis(points[-1]) if len(points) > 0 else 0

        try:
            record = CachedSessionRecord(
                session_id=session_id,
                points=[PointRecord.from_point(p) for p in points],
                last_timestamp=last_timestamp or now,
                cached_at=now,
                version=self._config.schema_version,
            )
        except ValidationError as e:
            logger.error(f"Cannot cache session {session_id}, invalid points: {e}")
            return False

        try:
            self._store.set_item(self._key(session_id), record.model_dump_json())
        except StorageError as e:
            logger.error(f"Failed to cache session {session_id}: {e}")
            self.clear_expired()
            return False

        logger.info(f"Cached {len(points)} points for session {session_id}")
        return True

    def load(self, session_id: str) -> Optional[CachedSession]:
        """
        Load the cached sequence for a session.

        Returns None when there is no entry, when the entry is corrupt, or
        when it is stale (version mismatch or past retention). Stale entries
        are evicted; corrupt ones are left alone.
        """
        key = self._key(session_id)
        try:
            raw = self._store.get_item(key)
        except StorageError as e:
            logger.error(f"Failed to read cache for session {session_id}: {e}")
            return None

        if raw is None:
            return None

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Corrupt cache entry for session {session_id}: {e}")
            return None

        if not isinstance(data, dict) or "version" not in data:
            logger.warning(f"Unrecognized cache entry for session {session_id}")
            return None

        if data["version"] != self._config.schema_version:
            logger.info(
                f"Cache version mismatch for session {session_id} "
                f"({data['version']!r} != {self._config.schema_version!r}), evicting"
            )
            self.clear(session_id)
            return None

        try:
            record = CachedSessionRecord.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Corrupt cache entry for session {session_id}: {e}")
            return None

        age = self._clock() - record.cached_at
        if age > self._config.retention_ms:
            logger.info(f"Cache expired for session {session_id} (age {age / 1000:.0f}s), evicting")
            self.clear(session_id)
            return None

        logger.info(f"Loaded {len(record.points)} cached points for session {session_id}")
        return CachedSession(
            session_id=record.session_id,
            points=[p.to_point() for p in record.points],
            last_timestamp=record.last_timestamp,
            cached_at=record.cached_at,
            version=record.version,
        )

    def append(self, session_id: str, new_points: Sequence[LocationPoint]) -> bool:
        """Merge new points after the cached ones; same as save() on a miss."""
        cached = self.load(session_id)
        if cached is None:
            return self.save(session_id, new_points)
        return self.save(session_id, merge_points(cached.points, new_points))

    def clear(self, session_id: str) -> bool:
        """Remove one session's entry. Returns True if an entry was there."""
        key = self._key(session_id)
        try:
            existed = self._store.get_item(key) is not None
            self._store.remove_item(key)
        except StorageError as e:
            logger.error(f"Failed to clear cache for session {session_id}: {e}")
            return False
        logger.debug(f"Cleared cache for session {session_id}")
        return existed

    def clear_all(self) -> int:
        """Remove every entry under the key prefix."""
        removed = 0
        try:
            for key in self._own_keys():
                self._store.remove_item(key)
                removed += 1
        except StorageError as e:
            logger.error(f"Failed to clear caches: {e}")
        logger.info(f"Cleared {removed} cached sessions")
        return removed

    def clear_expired(self) -> int:
        """
        Remove entries that can no longer be served.

        That is entries past retention, entries with another schema version,
        and entries that do not parse at all.
        """
        now = self._clock()
        removed = 0
        try:
            for key in self._own_keys():
                raw = self._store.get_item(key)
                if raw is None:
                    continue
                if self._is_expired(raw, now):
                    self._store.remove_item(key)
                    removed += 1
        except StorageError as e:
            logger.error(f"Failed to clear expired caches: {e}")

        if removed > 0:
            logger.info(f"Cleared {removed} expired cache entries")
        return removed

    def stats(self) -> CacheStats:
        """Diagnostic scan over all entries under the key prefix."""
        session_count = 0
        point_count = 0
        size = 0
        try:
            for key in self._own_keys():
                raw = self._store.get_item(key)
                if raw is None:
                    continue
                try:
                    data = json.loads(raw)
                    points = data["points"]
                except (ValueError, KeyError, TypeError):
                    continue
                if not isinstance(points, list):
                    continue
                session_count += 1
                point_count += len(points)
                size += len(raw.encode("utf-8"))
        except StorageError as e:
            logger.error(f"Failed to scan cache: {e}")

        return CacheStats(
            session_count=session_count,
            total_point_count=point_count,
            approximate_size_bytes=size,
        )

    def _is_expired(self, raw: str, now: int) -> bool:
        try:
            data = json.loads(raw)
            version = data["version"]
            cached_at = int(data["cached_at"])
        except (ValueError, KeyError, TypeError):
            return True
        if version != self._config.schema_version:
            return True
        return now - cached_at > self._config.retention_ms

    def _own_keys(self) -> list[str]:
        prefix = self._config.key_prefix
        return [k for k in self._store.keys() if k.startswith(prefix)]

    def _key(self, session_id: str) -> str:
        return f"{self._config.key_prefix}{session_id}"
