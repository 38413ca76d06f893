"""
Timestamp resolution.

Points reach us through different code paths (client clock at write time,
store-native type at read time), so the raw timestamp can be any of the
RawTimestamp variants. Everything downstream works on epoch milliseconds.
"""

import math
import time
from datetime import datetime, timedelta, timezone
from typing import Iterable

from livetrack.models.tracking import LocationPoint, RawTimestamp, StoreTimestamp

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def millis_of(value: RawTimestamp) -> int:
    """
    Convert a raw timestamp to epoch milliseconds.

    Naive datetimes are taken as UTC. Unknown or missing values give 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (value - EPOCH) // timedelta(milliseconds=1)
    if isinstance(value, StoreTimestamp):
        return value.to_millis()
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    return 0


def resolve_millis(point: LocationPoint) -> int:
    """
    Resolve a point's timestamp to epoch milliseconds.

    A non-zero precomputed timestamp_ms wins; otherwise the raw timestamp is
    converted. 0 means unresolvable and sorts as the oldest point.
    """
    if point.timestamp_ms:
        return int(point.timestamp_ms)
    return millis_of(point.timestamp)


def resolve_cursor(point: LocationPoint) -> int:
    """Resolved timestamp for cursor use: wall clock when unresolvable."""
    return resolve_millis(point) or now_millis()


def sort_by_timestamp(points: Iterable[LocationPoint]) -> list[LocationPoint]:
    """Stable ascending sort by resolved timestamp."""
    return sorted(points, key=resolve_millis)
