"""
Session statistics and human-readable formatting.
"""

import math
from datetime import datetime, timezone
from typing import Optional, Sequence

from livetrack.models.tracking import LocationPoint, SessionStats
from livetrack.services.speed import MS_TO_KMH
from livetrack.utils.geo import distance


def aggregate(
    points: Sequence[LocationPoint],
    start_time: datetime,
    end_time: Optional[datetime] = None,
) -> SessionStats:
    """
    Compute statistics over a full point sequence.

    Distance sums every consecutive pair regardless of timing. Average and
    max speed use each point's self-reported speed (missing counts as 0).
    Duration runs from start_time to end_time, or to now for an open
    session, and is not clamped. Naive times are taken as UTC.

    Args:
        points: Ordered location samples
        start_time: Session start
        end_time: Session end (None while the session is active)

    Returns:
        SessionStats
    """
    if len(points) == 0:
        return SessionStats.empty()

    total_distance = 0.0
    for p1, p2 in zip(points, points[1:]):
        total_distance += distance(p1.latitude, p1.longitude, p2.latitude, p2.longitude)

    speeds = [p.speed or 0.0 for p in points]
    average_speed = sum(speeds) / len(speeds)
    max_speed = max(speeds)

    end = end_time or datetime.now(tz=timezone.utc)
    duration = math.floor((_as_utc(end) - _as_utc(start_time)).total_seconds())

    return SessionStats(
        total_distance=total_distance,
        total_distance_km=total_distance / 1000,
        average_speed=average_speed,
        average_speed_kmh=average_speed * MS_TO_KMH,
        max_speed=max_speed,
        max_speed_kmh=max_speed * MS_TO_KMH,
        duration_s=duration,
        duration_formatted=format_duration_label(duration),
    )


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_duration_label(seconds: int) -> str:
    """Hours and minutes only: "2h 15m" or "15m"."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_duration(seconds: int) -> str:
    """Like format_duration_label, but short durations keep their seconds."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m"
    elif minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{math.floor(meters + 0.5)} m"
    return f"{meters / 1000:.2f} km"


def format_speed(ms: float) -> str:
    return f"{ms * MS_TO_KMH:.1f} km/h"
