"""
Tabular export of a session's points.
"""

from typing import Sequence

import numpy as np
import pandas as pd

from livetrack.models.tracking import LocationPoint
from livetrack.services.speed import MS_TO_KMH
from livetrack.utils.geo import pairwise_distances
from livetrack.utils.timestamps import resolve_millis


EXPORT_COLUMNS = [
    "timestamp_ms",
    "time_utc",
    "latitude",
    "longitude",
    "speed",
    "speed_kmh",
    "accuracy",
    "distance_m",
]


def points_frame(points: Sequence[LocationPoint]) -> pd.DataFrame:
    """
    Build a DataFrame with one row per point.

    distance_m is the cumulative great-circle distance from the first point.
    Unresolvable timestamps give timestamp_ms 0 and an empty time_utc.
    """
    if len(points) == 0:
        return pd.DataFrame(columns=EXPORT_COLUMNS)

    lat = np.array([p.latitude for p in points], dtype=np.float64)
    lon = np.array([p.longitude for p in points], dtype=np.float64)
    millis = np.array([resolve_millis(p) for p in points], dtype=np.int64)
    speed = np.array(
        [p.speed if p.speed is not None else np.nan for p in points], dtype=np.float64
    )
    accuracy = np.array(
        [p.accuracy if p.accuracy is not None else np.nan for p in points], dtype=np.float64
    )

    cumulative = np.concatenate([[0.0], np.cumsum(pairwise_distances(lat, lon))])

    time_utc = pd.to_datetime(millis, unit="ms", utc=True)
    time_utc = pd.Series(time_utc).where(millis > 0)

    return pd.DataFrame({
        "timestamp_ms": millis,
        "time_utc": time_utc,
        "latitude": lat,
        "longitude": lon,
        "speed": speed,
        "speed_kmh": speed * MS_TO_KMH,
        "accuracy": accuracy,
        "distance_m": cumulative,
    }, columns=EXPORT_COLUMNS)


def session_csv(points: Sequence[LocationPoint]) -> str:
    """Render a session's points as CSV text."""
    return points_frame(points).to_csv(index=False, float_format="%.7f")
