"""
Speed classification and colored trace segments.

Segment speed is derived from position and time deltas, not from the
instrument-reported speed field.
"""

from typing import Sequence

from livetrack.models.tracking import LocationPoint, SpeedClass, SpeedSegment
from livetrack.utils.geo import distance
from livetrack.utils.timestamps import resolve_millis

MS_TO_KMH = 3.6

# Ascending exclusive upper bounds (km/h); HIGHWAY is unbounded
SPEED_THRESHOLDS_KMH = (
    (5.0, SpeedClass.STATIONARY),
    (20.0, SpeedClass.WALKING),
    (50.0, SpeedClass.SLOW_DRIVE),
    (80.0, SpeedClass.FAST_DRIVE),
)

SPEED_CLASS_LABELS = {
    SpeedClass.STATIONARY: ("0-5 km/h (stationary)", "0-5"),
    SpeedClass.WALKING: ("5-20 km/h (walking)", "5-20"),
    SpeedClass.SLOW_DRIVE: ("20-50 km/h (slow drive)", "20-50"),
    SpeedClass.FAST_DRIVE: ("50-80 km/h (fast drive)", "50-80"),
    SpeedClass.HIGHWAY: ("80+ km/h (highway)", "80+"),
}


def classify(speed_kmh: float) -> SpeedClass:
    """Bucket a speed (km/h) into its color class. Negative counts as stationary."""
    for upper, speed_class in SPEED_THRESHOLDS_KMH:
        if speed_kmh < upper:
            return speed_class
    return SpeedClass.HIGHWAY


def segment(points: Sequence[LocationPoint]) -> list[SpeedSegment]:
    """
    Convert an ordered point sequence into colored segments.

    Pairs with a non-positive time delta (duplicate or out-of-order
    timestamps) are skipped. The input is not modified.
    """
    if len(points) < 2:
        return []

    segments = []
    for p1, p2 in zip(points, points[1:]):
        dt = (resolve_millis(p2) - resolve_millis(p1)) / 1000
        if dt <= 0:
            continue

        d = distance(p1.latitude, p1.longitude, p2.latitude, p2.longitude)
        speed_kmh = d / dt * MS_TO_KMH

        segments.append(SpeedSegment(
            start=(p1.latitude, p1.longitude),
            end=(p2.latitude, p2.longitude),
            speed_class=classify(speed_kmh),
            speed_kmh=speed_kmh,
        ))

    return segments


def speed_legend() -> list[dict]:
    """Legend entries in ascending speed order."""
    return [
        {
            "speed_class": speed_class.value,
            "color": speed_class.color,
            "label": label,
            "range": speed_range,
        }
        for speed_class, (label, speed_range) in SPEED_CLASS_LABELS.items()
    ]
