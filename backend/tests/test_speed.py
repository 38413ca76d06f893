"""
Tests for speed classification and trace segmentation.
"""

import pytest
from numpy.testing import assert_allclose

from livetrack.models.tracking import LocationPoint, SpeedClass
from livetrack.services.speed import classify, segment, speed_legend
from livetrack.utils.geo import distance


T0 = 1_700_000_000_000

# ~1000 m of latitude
DLAT_1KM = 1000 / 6371000 * 180 / 3.141592653589793


def _point(lat: float, lon: float, t_ms: int) -> LocationPoint:
    return LocationPoint(latitude=lat, longitude=lon, timestamp_ms=t_ms)


class TestClassify:
    """Threshold boundaries are inclusive-low, exclusive-high."""

    @pytest.mark.parametrize("speed_kmh, expected", [
        (-3.0, SpeedClass.STATIONARY),
        (0.0, SpeedClass.STATIONARY),
        (4.999, SpeedClass.STATIONARY),
        (5.0, SpeedClass.WALKING),
        (19.999, SpeedClass.WALKING),
        (20.0, SpeedClass.SLOW_DRIVE),
        (49.999, SpeedClass.SLOW_DRIVE),
        (50.0, SpeedClass.FAST_DRIVE),
        (79.999, SpeedClass.FAST_DRIVE),
        (80.0, SpeedClass.HIGHWAY),
        (250.0, SpeedClass.HIGHWAY),
    ])
    def test_boundaries(self, speed_kmh, expected):
        assert classify(speed_kmh) is expected

    def test_colors(self):
        assert classify(1.0).color == "#10B981"
        assert classify(100.0).color == "#EF4444"


class TestSegment:
    """Tests for segment()."""

    def test_short_input_is_empty(self):
        assert segment([]) == []
        assert segment([_point(43.5, 16.4, T0)]) == []

    def test_zero_time_delta_is_skipped(self):
        a = _point(43.5, 16.4, T0)
        b = _point(43.51, 16.4, T0)
        assert segment([a, b]) == []

    def test_reversed_time_is_skipped(self):
        a = _point(43.5, 16.4, T0 + 1000)
        b = _point(43.51, 16.4, T0)
        assert segment([a, b]) == []

    def test_speed_from_distance_and_time(self):
        """1 km in 100 s is 36 km/h."""
        a = _point(0.0, 0.0, T0)
        b = _point(DLAT_1KM, 0.0, T0 + 100_000)

        segments = segment([a, b])

        assert len(segments) == 1
        seg = segments[0]
        assert seg.start == (0.0, 0.0)
        assert seg.end == (DLAT_1KM, 0.0)
        assert_allclose(seg.speed_kmh, 36.0, rtol=1e-9)
        assert seg.speed_class is SpeedClass.SLOW_DRIVE
        assert seg.positions == [(0.0, 0.0), (DLAT_1KM, 0.0)]

    def test_skipped_pair_does_not_break_following_pairs(self):
        a = _point(43.5000, 16.4, T0)
        b = _point(43.5001, 16.4, T0)          # duplicate timestamp
        c = _point(43.5002, 16.4, T0 + 10_000)

        segments = segment([a, b, c])

        assert len(segments) == 1
        assert segments[0].start == (43.5001, 16.4)
        expected = distance(43.5001, 16.4, 43.5002, 16.4) / 10 * 3.6
        assert segments[0].speed_kmh == expected

    def test_idempotent_and_does_not_mutate(self):
        points = [
            _point(43.5000, 16.4000, T0),
            _point(43.5004, 16.4003, T0 + 5_000),
            _point(43.5010, 16.4010, T0 + 9_000),
            _point(43.5010, 16.4010, T0 + 9_000),
            _point(43.5200, 16.4300, T0 + 60_000),
        ]
        snapshot = list(points)

        first = segment(points)
        second = segment(points)

        assert first == second
        assert points == snapshot
        assert len(first) == 3


class TestLegend:

    def test_legend_is_ordered_and_complete(self):
        legend = speed_legend()
        assert [e["speed_class"] for e in legend] == [c.value for c in SpeedClass]
        assert legend[0]["range"] == "0-5"
        assert legend[-1]["color"] == "#EF4444"
