"""
Great-circle distance utilities.

Inputs are WGS84 degrees and are not range-checked.
"""

import numpy as np
from numpy.typing import NDArray

EARTH_RADIUS_M = 6371000.0  # Mean radius (meters)


def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great-circle (haversine) distance between two points.

    Args:
        lat1, lon1: First point coordinates in degrees
        lat2, lon2: Second point coordinates in degrees

    Returns:
        Distance in meters
    """
    lat1_rad = np.radians(lat1)
    lat2_rad = np.radians(lat2)
    dlat = np.radians(lat2 - lat1)
    dlon = np.radians(lon2 - lon1)

    a = np.sin(dlat/2)**2 + np.cos(lat1_rad) * np.cos(lat2_rad) * np.sin(dlon/2)**2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1-a))

    return float(EARTH_RADIUS_M * c)


def pairwise_distances(
    lat: NDArray[np.float64],
    lon: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Distances between consecutive points of a track.

    Same formula as distance(), applied elementwise. Returns an array one
    shorter than the input (empty for fewer than two points).
    """
    lat = np.asarray(lat, dtype=np.float64)
    lon = np.asarray(lon, dtype=np.float64)
    if len(lat) < 2:
        return np.zeros(0, dtype=np.float64)

    lat_rad = np.radians(lat)
    dlat = np.radians(np.diff(lat))
    dlon = np.radians(np.diff(lon))

    a = np.sin(dlat/2)**2 + np.cos(lat_rad[:-1]) * np.cos(lat_rad[1:]) * np.sin(dlon/2)**2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1-a))

    return EARTH_RADIUS_M * c
