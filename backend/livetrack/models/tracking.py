"""
Tracking data model.

Location samples as they arrive from the remote point store, the sessions
they belong to, and the derived (never persisted) segment/statistics types.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


@dataclass(frozen=True)
class StoreTimestamp:
    """Native timestamp type of the remote point store."""

    seconds: int
    nanoseconds: int = 0

    def to_millis(self) -> int:
        return self.seconds * 1000 + self.nanoseconds // 1_000_000

    @classmethod
    def from_millis(cls, millis: int) -> "StoreTimestamp":
        seconds, rest = divmod(int(millis), 1000)
        return cls(seconds=seconds, nanoseconds=rest * 1_000_000)


# Closed set of raw timestamp representations:
# epoch millis (int/float), native datetime, store-native wrapper
RawTimestamp = Union[int, float, datetime, StoreTimestamp, None]


class SessionStatus(Enum):
    """Lifecycle status of a worker session."""

    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class LocationPoint:
    """One GPS sample. Immutable once received."""

    latitude: float
    longitude: float
    speed: Optional[float] = 0.0        # m/s, instrument-reported
    accuracy: Optional[float] = None    # meters
    timestamp: RawTimestamp = None
    timestamp_ms: Optional[int] = None  # precomputed epoch millis


@dataclass
class Session:
    """A worker's tracked GPS outing, as supplied by the session directory."""

    id: str
    worker_name: str
    start_time: datetime
    status: SessionStatus = SessionStatus.ACTIVE
    worker_id: Optional[str] = None
    territory_id: Optional[str] = None
    end_time: Optional[datetime] = None


@dataclass
class CachedSession:
    """Persisted unit of the local point cache."""

    session_id: str
    points: list[LocationPoint]
    last_timestamp: int   # epoch ms of the newest point
    cached_at: int        # epoch ms of the last persist
    version: str


@dataclass
class SessionView:
    """In-memory view of one tracked session, updated in place on merges."""

    session: Session
    points: list[LocationPoint] = field(default_factory=list)
    last_point: Optional[LocationPoint] = None


@dataclass(frozen=True)
class SpeedSegment:
    """Colored polyline piece between two consecutive samples."""

    start: tuple[float, float]   # (lat, lon)
    end: tuple[float, float]
    speed_class: "SpeedClass"
    speed_kmh: float

    @property
    def color(self) -> str:
        return self.speed_class.color

    @property
    def positions(self) -> list[tuple[float, float]]:
        return [self.start, self.end]


class SpeedClass(Enum):
    """Speed buckets used to color the trace."""

    STATIONARY = "stationary"
    WALKING = "walking"
    SLOW_DRIVE = "slow-drive"
    FAST_DRIVE = "fast-drive"
    HIGHWAY = "highway"

    @property
    def color(self) -> str:
        return SPEED_CLASS_COLORS[self]


SPEED_CLASS_COLORS = {
    SpeedClass.STATIONARY: "#10B981",
    SpeedClass.WALKING: "#3B82F6",
    SpeedClass.SLOW_DRIVE: "#F59E0B",
    SpeedClass.FAST_DRIVE: "#F97316",
    SpeedClass.HIGHWAY: "#EF4444",
}


@dataclass
class SessionStats:
    """Aggregate statistics over a full point sequence."""

    total_distance: float        # meters
    total_distance_km: float
    average_speed: float         # m/s
    average_speed_kmh: float
    max_speed: float             # m/s
    max_speed_kmh: float
    duration_s: int
    duration_formatted: str

    @classmethod
    def empty(cls) -> "SessionStats":
        return cls(
            total_distance=0.0,
            total_distance_km=0.0,
            average_speed=0.0,
            average_speed_kmh=0.0,
            max_speed=0.0,
            max_speed_kmh=0.0,
            duration_s=0,
            duration_formatted="0m",
        )
