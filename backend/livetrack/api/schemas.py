"""
API schemas (Pydantic models) for request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from livetrack.models.tracking import SessionStatus


# ============================================================================
# Session Schemas
# ============================================================================

class SessionSchema(BaseModel):
    """A session to track, as supplied by the session directory."""
    id: str
    worker_name: str
    start_time: datetime
    status: SessionStatus = SessionStatus.ACTIVE
    worker_id: Optional[str] = None
    territory_id: Optional[str] = None
    end_time: Optional[datetime] = None


class TrackingResponse(BaseModel):
    """Currently tracked session ids."""
    tracked: list[str]
    hydrated: list[str]


class PointResponse(BaseModel):
    """Single location sample with its resolved timestamp."""
    latitude: float
    longitude: float
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    timestamp_ms: int


class SessionViewResponse(BaseModel):
    """Summary of a tracked session's current view."""
    id: str
    worker_name: str
    status: str
    territory_id: Optional[str] = None
    state: str
    cursor: int
    point_count: int
    last_point: Optional[PointResponse] = None


class SessionPointsResponse(BaseModel):
    session_id: str
    points: list[PointResponse]


# ============================================================================
# Derived Data Schemas
# ============================================================================

class SegmentResponse(BaseModel):
    """Colored trace segment."""
    positions: list[tuple[float, float]]  # [(lat, lon), (lat, lon)]
    speed_class: str
    color: str
    speed_kmh: float


class SessionSegmentsResponse(BaseModel):
    session_id: str
    segments: list[SegmentResponse]


class SessionStatsResponse(BaseModel):
    """Aggregate statistics for a session."""
    session_id: str
    total_distance: float
    total_distance_km: float
    average_speed: float
    average_speed_kmh: float
    max_speed: float
    max_speed_kmh: float
    duration_s: int
    duration_formatted: str
    distance_label: str
    average_speed_label: str
    max_speed_label: str


class LegendEntryResponse(BaseModel):
    speed_class: str
    color: str
    label: str
    range: str


# ============================================================================
# Cache Schemas
# ============================================================================

class CacheStatsResponse(BaseModel):
    """Diagnostics for the local point cache."""
    session_count: int
    total_point_count: int
    approximate_size_bytes: int
    size_label: str


class CacheClearResponse(BaseModel):
    removed: int


# ============================================================================
# Error Schemas
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str
    code: Optional[str] = None
