"""
API routes for tracked sessions, their derived data, and the point cache.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from livetrack.api.schemas import (
    CacheClearResponse,
    CacheStatsResponse,
    ErrorResponse,
    LegendEntryResponse,
    PointResponse,
    SegmentResponse,
    SessionPointsResponse,
    SessionSchema,
    SessionSegmentsResponse,
    SessionStatsResponse,
    SessionViewResponse,
    TrackingResponse,
)
from livetrack.models.tracking import LocationPoint, Session, SessionView
from livetrack.services.export import session_csv
from livetrack.services.speed import segment, speed_legend
from livetrack.services.statistics import aggregate, format_distance, format_speed
from livetrack.services.sync_engine import get_engine
from livetrack.utils.timestamps import resolve_millis


NOT_FOUND = {404: {"model": ErrorResponse}}


def _point_response(point: Optional[LocationPoint]) -> Optional[PointResponse]:
    if point is None:
        return None
    return PointResponse(
        latitude=point.latitude,
        longitude=point.longitude,
        speed=point.speed,
        accuracy=point.accuracy,
        timestamp_ms=resolve_millis(point),
    )


def _get_view(session_id: str) -> SessionView:
    """Current view of a tracked, hydrated session or 404."""
    engine = get_engine()
    view = engine.view.get(session_id)
    if view is None:
        if session_id in engine.tracked_ids():
            raise HTTPException(status_code=404, detail=f"Session not loaded yet: {session_id}")
        raise HTTPException(status_code=404, detail=f"Session not tracked: {session_id}")
    return view


def _tracking_response() -> TrackingResponse:
    engine = get_engine()
    return TrackingResponse(
        tracked=engine.tracked_ids(),
        hydrated=list(engine.view.keys()),
    )


# ============================================================================
# Tracking Routes
# ============================================================================

tracking_router = APIRouter(prefix="/tracking", tags=["tracking"])


@tracking_router.get("", response_model=TrackingResponse)
async def get_tracking():
    """List tracked sessions and which of them are loaded."""
    return _tracking_response()


@tracking_router.post("", response_model=TrackingResponse)
async def set_tracking(
    sessions: list[SessionSchema],
    wait: bool = Query(False, description="Wait for new sessions to finish loading"),
):
    """
    Replace the set of tracked sessions.

    Sessions that stay in the set keep their points; new ones are loaded
    from the local cache or fetched in full.
    """
    engine = get_engine()
    engine.track(
        Session(
            id=s.id,
            worker_name=s.worker_name,
            start_time=s.start_time,
            status=s.status,
            worker_id=s.worker_id,
            territory_id=s.territory_id,
            end_time=s.end_time,
        )
        for s in sessions
    )
    if wait:
        await engine.settle()
    return _tracking_response()


# ============================================================================
# Session Routes
# ============================================================================

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionViewResponse])
async def list_sessions():
    """Summaries of all tracked sessions."""
    engine = get_engine()
    summaries = []
    for session_id in engine.tracked_ids():
        session = engine.session_of(session_id)
        view = engine.view.get(session_id)
        summaries.append(SessionViewResponse(
            id=session.id,
            worker_name=session.worker_name,
            status=session.status.value,
            territory_id=session.territory_id,
            state=engine.state_of(session_id).value,
            cursor=engine.cursor_of(session_id),
            point_count=len(view.points) if view else 0,
            last_point=_point_response(view.last_point) if view else None,
        ))
    return summaries


@router.post("/refresh")
async def refresh_sessions():
    """Fetch new points for every session now instead of waiting for the timer."""
    merged = await get_engine().poll_once()
    return {"merged": merged}


@router.get("/{session_id}/points", response_model=SessionPointsResponse, responses=NOT_FOUND)
async def get_session_points(session_id: str):
    view = _get_view(session_id)
    return SessionPointsResponse(
        session_id=session_id,
        points=[_point_response(p) for p in view.points],
    )


@router.get("/{session_id}/segments", response_model=SessionSegmentsResponse, responses=NOT_FOUND)
async def get_session_segments(session_id: str):
    """Speed-colored trace segments for map rendering."""
    view = _get_view(session_id)
    return SessionSegmentsResponse(
        session_id=session_id,
        segments=[
            SegmentResponse(
                positions=s.positions,
                speed_class=s.speed_class.value,
                color=s.color,
                speed_kmh=s.speed_kmh,
            )
            for s in segment(view.points)
        ],
    )


@router.get("/{session_id}/stats", response_model=SessionStatsResponse, responses=NOT_FOUND)
async def get_session_stats(session_id: str):
    view = _get_view(session_id)
    stats = aggregate(view.points, view.session.start_time, view.session.end_time)
    return SessionStatsResponse(
        session_id=session_id,
        total_distance=stats.total_distance,
        total_distance_km=stats.total_distance_km,
        average_speed=stats.average_speed,
        average_speed_kmh=stats.average_speed_kmh,
        max_speed=stats.max_speed,
        max_speed_kmh=stats.max_speed_kmh,
        duration_s=stats.duration_s,
        duration_formatted=stats.duration_formatted,
        distance_label=format_distance(stats.total_distance),
        average_speed_label=format_speed(stats.average_speed),
        max_speed_label=format_speed(stats.max_speed),
    )


@router.get("/{session_id}/export.csv", responses=NOT_FOUND)
async def export_session(session_id: str):
    """Download a session's points as CSV."""
    view = _get_view(session_id)
    return Response(
        content=session_csv(view.points),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{session_id}.csv"'},
    )


# ============================================================================
# Legend
# ============================================================================

legend_router = APIRouter(prefix="/legend", tags=["legend"])


@legend_router.get("", response_model=list[LegendEntryResponse])
async def get_legend():
    return [LegendEntryResponse(**entry) for entry in speed_legend()]


# ============================================================================
# Cache Routes
# ============================================================================

cache_router = APIRouter(prefix="/cache", tags=["cache"])


@cache_router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats():
    stats = get_engine().get_cache_stats()
    return CacheStatsResponse(
        session_count=stats.session_count,
        total_point_count=stats.total_point_count,
        approximate_size_bytes=stats.approximate_size_bytes,
        size_label=stats.size_label,
    )


@cache_router.delete("", response_model=CacheClearResponse)
async def clear_cache():
    """Remove every cached session. Tracked sessions keep their in-memory points."""
    return CacheClearResponse(removed=get_engine().cache.clear_all())


@cache_router.post("/clear-expired", response_model=CacheClearResponse)
async def clear_expired_cache():
    return CacheClearResponse(removed=get_engine().cache.clear_expired())


@cache_router.delete("/{session_id}", response_model=CacheClearResponse)
async def clear_session_cache(session_id: str):
    removed = get_engine().cache.clear(session_id)
    return CacheClearResponse(removed=1 if removed else 0)
