"""
Remote point store adapters.

The sync engine only reads: an ascending query over one session's points,
optionally restricted to values strictly greater than a cursor. Points
missing the ordering field are not returned, which is how the remote store
behaves for legacy data.
"""

import asyncio
import logging
import math
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

import pandas as pd

from livetrack.config import FALLBACK_ORDER_FIELD, ORDER_FIELD
from livetrack.models.tracking import LocationPoint
from livetrack.utils.timestamps import millis_of


logger = logging.getLogger(__name__)


class PointStoreError(Exception):
    """Raised when the point store cannot answer a query."""


class PointStore(Protocol):
    """Read interface of the remote, append-only, per-session point store."""

    async def fetch_points(
        self,
        session_id: str,
        *,
        order_by: str = ORDER_FIELD,
        after: Optional[int] = None,
    ) -> list[LocationPoint]:
        ...


def _order_key(order_by: str) -> Callable[[LocationPoint], Optional[int]]:
    """Ordering value of a point for a field, None when the field is absent."""
    if order_by == ORDER_FIELD:
        return lambda p: p.timestamp_ms
    if order_by == FALLBACK_ORDER_FIELD:
        return lambda p: millis_of(p.timestamp) if p.timestamp is not None else None
    raise PointStoreError(f"Unsupported ordering field: {order_by}")


def _query(
    points: Iterable[LocationPoint],
    order_by: str,
    after: Optional[int],
) -> list[LocationPoint]:
    key = _order_key(order_by)
    rows = [p for p in points if key(p) is not None]
    if after is not None:
        rows = [p for p in rows if key(p) > after]
    return sorted(rows, key=key)


class MemoryPointStore:
    """
    In-process point store.

    Keeps a log of queries so callers can check what was fetched.
    """

    def __init__(self):
        self._points: dict[str, list[LocationPoint]] = {}
        self.queries: list[tuple[str, str, Optional[int]]] = []

    def add_points(self, session_id: str, points: Iterable[LocationPoint]) -> None:
        self._points.setdefault(session_id, []).extend(points)

    def session_ids(self) -> list[str]:
        return list(self._points.keys())

    async def fetch_points(
        self,
        session_id: str,
        *,
        order_by: str = ORDER_FIELD,
        after: Optional[int] = None,
    ) -> list[LocationPoint]:
        self.queries.append((session_id, order_by, after))
        return _query(self._points.get(session_id, []), order_by, after)


class CsvPointStore:
    """
    Point store over a folder of per-session CSV files.

    Each session lives in "<folder>/<session_id>.csv" with columns
    latitude, longitude and optionally speed, accuracy, timestamp (ISO 8601)
    and timestamp_ms. Files lacking the requested ordering column raise
    PointStoreError so the caller can retry with another field.
    """

    def __init__(self, folder: Path):
        self._folder = Path(folder)
        if not self._folder.exists():
            logger.warning(f"Point store folder does not exist: {self._folder}")

    @property
    def folder(self) -> Path:
        return self._folder

    def session_ids(self) -> list[str]:
        if not self._folder.exists():
            return []
        return sorted(p.stem for p in self._folder.glob("*.csv") if p.is_file())

    async def fetch_points(
        self,
        session_id: str,
        *,
        order_by: str = ORDER_FIELD,
        after: Optional[int] = None,
    ) -> list[LocationPoint]:
        return await asyncio.to_thread(self._fetch, session_id, order_by, after)

    def _fetch(self, session_id: str, order_by: str, after: Optional[int]) -> list[LocationPoint]:
        path = self._path(session_id)
        if not path.exists():
            return []

        try:
            df = pd.read_csv(path)
        except (OSError, ValueError) as e:
            raise PointStoreError(f"Failed to read {path.name}: {e}") from e
        df.columns = df.columns.str.strip()

        if df.empty:
            return []
        for column in ("latitude", "longitude"):
            if column not in df.columns:
                raise PointStoreError(f"{path.name} has no {column} column")
        if order_by not in df.columns:
            raise PointStoreError(f"{path.name} has no {order_by} column")

        points = [self._row_to_point(row) for row in df.to_dict("records")]
        return _query(points, order_by, after)

    def _row_to_point(self, row: dict) -> LocationPoint:
        timestamp = None
        raw_ts = row.get("timestamp")
        if isinstance(raw_ts, str) and raw_ts.strip():
            parsed = pd.to_datetime(raw_ts, utc=True, errors="coerce")
            if not pd.isna(parsed):
                timestamp = parsed.to_pydatetime()

        timestamp_ms = _optional_float(row.get("timestamp_ms"))

        return LocationPoint(
            latitude=float(row["latitude"]),
            longitude=float(row["longitude"]),
            speed=_optional_float(row.get("speed")),
            accuracy=_optional_float(row.get("accuracy")),
            timestamp=timestamp,
            timestamp_ms=int(timestamp_ms) if timestamp_ms is not None else None,
        )

    def _path(self, session_id: str) -> Path:
        if not session_id or Path(session_id).name != session_id:
            raise PointStoreError(f"Invalid session id: {session_id!r}")
        return self._folder / f"{session_id}.csv"


def _optional_float(value) -> Optional[float]:
    """Convert a CSV cell to float, None for blanks and NaN."""
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result
