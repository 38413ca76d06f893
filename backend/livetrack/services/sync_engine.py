"""
Incremental sync engine.

Keeps an in-memory view of every tracked session's points, hydrated once
from the local cache (or a full remote fetch) and then advanced by delta
fetches on a shared poll timer. Each session has its own tracker in a dict;
untracking a session removes its tracker and cancels its pending timer.

Everything runs on one asyncio event loop. A session never has two fetches
in flight: the tracker's busy flag is set for the duration of each fetch,
and ticks that find it set are skipped. Results that arrive for a session
that is no longer tracked are discarded.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from livetrack.config import SyncConfig
from livetrack.models.tracking import LocationPoint, Session, SessionView
from livetrack.services.cache import CacheStats, LocalPointCache, merge_points
from livetrack.services.point_store import PointStore
from livetrack.utils.timestamps import now_millis, resolve_cursor, resolve_millis, sort_by_timestamp


logger = logging.getLogger(__name__)

ViewListener = Callable[[str, SessionView], None]


class TrackerState(Enum):
    IDLE = "idle"
    HYDRATING = "hydrating"
    POLLING = "polling"
    STOPPED = "stopped"


@dataclass
class SessionTracker:
    """Sync state of one tracked session."""

    session: Session
    state: TrackerState = TrackerState.IDLE
    cursor: int = 0  # epoch ms of the newest point known locally
    busy: bool = False
    timer: Optional[asyncio.TimerHandle] = None
    hydrated: asyncio.Event = field(default_factory=asyncio.Event)


class SyncEngine:
    """
    Per-session hydration and delta polling against a remote point store.

    Must be driven from within a running event loop.
    """

    def __init__(
        self,
        store: PointStore,
        cache: LocalPointCache,
        config: Optional[SyncConfig] = None,
    ):
        self._store = store
        self._cache = cache
        self._config = config or SyncConfig()

        self._trackers: dict[str, SessionTracker] = {}
        self._view: dict[str, SessionView] = {}
        self._tasks: set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None
        self._listeners: list[ViewListener] = []

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def cache(self) -> LocalPointCache:
        return self._cache

    @property
    def view(self) -> Mapping[str, SessionView]:
        """Live read-only mapping of session id to its current view."""
        return MappingProxyType(self._view)

    def tracked_ids(self) -> list[str]:
        return list(self._trackers.keys())

    def state_of(self, session_id: str) -> Optional[TrackerState]:
        tracker = self._trackers.get(session_id)
        return tracker.state if tracker is not None else None

    def cursor_of(self, session_id: str) -> Optional[int]:
        tracker = self._trackers.get(session_id)
        return tracker.cursor if tracker is not None else None

    def session_of(self, session_id: str) -> Optional[Session]:
        tracker = self._trackers.get(session_id)
        return tracker.session if tracker is not None else None

    def get_cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Register a callback for view changes. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Tracking lifecycle
    # ------------------------------------------------------------------

    def track(self, sessions: Iterable[Session]) -> None:
        """
        Set the tracked sessions.

        New sessions are hydrated after the startup delay. Sessions no
        longer listed are stopped. Sessions present before and after keep
        their points and cursor.
        """
        loop = asyncio.get_running_loop()
        wanted = {s.id: s for s in sessions}

        for session_id in list(self._trackers):
            if session_id not in wanted:
                self._untrack(session_id)

        added = 0
        for session_id, session in wanted.items():
            tracker = self._trackers.get(session_id)
            if tracker is not None:
                tracker.session = session
                if session_id in self._view:
                    self._view[session_id].session = session
                continue

            tracker = SessionTracker(session=session)
            self._trackers[session_id] = tracker
            tracker.timer = loop.call_later(
                self._config.startup_delay_s, self._start_hydration, tracker
            )
            added += 1

        if self._poll_task is None or self._poll_task.done():
            self._poll_task = loop.create_task(self._poll_loop())

        logger.info(f"Tracking {len(self._trackers)} sessions ({added} new)")

    async def stop(self) -> None:
        """Stop tracking everything and cancel outstanding work."""
        for session_id in list(self._trackers):
            self._untrack(session_id)

        tasks = list(self._tasks)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
            self._poll_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Sync engine stopped")

    async def settle(self) -> None:
        """Wait until tracked sessions are hydrated and no fetch is pending."""
        await asyncio.gather(*(t.hydrated.wait() for t in list(self._trackers.values())))
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def poll_once(self) -> int:
        """Run one delta fetch for every polling session. Returns points merged."""
        tasks = self._schedule_polls()
        if not tasks:
            return 0
        results = await asyncio.gather(*tasks)
        return sum(results)

    def _untrack(self, session_id: str) -> None:
        tracker = self._trackers.pop(session_id)
        tracker.state = TrackerState.STOPPED
        if tracker.timer is not None:
            tracker.timer.cancel()
            tracker.timer = None
        tracker.hydrated.set()
        self._view.pop(session_id, None)
        logger.debug(f"Stopped tracking session {session_id}")

    def _is_current(self, tracker: SessionTracker) -> bool:
        return (
            self._trackers.get(tracker.session.id) is tracker
            and tracker.state is not TrackerState.STOPPED
        )

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    def _start_hydration(self, tracker: SessionTracker) -> None:
        tracker.timer = None
        self._spawn(self._hydrate(tracker))

    async def _hydrate(self, tracker: SessionTracker) -> None:
        if tracker.state is not TrackerState.IDLE or tracker.busy or not self._is_current(tracker):
            return

        tracker.state = TrackerState.HYDRATING
        try:
            await self._load_initial(tracker)
        except Exception:
            logger.exception(f"Hydration failed for session {tracker.session.id}")
            if self._is_current(tracker) and tracker.state is TrackerState.HYDRATING:
                self._adopt(tracker, [], 0)

    async def _load_initial(self, tracker: SessionTracker) -> None:
        session = tracker.session
        cached = self._cache.load(session.id)
        if cached is not None:
            logger.info(f"Using {len(cached.points)} cached points for {session.worker_name} ({session.id})")
            self._adopt(tracker, cached.points, cached.last_timestamp)
            # Catch up on anything written since the cache was saved
            self._spawn(self._fetch_delta(tracker))
            return

        logger.info(f"Loading all points for {session.worker_name} ({session.id})")
        tracker.busy = True
        try:
            points = await self._fetch_full(session.id)
        except Exception as e:
            logger.warning(f"Full fetch failed for session {session.id}: {e}")
            points = []
        finally:
            tracker.busy = False

        if not self._is_current(tracker):
            logger.debug(f"Discarding hydration result for untracked session {session.id}")
            return

        cursor = 0
        if points:
            self._cache.save(session.id, points)
            cursor = resolve_cursor(points[-1])

        logger.info(f"Loaded {len(points)} points for session {session.id}")
        self._adopt(tracker, points, cursor)

    async def _fetch_full(self, session_id: str) -> list[LocationPoint]:
        """Fetch a session's whole history, falling back to the legacy ordering field."""
        try:
            points = await self._store.fetch_points(session_id, order_by=self._config.order_field)
        except Exception as e:
            logger.warning(
                f"Query by {self._config.order_field} failed for session {session_id} ({e}), "
                f"retrying by {self._config.fallback_order_field}"
            )
            points = await self._store.fetch_points(
                session_id, order_by=self._config.fallback_order_field
            )
        return sort_by_timestamp(points)

    def _adopt(self, tracker: SessionTracker, points: list[LocationPoint], cursor: int) -> None:
        session_id = tracker.session.id
        tracker.cursor = cursor
        self._view[session_id] = SessionView(
            session=tracker.session,
            points=list(points),
            last_point=points[-1] if points else None,
        )
        tracker.state = TrackerState.POLLING
        tracker.hydrated.set()
        self._notify(session_id)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.poll_interval_s)
            self._schedule_polls()

    def _schedule_polls(self) -> list[asyncio.Task]:
        targets = [
            t for t in self._trackers.values()
            if t.state is TrackerState.POLLING and not t.busy
        ]
        if targets:
            logger.debug(f"Polling {len(targets)} sessions for new points")
        return [self._spawn(self._fetch_delta(t)) for t in targets]

    async def _fetch_delta(self, tracker: SessionTracker) -> int:
        """Fetch and merge points newer than the tracker's cursor."""
        if tracker.busy or tracker.state is not TrackerState.POLLING:
            return 0

        session_id = tracker.session.id
        tracker.busy = True
        try:
            new_points = await self._store.fetch_points(
                session_id, order_by=self._config.order_field, after=tracker.cursor
            )
        except Exception as e:
            logger.warning(f"Delta fetch failed for session {session_id}: {e}")
            return 0
        finally:
            tracker.busy = False

        if not self._is_current(tracker):
            logger.debug(f"Discarding {len(new_points)} points for untracked session {session_id}")
            return 0
        if not new_points:
            return 0

        logger.info(f"Found {len(new_points)} new points for session {session_id}")
        self._cache.append(session_id, new_points)

        view = self._view[session_id]
        view.points[:] = merge_points(view.points, new_points)
        view.last_point = view.points[-1]
        tracker.cursor = max(resolve_millis(p) for p in new_points) or now_millis()

        self._notify(session_id)
        return len(new_points)

    def _notify(self, session_id: str) -> None:
        view = self._view.get(session_id)
        if view is None:
            return
        for listener in list(self._listeners):
            try:
                listener(session_id, view)
            except Exception:
                logger.exception(f"View listener failed for session {session_id}")


# Global engine instance (set up by app initialization)
_engine: Optional[SyncEngine] = None


def build_engine_from_env() -> SyncEngine:
    """Engine over the CSV point store, with an on-disk cache if configured."""
    from livetrack.config import CacheConfig, cache_folder_from_env, data_folder_from_env
    from livetrack.services.kv_store import DirectoryKeyValueStore, MemoryKeyValueStore
    from livetrack.services.point_store import CsvPointStore

    cache_folder = cache_folder_from_env()
    kv_store = DirectoryKeyValueStore(cache_folder) if cache_folder else MemoryKeyValueStore()

    return SyncEngine(
        store=CsvPointStore(data_folder_from_env()),
        cache=LocalPointCache(kv_store, CacheConfig.from_env()),
        config=SyncConfig.from_env(),
    )


def get_engine() -> SyncEngine:
    """Get the global engine instance."""
    global _engine
    if _engine is None:
        _engine = build_engine_from_env()
    return _engine


def init_engine(engine: SyncEngine) -> SyncEngine:
    """Install an engine as the global instance."""
    global _engine
    _engine = engine
    return _engine


def reset_engine() -> None:
    global _engine
    _engine = None
