"""
Open gameplay sessions.

Keeps one Crop Lifecycle Engine per player in this process and one
scheduler job per engine that re-derives crop stages on a fixed interval.
Closing a session removes its job before the engine is disposed, so no
tick runs against a closed engine.

Clients that go away without ending their session are closed by a
periodic sweep once they have been idle for `session_idle_seconds`.
"""
from typing import Callable, Dict, List, Optional
import logging

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.config import settings
from ..core.errors import SessionNotStarted
from ..db.database import DocumentStore, get_document_store
from ..models.schemas import SessionStart
from .crop_engine import CropLifecycleEngine, now_ms
from .event_log import EventLog

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "session_sweep"


class SessionManager:

    def __init__(
        self,
        store_factory: Callable[[], DocumentStore] = get_document_store,
        scheduler_factory: Callable[[], AsyncIOScheduler] = AsyncIOScheduler,
        tick_interval: Optional[float] = None,
        idle_seconds: Optional[float] = None,
        sweep_interval: Optional[float] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._store_factory = store_factory
        self._scheduler_factory = scheduler_factory
        self.scheduler = scheduler_factory()
        self.tick_interval = tick_interval or settings.tick_interval_seconds
        self.idle_seconds = idle_seconds or settings.session_idle_seconds
        self.sweep_interval = sweep_interval or settings.session_sweep_interval_seconds
        self._clock = clock
        self._engines: Dict[str, CropLifecycleEngine] = {}
        # Epoch ms of the last open() or get() per player
        self.last_seen: Dict[str, int] = {}

    @staticmethod
    def _job_id(player_id: str) -> str:
        return f"tick:{player_id}"

    async def open(self, start: SessionStart) -> CropLifecycleEngine:
        """Open the player's engine, or return the one already open."""
        player_id = start.identity.player_id
        engine = self._engines.get(player_id)
        if engine is not None and not engine.closed:
            logger.info(f"[Session] Reusing open session for {player_id}")
            self.last_seen[player_id] = self._clock()
            return engine

        events = EventLog(settings.event_log_size)
        engine = CropLifecycleEngine(start.record, self._store_factory(), clock=self._clock, event_log=events)
        if start.created:
            events.add("Created new player")
        else:
            events.add(f"Loaded player with {len(engine.crops)} crops")

        self._engines[player_id] = engine
        self.last_seen[player_id] = self._clock()
        self._start_ticker(player_id)
        return engine

    def get(self, player_id: str) -> CropLifecycleEngine:
        engine = self._engines.get(player_id)
        if engine is None or engine.closed:
            raise SessionNotStarted(f"No open session for {player_id}")
        self.last_seen[player_id] = self._clock()
        return engine

    def is_open(self, player_id: str) -> bool:
        engine = self._engines.get(player_id)
        return engine is not None and not engine.closed

    async def _tick(self, player_id: str):
        engine = self._engines.get(player_id)
        if engine is not None:
            engine.tick()

    def _ensure_scheduler(self):
        if self.scheduler.running:
            return
        self.scheduler.start()
        self.scheduler.add_job(
            self.sweep_idle,
            IntervalTrigger(seconds=self.sweep_interval),
            id=SWEEP_JOB_ID,
            name="Close idle sessions",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(f"[Ticker] APScheduler started, idle sessions close after {self.idle_seconds}s")

    def _start_ticker(self, player_id: str):
        self._ensure_scheduler()
        self.scheduler.add_job(
            self._tick,
            IntervalTrigger(seconds=self.tick_interval),
            args=[player_id],
            id=self._job_id(player_id),
            name=f"Stage recomputation for {player_id}",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def _stop_ticker(self, player_id: str):
        try:
            self.scheduler.remove_job(self._job_id(player_id))
        except JobLookupError:
            logger.debug(f"[Ticker] No tick job for {player_id}")

    async def close(self, player_id: str) -> bool:
        engine = self._engines.pop(player_id, None)
        self.last_seen.pop(player_id, None)
        self._stop_ticker(player_id)
        if engine is None:
            return False
        engine.close()
        logger.info(f"[Session] Closed session for {player_id}")
        return True

    async def sweep_idle(self, now: Optional[int] = None) -> List[str]:
        """Close sessions not accessed for `idle_seconds`. Returns the closed ids."""
        now = self._clock() if now is None else now
        cutoff = now - int(self.idle_seconds * 1000)
        idle = [player_id for player_id, seen in self.last_seen.items() if seen <= cutoff]

        for player_id in idle:
            engine = self._engines.get(player_id)
            if engine is not None and not engine.synced:
                await engine.sync()
            await self.close(player_id)

        if idle:
            logger.info(f"[Session] Closed {len(idle)} idle session(s)")
        return idle

    async def close_all(self):
        for player_id in list(self._engines):
            await self.close(player_id)

    async def shutdown(self):
        await self.close_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("[Ticker] APScheduler shutdown complete")
        # A stopped AsyncIOScheduler stays bound to its old event loop
        self.scheduler = self._scheduler_factory()


# Global session registry
session_manager = SessionManager()
