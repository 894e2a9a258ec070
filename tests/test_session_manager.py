"""
Session registry and event log tests.
"""
import pytest

from superfarm.models.schemas import IdentitySource, ResolvedIdentity, SessionStart
from superfarm.services.event_log import EventLog
from superfarm.services.session_manager import SWEEP_JOB_ID, SessionManager

IDLE_SECONDS = 300


def session_start(record, created=True):
    identity = ResolvedIdentity(player_id=record.player_id, source=IdentitySource.ANONYMOUS)
    return SessionStart(identity=identity, record=record, created=created)


@pytest.fixture
def manager(store, clock):
    return SessionManager(
        store_factory=lambda: store,
        tick_interval=60,
        idle_seconds=IDLE_SECONDS,
        sweep_interval=60,
        clock=clock,
    )


@pytest.mark.unit
class TestSessionManager:
    """Engine registry and tick job lifecycle."""

    @pytest.mark.asyncio
    async def test_open_starts_tick_job(self, manager, player_record):
        engine = await manager.open(session_start(player_record))

        assert manager.get(player_record.player_id) is engine
        assert manager.scheduler.get_job(f"tick:{player_record.player_id}") is not None
        assert "Created new player" in engine.events.recent()[0]

        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_open_reuses_engine(self, manager, player_record):
        first = await manager.open(session_start(player_record))
        second = await manager.open(session_start(player_record, created=False))

        assert first is second
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_close_removes_job(self, manager, player_record):
        engine = await manager.open(session_start(player_record))

        assert await manager.close(player_record.player_id) is True
        assert engine.closed is True
        assert manager.scheduler.get_job(f"tick:{player_record.player_id}") is None
        assert manager.is_open(player_record.player_id) is False
        assert await manager.close(player_record.player_id) is False

        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(self, manager, player_record):
        engine = await manager.open(session_start(player_record))
        old_scheduler = manager.scheduler

        await manager.shutdown()

        assert engine.closed is True
        assert old_scheduler.running is False
        assert manager.scheduler is not old_scheduler


@pytest.mark.unit
class TestIdleSweep:
    """Sessions abandoned without an explicit end are closed."""

    @pytest.mark.asyncio
    async def test_sweep_job_registered(self, manager, player_record):
        await manager.open(session_start(player_record))
        assert manager.scheduler.get_job(SWEEP_JOB_ID) is not None
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_idle_session_is_closed(self, manager, player_record, clock):
        engine = await manager.open(session_start(player_record))

        clock.advance(IDLE_SECONDS * 1000)
        closed = await manager.sweep_idle()

        assert closed == [player_record.player_id]
        assert engine.closed is True
        assert manager.is_open(player_record.player_id) is False
        assert manager.scheduler.get_job(f"tick:{player_record.player_id}") is None
        assert player_record.player_id not in manager.last_seen

        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_access_keeps_session_open(self, manager, player_record, clock):
        engine = await manager.open(session_start(player_record))

        clock.advance(IDLE_SECONDS * 1000 - 1)
        manager.get(player_record.player_id)
        clock.advance(IDLE_SECONDS * 1000 - 1)

        assert await manager.sweep_idle() == []
        assert engine.closed is False

        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_unsynced_engine_saved_before_close(self, manager, player_record, store, clock):
        store.create_if_absent(player_record.player_id, player_record.to_document())
        engine = await manager.open(session_start(player_record))
        engine.balances.primary = 4
        engine.synced = False

        clock.advance(IDLE_SECONDS * 1000)
        await manager.sweep_idle()

        assert store.get(player_record.player_id)["balances"]["primary"] == 4
        await manager.shutdown()


@pytest.mark.unit
class TestEventLog:

    def test_bounded(self):
        events = EventLog(max_entries=3)
        for i in range(5):
            events.add(f"message {i}")

        assert len(events) == 3
        assert events.recent()[0].endswith("message 2")

    def test_subscribers(self):
        events = EventLog()
        received = []
        unsubscribe = events.subscribe(received.append)

        events.add("Planted Wheat in slot 0")
        unsubscribe()
        events.add("Harvested wheat from slot 0")

        assert len(received) == 1
        assert received[0].endswith("Planted Wheat in slot 0")

    def test_failing_subscriber_does_not_break_others(self):
        events = EventLog()
        received = []

        def broken(entry):
            raise RuntimeError("display gone")

        events.subscribe(broken)
        events.subscribe(received.append)
        events.add("Progress saved")

        assert len(received) == 1
