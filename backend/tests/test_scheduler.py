import asyncio
import time
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from newsdesk.core.cleanup import CleanupResult
from newsdesk.core.scheduler import CleanupScheduler
from newsdesk.models.database import utcnow
from newsdesk.models.sessions import AdminSession


class FakeEngine:
    """Stands in for CleanupEngine; outcome of each pass is scripted."""

    def __init__(self, status: str = "success"):
        self.status = status
        self.calls = []
        self.gate = None
        self.delay = 0
        self.entered = asyncio.Event()
        self._processing = False

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def run_cleanup(self, trigger: str) -> CleanupResult:
        if self._processing:
            return CleanupResult(status="skipped", trigger=trigger, error="Cleanup already in progress")
        self._processing = True
        try:
            self.calls.append(trigger)
            if self.gate is not None:
                self.entered.set()
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            error = None if self.status == "success" else "connection refused"
            return CleanupResult(status=self.status, trigger=trigger, error=error, finished_at=utcnow())
        finally:
            self._processing = False


def _timer_tasks():
    return [
        task for task in asyncio.all_tasks()
        if task.get_coro().__qualname__.endswith("_timer_loop")
    ]


@pytest.fixture
def history():
    mock = MagicMock()
    mock.record_scheduler_event = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def scheduler(engine, history):
    return CleanupScheduler(engine, history, interval_hours=6, max_failures=5)


def _events(history):
    return [call.args[0] for call in history.record_scheduler_event.await_args_list]


@pytest.mark.asyncio
async def test_initial_state_is_stopped(scheduler):
    status = scheduler.get_status()

    assert status["is_running"] is False
    assert status["is_processing"] is False
    assert status["next_run"] is None
    assert status["last_run"] is None
    assert status["interval_hours"] == 6
    assert status["failure_count"] == 0
    assert status["max_failures"] == 5


@pytest.mark.asyncio
async def test_start_runs_one_pass_then_arms_timer(scheduler, engine, history):
    result = await scheduler.start(6)

    assert result["success"] is True
    assert result["interval_hours"] == 6
    assert engine.calls == ["automatic"]
    assert scheduler.is_running
    assert len(_timer_tasks()) == 1
    assert _events(history) == ["started"]

    status = scheduler.get_status()
    assert status["is_running"] is True
    assert status["next_run"] is not None
    assert status["last_run"] is not None
    assert status["last_status"] == "success"
    await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_reports_not_running(scheduler, history):
    await scheduler.start(6)

    result = await scheduler.stop()
    status = scheduler.get_status()

    assert result["success"] is True
    assert status["is_running"] is False
    assert status["next_run"] is None
    assert _timer_tasks() == []
    assert _events(history) == ["started", "stopped"]


@pytest.mark.asyncio
async def test_stop_is_idempotent(scheduler, history):
    first = await scheduler.stop()
    second = await scheduler.stop()

    assert first["success"] is True
    assert second["success"] is True
    assert not scheduler.is_running
    history.record_scheduler_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_restart_leaves_exactly_one_timer(scheduler):
    await scheduler.start(6)
    old_timer = scheduler._timer_task

    await scheduler.start(4)

    assert old_timer.cancelled()
    assert scheduler._timer_task is not old_timer
    assert len(_timer_tasks()) == 1
    assert scheduler.interval_hours == 4
    assert scheduler.get_status()["interval"] == "4 hours"
    await scheduler.stop()


@pytest.mark.asyncio
async def test_overlapping_starts_leave_one_timer(scheduler, engine, history):
    engine.delay = 0.05

    await asyncio.gather(scheduler.start(6), scheduler.start(4))

    assert len(_timer_tasks()) == 1
    assert scheduler.interval_hours in (6, 4)

    await scheduler.stop()

    assert _timer_tasks() == []
    assert not scheduler.is_running
    assert _events(history) == ["started", "stopped", "started", "stopped"]


@pytest.mark.asyncio
async def test_concurrent_interval_updates_leave_one_timer(scheduler, engine):
    await scheduler.start(6)
    engine.delay = 0.05

    await asyncio.gather(scheduler.update_interval(2), scheduler.update_interval(3))

    assert len(_timer_tasks()) == 1
    await scheduler.stop()
    assert _timer_tasks() == []


@pytest.mark.asyncio
async def test_stop_during_initial_pass_wins(scheduler, engine, history):
    engine.gate = asyncio.Event()
    starting = asyncio.create_task(scheduler.start(6))
    await engine.entered.wait()

    stopping = asyncio.create_task(scheduler.stop())
    await asyncio.sleep(0)
    engine.gate.set()
    await starting
    result = await stopping

    assert result["success"] is True
    assert not scheduler.is_running
    assert scheduler.get_status()["next_run"] is None
    assert _timer_tasks() == []
    assert _events(history) == ["started", "stopped"]


@pytest.fixture
def eastern_time(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset not available")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.mark.asyncio
async def test_status_times_use_one_clock(scheduler, eastern_time):
    await scheduler.start(1)

    status = scheduler.get_status()
    last_run = datetime.fromisoformat(status["last_run"])
    next_run = datetime.fromisoformat(status["next_run"])

    assert abs((next_run - last_run) - timedelta(hours=1)) < timedelta(seconds=5)
    assert abs(last_run - utcnow()) < timedelta(seconds=5)
    await scheduler.stop()


@pytest.mark.asyncio
async def test_timer_fires_automatic_passes(scheduler, engine):
    await scheduler.start(0.00001)  # ~36ms
    await asyncio.sleep(0.3)
    await scheduler.shutdown()

    fired = len(engine.calls)
    assert fired >= 3
    assert set(engine.calls) == {"automatic"}

    await asyncio.sleep(0.1)
    assert len(engine.calls) == fired


@pytest.mark.asyncio
async def test_self_disables_after_max_automatic_failures(scheduler, engine, history):
    engine.status = "failed"
    await scheduler.start(6)
    assert scheduler.failure_count == 1

    for _ in range(3):
        await scheduler.run_cleanup("automatic")
    assert scheduler.is_running
    assert scheduler.failure_count == 4

    await scheduler.run_cleanup("automatic")

    status = scheduler.get_status()
    assert status["is_running"] is False
    assert status["next_run"] is None
    assert status["failure_count"] == 5
    assert _timer_tasks() == []
    assert _events(history)[-1] == "disabled"


@pytest.mark.asyncio
async def test_manual_run_allowed_after_self_disable(scheduler, engine):
    engine.status = "failed"
    await scheduler.start(6)
    for _ in range(4):
        await scheduler.run_cleanup("automatic")
    assert not scheduler.is_running

    result = await scheduler.run_cleanup("manual")

    assert engine.calls[-1] == "manual"
    assert result.status == "failed"
    assert scheduler.failure_count == 5
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_manual_failures_do_not_disable_running_scheduler(scheduler, engine):
    await scheduler.start(6)
    engine.status = "failed"

    for _ in range(10):
        await scheduler.run_cleanup("manual")

    assert scheduler.is_running
    assert scheduler.failure_count == 0
    await scheduler.stop()


@pytest.mark.asyncio
async def test_success_resets_failure_count(scheduler, engine):
    await scheduler.start(6)
    engine.status = "failed"
    await scheduler.run_cleanup("automatic")
    await scheduler.run_cleanup("automatic")
    assert scheduler.failure_count == 2

    engine.status = "success"
    await scheduler.run_cleanup("manual")

    assert scheduler.failure_count == 0
    await scheduler.stop()


@pytest.mark.asyncio
async def test_start_resets_failure_count(scheduler, engine):
    engine.status = "failed"
    await scheduler.start(6)
    for _ in range(4):
        await scheduler.run_cleanup("automatic")
    assert not scheduler.is_running

    engine.status = "success"
    await scheduler.start()

    assert scheduler.is_running
    assert scheduler.failure_count == 0
    await scheduler.stop()


@pytest.mark.asyncio
async def test_update_interval_while_stopped_only_stores_value(scheduler, engine):
    result = await scheduler.update_interval(12)

    assert result == {"success": True, "interval_hours": 12, "is_running": False}
    assert engine.calls == []
    assert scheduler.get_status()["next_run"] is None


@pytest.mark.asyncio
async def test_update_interval_while_running_restarts(scheduler, engine):
    await scheduler.start(6)

    result = await scheduler.update_interval(2)

    assert result["is_running"] is True
    assert result["interval_hours"] == 2
    assert engine.calls == ["automatic", "automatic"]
    assert len(_timer_tasks()) == 1
    await scheduler.stop()


@pytest.mark.asyncio
async def test_rejects_non_positive_interval(scheduler):
    with pytest.raises(ValueError):
        await scheduler.start(0)
    with pytest.raises(ValueError):
        await scheduler.update_interval(-1)
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_stop_does_not_cancel_in_flight_pass(scheduler, engine):
    await scheduler.start(0.00001)
    engine.gate = asyncio.Event()
    await asyncio.wait_for(engine.entered.wait(), timeout=2)

    await scheduler.stop()
    assert scheduler.is_processing

    engine.gate.set()
    await scheduler.shutdown()

    assert not scheduler.is_processing
    assert scheduler.last_status == "success"


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(scheduler, engine):
    engine.gate = asyncio.Event()
    manual = asyncio.create_task(scheduler.run_cleanup("manual"))
    await engine.entered.wait()

    skipped = await scheduler.run_cleanup("automatic")

    assert skipped.skipped
    assert scheduler.failure_count == 0
    assert scheduler.metrics.skipped_passes == 1
    engine.gate.set()
    assert (await manual).success


@pytest.mark.asyncio
async def test_scheduler_with_real_engine(services, seeder):
    await seeder.sessions(AdminSession, expired=2, live=1)

    await services.scheduler.start(6)

    history = await services.history.get_history()
    assert len(history) == 1
    assert history[0]["type"] == "automatic"
    assert history[0]["triggered_by"] == "system"
    assert history[0]["results"]["admin_sessions"] == 2

    events = await services.history.get_scheduler_events()
    assert events[0]["event_type"] == "started"
    assert events[0]["event_data"]["interval_hours"] == 6

    await services.scheduler.stop()
    events = await services.history.get_scheduler_events()
    assert [event["event_type"] for event in events] == ["stopped", "started"]
