"""
Cleanup Scheduler - Periodic Session Cleanup

Runs the cleanup engine on a fixed interval and disables itself after too
many consecutive automatic failures.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set

from newsdesk.core.cleanup import CleanupEngine, CleanupResult
from newsdesk.core.history import HistoryReporter
from newsdesk.models.database import utcnow
from newsdesk.services.metrics import CleanupMetrics

logger = logging.getLogger(__name__)


class CleanupScheduler:
    """
    Interval timer around a CleanupEngine.

    States:
    - Stopped: no timer armed (initial state)
    - Running: one timer task fires `run_cleanup('automatic')` every interval

    Each tick spawns its pass as a separate task; overlap is resolved by the
    engine's single-flight guard, so a tick during a running pass is skipped.

    start/stop/update_interval are serialized by one asyncio.Lock, so a stop
    issued during a start's initial pass takes effect once that start returns.
    All timestamps are naive UTC, the same clock as the stored history rows.
    """

    DEFAULT_INTERVAL_HOURS = 6
    DEFAULT_MAX_FAILURES = 5

    def __init__(
        self,
        engine: CleanupEngine,
        history: HistoryReporter,
        metrics: Optional[CleanupMetrics] = None,
        interval_hours: float = DEFAULT_INTERVAL_HOURS,
        max_failures: int = DEFAULT_MAX_FAILURES
    ):
        self.engine = engine
        self.history = history
        self.metrics = metrics or CleanupMetrics()
        self.interval_hours = interval_hours
        self.max_failures = max_failures

        self.failure_count = 0
        self.last_run: Optional[datetime] = None
        self.last_status: Optional[str] = None

        self._running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_processing(self) -> bool:
        return self.engine.is_processing

    @staticmethod
    def _validate_interval(interval_hours: float):
        if interval_hours is None or interval_hours <= 0:
            raise ValueError(f"Cleanup interval must be positive, got {interval_hours}")

    async def start(self, interval_hours: Optional[float] = None) -> Dict[str, Any]:
        """
        Start (or restart) the scheduler.

        Runs one automatic pass immediately, then arms the interval timer.

        Args:
            interval_hours: Hours between passes (defaults to the current interval)
        """
        interval_hours = self.interval_hours if interval_hours is None else interval_hours
        self._validate_interval(interval_hours)

        async with self._lock:
            return await self._start(interval_hours)

    async def _start(self, interval_hours: float) -> Dict[str, Any]:
        await self._stop()

        self.interval_hours = interval_hours
        self.failure_count = 0
        logger.info(f"✅ Starting cleanup scheduler with {self.interval_hours}-hour interval")

        await self.run_cleanup("automatic")

        interval_seconds = self.interval_hours * 3600
        next_run = utcnow() + timedelta(seconds=interval_seconds)
        self._timer_task = asyncio.create_task(self._timer_loop(interval_seconds))
        self._running = True

        await self.history.record_scheduler_event("started", {
            "interval_hours": self.interval_hours,
            "started_at": utcnow().isoformat(),
        })

        return {
            "success": True,
            "message": f"Cleanup scheduler started with {self.interval_hours}-hour interval",
            "interval_hours": self.interval_hours,
            "next_run": next_run.isoformat(),
        }

    async def stop(self, reason: Optional[str] = None) -> Dict[str, Any]:
        """Cancel future ticks. An in-flight pass is left to finish."""
        async with self._lock:
            await self._stop(reason)

        return {
            "success": True,
            "message": "Cleanup scheduler stopped successfully",
        }

    async def _stop(self, reason: Optional[str] = None):
        was_running = self._running
        self._running = False

        task, self._timer_task = self._timer_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if was_running:
            logger.info("⏹️ Cleanup scheduler stopped")
            await self.history.record_scheduler_event("disabled" if reason else "stopped", {
                "reason": reason,
                "failure_count": self.failure_count,
                "stopped_at": utcnow().isoformat(),
            })

    async def _disable(self):
        """Self-stop after too many failures, unless a restart already reset the count."""
        async with self._lock:
            if self._running and self.failure_count >= self.max_failures:
                logger.error(f"❌ Maximum failures reached ({self.max_failures}), stopping scheduler")
                await self._stop(reason="max_failures")

    async def _timer_loop(self, interval_seconds: float):
        """Fire a pass every interval without waiting for the previous one."""
        while True:
            await asyncio.sleep(interval_seconds)
            task = asyncio.create_task(self._tick())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _tick(self):
        try:
            await self.run_cleanup("automatic")
        except Exception as e:
            logger.error(f"Cleanup error: {e}", exc_info=True)

    async def run_cleanup(self, trigger: str = "manual") -> CleanupResult:
        """
        Run a pass through the engine and update failure tracking.

        Any successful pass resets the failure count. Only automatic failures
        count toward `max_failures`.
        """
        result = await self.engine.run_cleanup(trigger)
        self.metrics.record_pass(result)
        if result.skipped:
            return result

        self.last_run = result.finished_at
        self.last_status = result.status

        if result.success:
            self.failure_count = 0
        elif trigger == "automatic":
            self.failure_count += 1
            logger.error(f"❌ Automatic cleanup failed (attempt {self.failure_count}/{self.max_failures})")
            if self.failure_count >= self.max_failures and self._running:
                await self._disable()

        return result

    def get_status(self) -> Dict[str, Any]:
        next_run = None
        if self._running:
            next_run = utcnow() + timedelta(hours=self.interval_hours)

        return {
            "is_running": self._running,
            "is_processing": self.is_processing,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_status": self.last_status,
            "next_run": next_run.isoformat() if next_run else None,
            "interval": f"{self.interval_hours} hours",
            "interval_hours": self.interval_hours,
            "failure_count": self.failure_count,
            "max_failures": self.max_failures,
        }

    async def update_interval(self, interval_hours: float) -> Dict[str, Any]:
        """Restart with the new interval if running, otherwise just store it."""
        self._validate_interval(interval_hours)

        async with self._lock:
            logger.info(f"🔄 Updating interval from {self.interval_hours}h to {interval_hours}h")
            if self._running:
                await self._start(interval_hours)
            else:
                self.interval_hours = interval_hours

        return {
            "success": True,
            "interval_hours": self.interval_hours,
            "is_running": self._running,
        }

    async def shutdown(self):
        """Stop the timer and wait for in-flight passes (process exit)."""
        await self.stop()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
