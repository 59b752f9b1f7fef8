"""
Cleanup Engine - Expired Session and Stale Geo Row Removal

One pass deletes expired admin/public/user session rows and stale
geo-tracking rows inside a single transaction, then appends a history row.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, NamedTuple, Optional

from sqlalchemy import Table, case, delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from newsdesk.core.connection import ConnectionManager
from newsdesk.core.errors import StoreConnectionError, TransactionError
from newsdesk.core.history import HistoryReporter
from newsdesk.models.database import utcnow
from newsdesk.models.sessions import AdminSession, PublicSession, SessionGeo, UserSession

logger = logging.getLogger(__name__)

TRIGGERS = ("manual", "automatic")

DEFAULT_GEO_STALE_HOURS = 30 * 24


class PurgeTarget(NamedTuple):
    """A table swept by the cleanup pass."""
    name: str
    table: Table
    key: str
    column: str
    stale_after: Optional[timedelta] = None  # None: rows expire at `column`


@dataclass
class CleanupResult:
    """Outcome of one cleanup pass."""
    status: str  # success, failed, skipped
    trigger: str
    admin_sessions: int = 0
    public_sessions: int = 0
    user_sessions: int = 0
    geo_sessions: int = 0
    removed_ids: Dict[str, List[str]] = field(default_factory=dict)
    before: Dict[str, Dict[str, int]] = field(default_factory=dict)
    after: Dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0
    error: Optional[str] = None
    finished_at: Optional[datetime] = None
    history_recorded: bool = False

    @property
    def success(self) -> bool:
        return self.status == "success"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @property
    def triggered_by(self) -> str:
        return "admin" if self.trigger == "manual" else "system"

    @property
    def total_removed(self) -> int:
        return self.admin_sessions + self.public_sessions + self.user_sessions + self.geo_sessions

    def to_history_entry(self) -> Dict[str, Any]:
        return {
            "type": self.trigger,
            "public_sessions": self.public_sessions,
            "admin_sessions": self.admin_sessions,
            "user_sessions": self.user_sessions,
            "geo_sessions": self.geo_sessions,
            "total_sessions": self.total_removed,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "error_message": self.error,
            "triggered_by": self.triggered_by,
            "cleaned_at": self.finished_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "type": self.trigger,
            "triggered_by": self.triggered_by,
            "error": self.error,
            "results": {
                "public_sessions": self.public_sessions,
                "admin_sessions": self.admin_sessions,
                "user_sessions": self.user_sessions,
                "geo_sessions": self.geo_sessions,
                "preserved_device_info": 0,
                "preserved_geographic_data": 0,
                "total_removed": self.total_removed,
                "errors": [self.error] if self.error and not self.skipped else [],
                "duration_ms": self.duration_ms,
            },
            "before": self.before,
            "after": self.after,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class CleanupEngine:
    """
    Runs cleanup passes against the shared connection pool.

    At most one pass runs at a time: a call made while a pass is in flight
    returns a `skipped` result without touching the store.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        history: HistoryReporter,
        geo_stale_hours: float = DEFAULT_GEO_STALE_HOURS,
        active_device_window_days: int = 7
    ):
        self.connections = connections
        self.history = history
        self.geo_stale_hours = geo_stale_hours
        self.active_device_window = timedelta(days=active_device_window_days)
        self._processing = False

        self.targets = (
            PurgeTarget("admin_sessions", AdminSession.__table__, "sid", "expire"),
            PurgeTarget("public_sessions", PublicSession.__table__, "sid", "expire"),
            PurgeTarget("user_sessions", UserSession.__table__, "session_id", "expires_at"),
            PurgeTarget(
                "geo_sessions", SessionGeo.__table__, "session_id", "last_seen",
                stale_after=timedelta(hours=geo_stale_hours),
            ),
        )

    @property
    def is_processing(self) -> bool:
        return self._processing

    @staticmethod
    def _cutoff(target: PurgeTarget, now: datetime) -> datetime:
        return now - target.stale_after if target.stale_after else now

    @staticmethod
    async def _count(conn, target: PurgeTarget, cutoff: datetime) -> Dict[str, int]:
        column = target.table.c[target.column]
        statement = select(
            func.count(),
            func.coalesce(func.sum(case((column < cutoff, 1), else_=0)), 0),
        ).select_from(target.table)
        total, expired = (await conn.execute(statement)).one()
        return {"total": int(total or 0), "expired": int(expired or 0)}

    @staticmethod
    async def _delete(conn, target: PurgeTarget, cutoff: datetime) -> List[str]:
        """Delete matching rows, returning their keys."""
        key = target.table.c[target.key]
        predicate = target.table.c[target.column] < cutoff

        if conn.dialect.delete_returning:
            result = await conn.execute(delete(target.table).where(predicate).returning(key))
            return [row[0] for row in result.all()]

        ids = list((await conn.execute(select(key).where(predicate))).scalars().all())
        if ids:
            await conn.execute(delete(target.table).where(key.in_(ids)))
        return ids

    async def run_cleanup(self, trigger: str = "manual") -> CleanupResult:
        """
        Run one cleanup pass.

        Args:
            trigger: 'manual' (admin request) or 'automatic' (scheduler tick)

        Returns:
            CleanupResult with status success, failed or skipped
        """
        if trigger not in TRIGGERS:
            raise ValueError(f"Unknown cleanup trigger: {trigger}")

        if self._processing:
            logger.warning("⚠️ Cleanup already in progress, skipping...")
            return CleanupResult(status="skipped", trigger=trigger, error="Cleanup already in progress")

        self._processing = True
        started = time.monotonic()
        now = utcnow()
        logger.info(f"🧹 Starting {trigger} cleanup at {now.isoformat()}")

        try:
            result = CleanupResult(status="success", trigger=trigger)
            try:
                async with self.connections.transaction() as conn:
                    for target in self.targets:
                        result.before[target.name] = await self._count(conn, target, self._cutoff(target, now))
                    logger.info(f"📊 Before cleanup: {result.before}")

                    for target in self.targets:
                        removed = await self._delete(conn, target, self._cutoff(target, now))
                        result.removed_ids[target.name] = removed
                        setattr(result, target.name, len(removed))

                    for target in self.targets:
                        counts = await self._count(conn, target, self._cutoff(target, now))
                        result.after[target.name] = counts["total"]
            except StoreConnectionError as e:
                result = CleanupResult(status="failed", trigger=trigger, error=str(e))
            except SQLAlchemyError as e:
                error = TransactionError(f"Cleanup transaction rolled back: {e}")
                result = CleanupResult(status="failed", trigger=trigger, error=str(error))

            result.duration_ms = int((time.monotonic() - started) * 1000)
            result.finished_at = utcnow()

            if result.success:
                logger.info(
                    f"✅ Cleanup completed: {result.total_removed} rows removed in {result.duration_ms}ms "
                    f"(public: {result.public_sessions}, admin: {result.admin_sessions}, "
                    f"user: {result.user_sessions}, geo: {result.geo_sessions})"
                )
            else:
                logger.error(f"❌ {trigger.capitalize()} cleanup failed: {result.error}")

            result.history_recorded = await self.history.record_cleanup(result.to_history_entry())
            return result
        finally:
            self._processing = False

    async def get_stats(self) -> Dict[str, Any]:
        """Current row counts per store."""
        now = utcnow()
        counts: Dict[str, Dict[str, int]] = {}
        async with self.connections.acquire_connection() as conn:
            for target in self.targets:
                counts[target.name] = await self._count(conn, target, self._cutoff(target, now))
            geo = SessionGeo.__table__
            active_devices = (await conn.execute(
                select(func.count(func.distinct(geo.c.session_id)))
                .where(geo.c.last_seen > now - self.active_device_window)
            )).scalar()

        cleanups = await self.history.count_cleanups()
        return {
            "public_sessions": counts["public_sessions"]["total"],
            "expired_public_sessions": counts["public_sessions"]["expired"],
            "admin_sessions": counts["admin_sessions"]["total"],
            "expired_admin_sessions": counts["admin_sessions"]["expired"],
            "user_sessions": counts["user_sessions"]["total"],
            "expired_user_sessions": counts["user_sessions"]["expired"],
            "session_geo": counts["geo_sessions"]["total"],
            "stale_session_geo": counts["geo_sessions"]["expired"],
            "active_devices": int(active_devices or 0),
            "geo_stale_hours": self.geo_stale_hours,
            **cleanups,
        }
