"""
History Reporter - Cleanup Audit Trail

Appends cleanup results and scheduler transitions to the store and reads
them back for the admin endpoints. Writes are best effort.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from newsdesk.core.connection import ConnectionManager
from newsdesk.core.errors import HistoryWriteError
from newsdesk.models.database import utcnow
from newsdesk.models.sessions import CleanupHistory, SchedulerLog

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 100


class HistoryReporter:
    """Reads and writes `cleanup_history` and `scheduler_logs`."""

    def __init__(self, connections: ConnectionManager, default_limit: int = 20):
        self.connections = connections
        self.default_limit = default_limit

    async def _append(self, statement, what: str):
        try:
            await self.connections.execute_query(statement)
        except (SQLAlchemyError, OSError) as e:
            raise HistoryWriteError(f"Failed to write {what}: {e}") from e

    async def record_cleanup(self, entry: Dict[str, Any]) -> bool:
        """
        Append a cleanup result row.

        Args:
            entry: Column values, see CleanupResult.to_history_entry()

        Returns:
            True if written, False if the write failed (the failure is logged)
        """
        values = {
            "type": entry["type"],
            "public_sessions": entry.get("public_sessions", 0),
            "admin_sessions": entry.get("admin_sessions", 0),
            "user_sessions": entry.get("user_sessions", 0),
            "geo_sessions": entry.get("geo_sessions", 0),
            "preserved_device_info": 0,
            "preserved_geographic_data": 0,
            "total_sessions": entry.get("total_sessions", 0),
            "duration_ms": entry.get("duration_ms", 0),
            "status": entry["status"],
            "error_message": entry.get("error_message"),
            "triggered_by": entry.get("triggered_by", "system"),
            "cleaned_at": entry.get("cleaned_at") or utcnow(),
        }
        try:
            await self._append(insert(CleanupHistory).values(**values), "cleanup history")
            return True
        except HistoryWriteError as e:
            logger.error(f"❌ {e}")
            return False

    async def record_scheduler_event(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Append a scheduler audit row (started, stopped, disabled)."""
        statement = insert(SchedulerLog).values(
            event_type=event_type,
            event_data=data or {},
            created_at=utcnow(),
        )
        try:
            await self._append(statement, f"scheduler event '{event_type}'")
            return True
        except HistoryWriteError as e:
            logger.error(f"❌ {e}")
            return False

    async def get_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent cleanup runs first."""
        limit = limit or self.default_limit
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))

        table = CleanupHistory.__table__
        statement = (
            select(table)
            .order_by(table.c.cleaned_at.desc(), table.c.cleanup_id.desc())
            .limit(limit)
        )
        result = await self.connections.execute_query(statement)
        return [self._to_dict(row) for row in result.mappings().all()]

    async def get_scheduler_events(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent scheduler transitions first."""
        limit = max(1, min(limit or self.default_limit, MAX_HISTORY_LIMIT))
        table = SchedulerLog.__table__
        statement = (
            select(table)
            .order_by(table.c.created_at.desc(), table.c.id.desc())
            .limit(limit)
        )
        result = await self.connections.execute_query(statement)
        return [
            {
                "id": str(row["id"]),
                "event_type": row["event_type"],
                "event_data": row["event_data"] or {},
                "timestamp": row["created_at"].isoformat() if row["created_at"] else None,
            }
            for row in result.mappings().all()
        ]

    async def count_cleanups(self) -> Dict[str, int]:
        statement = select(
            func.count(CleanupHistory.cleanup_id),
            func.coalesce(func.sum(case((CleanupHistory.status == "success", 1), else_=0)), 0),
        )
        result = await self.connections.execute_query(statement)
        total, successful = result.one()
        return {"total_cleanups": int(total or 0), "successful_cleanups": int(successful or 0)}

    @staticmethod
    def _to_dict(row) -> Dict[str, Any]:
        return {
            "id": str(row["cleanup_id"]),
            "type": row["type"],
            "results": {
                "public_sessions": row["public_sessions"] or 0,
                "admin_sessions": row["admin_sessions"] or 0,
                "user_sessions": row["user_sessions"] or 0,
                "geo_sessions": row["geo_sessions"] or 0,
                "preserved_device_info": row["preserved_device_info"] or 0,
                "preserved_geographic_data": row["preserved_geographic_data"] or 0,
                "total_removed": row["total_sessions"] or 0,
            },
            "duration_ms": row["duration_ms"],
            "status": row["status"],
            "error": row["error_message"],
            "triggered_by": row["triggered_by"],
            "timestamp": row["cleaned_at"].isoformat() if row["cleaned_at"] else None,
        }
