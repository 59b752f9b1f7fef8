"""Row seeding for tests."""
from datetime import timedelta
from typing import List, Tuple

from sqlalchemy import func, insert, select

from newsdesk.core.connection import ConnectionManager
from newsdesk.models.database import utcnow
from newsdesk.models.sessions import SessionGeo, UserSession


class Seeder:
    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    async def sessions(self, model, expired: int = 0, live: int = 0, prefix: str = "sid") -> Tuple[List[str], List[str]]:
        """Insert cookie-session rows; returns (expired_ids, live_ids)."""
        now = utcnow()
        expired_ids = [f"{prefix}-expired-{i}" for i in range(expired)]
        live_ids = [f"{prefix}-live-{i}" for i in range(live)]
        rows = [
            {"sid": sid, "sess": {"n": i}, "expire": now - timedelta(hours=1)}
            for i, sid in enumerate(expired_ids)
        ] + [
            {"sid": sid, "sess": {"n": i}, "expire": now + timedelta(hours=1)}
            for i, sid in enumerate(live_ids)
        ]
        if rows:
            await self.connections.execute_query(insert(model.__table__), rows)
        return expired_ids, live_ids

    async def user_sessions(self, expired: int = 0, live: int = 0) -> Tuple[List[str], List[str]]:
        now = utcnow()
        expired_ids = [f"user-expired-{i}" for i in range(expired)]
        live_ids = [f"user-live-{i}" for i in range(live)]
        rows = [
            {"session_id": sid, "user_id": "reader-1", "is_active": True,
             "created_at": now - timedelta(days=2), "expires_at": now - timedelta(minutes=5)}
            for sid in expired_ids
        ] + [
            {"session_id": sid, "user_id": "reader-2", "is_active": True,
             "created_at": now, "expires_at": now + timedelta(days=1)}
            for sid in live_ids
        ]
        if rows:
            await self.connections.execute_query(insert(UserSession.__table__), rows)
        return expired_ids, live_ids

    async def geo(self, ages_hours: List[float]) -> List[str]:
        """One geo row per age, last seen that many hours ago."""
        now = utcnow()
        ids = [f"geo-{i}" for i in range(len(ages_hours))]
        rows = [
            {"session_id": sid, "county": "Nairobi", "town": "Westlands", "visit_count": 1,
             "first_seen": now - timedelta(hours=age), "last_seen": now - timedelta(hours=age)}
            for sid, age in zip(ids, ages_hours)
        ]
        if rows:
            await self.connections.execute_query(insert(SessionGeo.__table__), rows)
        return ids

    async def count(self, model) -> int:
        result = await self.connections.execute_query(select(func.count()).select_from(model.__table__))
        return result.scalar()
