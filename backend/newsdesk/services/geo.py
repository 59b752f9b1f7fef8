"""
Geo tracking - per-session visitor location and visit counts.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import insert, select, update

from newsdesk.core.connection import ConnectionManager
from newsdesk.models.database import utcnow
from newsdesk.models.sessions import SessionGeo

logger = logging.getLogger(__name__)


class GeoTracker:
    """Upserts one `session_geo` row per public session."""

    def __init__(self, connections: ConnectionManager):
        self.connections = connections
        self.table = SessionGeo.__table__

    async def record_visit(
        self,
        session_id: str,
        category: Optional[str] = None,
        county: Optional[str] = None,
        town: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Count a visit for a session.

        Location fields left as None keep their stored values.

        Returns:
            The row after the update
        """
        t = self.table
        now = utcnow()
        location = {
            key: value
            for key, value in (("category", category), ("county", county), ("town", town))
            if value is not None
        }

        async with self.connections.transaction() as conn:
            result = await conn.execute(
                update(t)
                .where(t.c.session_id == session_id)
                .values(visit_count=t.c.visit_count + 1, last_seen=now, **location)
            )
            if result.rowcount == 0:
                await conn.execute(insert(t).values(
                    session_id=session_id,
                    visit_count=1,
                    first_seen=now,
                    last_seen=now,
                    **location,
                ))
                logger.debug(f"📍 New geo session: {session_id[:8]}... ({county or 'unknown'})")

            row = (await conn.execute(select(t).where(t.c.session_id == session_id))).mappings().one()

        return {
            "session_id": row["session_id"],
            "category": row["category"],
            "county": row["county"],
            "town": row["town"],
            "visit_count": row["visit_count"],
            "first_seen": row["first_seen"].isoformat(),
            "last_seen": row["last_seen"].isoformat(),
        }
