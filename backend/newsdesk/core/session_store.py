"""
Session Store - SQL-backed Cookie Sessions

Admin and public sessions live in separate tables with identical shape
(sid, sess, expire). Rows past `expire` are invisible to get() and are
removed by the cleanup engine.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from dataclasses import dataclass, field

from sqlalchemy import Table, delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from newsdesk.core.connection import ConnectionManager
from newsdesk.core.cookies import new_session_id
from newsdesk.core.errors import SessionStoreError, StoreConnectionError
from newsdesk.models.database import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SessionData:
    """Session attached to a request."""
    session_id: str
    data: Dict[str, Any]
    expires_at: datetime
    is_new: bool = False
    modified: bool = False
    destroyed: bool = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any):
        self.data[key] = value
        self.modified = True


class SqlSessionStore:
    """
    Session persistence for one population (admin or public).

    Every method either returns its result or raises StoreConnectionError /
    SessionStoreError.
    """

    def __init__(self, connections: ConnectionManager, table: Table, max_age_seconds: int, name: str):
        self.connections = connections
        self.table = table
        self.max_age = timedelta(seconds=max_age_seconds)
        self.name = name

    def _expiry(self) -> datetime:
        return utcnow() + self.max_age

    def new_session(self) -> SessionData:
        """Unsaved session for a request without a valid cookie."""
        return SessionData(
            session_id=new_session_id(),
            data={},
            expires_at=self._expiry(),
            is_new=True,
        )

    async def _run(self, statement, action: str):
        try:
            return await self.connections.execute_query(statement)
        except StoreConnectionError:
            raise
        except (SQLAlchemyError, OSError) as e:
            raise SessionStoreError(f"Failed to {action} {self.name} session: {e}") from e

    async def get(self, session_id: str) -> Optional[SessionData]:
        """
        Load a live session.

        Returns:
            SessionData if found and not expired, None otherwise
        """
        t = self.table
        statement = select(t.c.sess, t.c.expire).where(t.c.sid == session_id, t.c.expire >= utcnow())
        row = (await self._run(statement, "load")).first()
        if row is None:
            return None
        return SessionData(session_id=session_id, data=dict(row.sess or {}), expires_at=row.expire)

    async def set(self, session: SessionData) -> SessionData:
        """Insert or replace the session row and extend its expiry."""
        t = self.table
        session.expires_at = self._expiry()
        values = {"sess": session.data, "expire": session.expires_at}
        try:
            async with self.connections.transaction() as conn:
                result = await conn.execute(update(t).where(t.c.sid == session.session_id).values(**values))
                if result.rowcount == 0:
                    await conn.execute(insert(t).values(sid=session.session_id, **values))
        except StoreConnectionError:
            raise
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to save {self.name} session: {e}") from e

        session.is_new = False
        session.modified = False
        return session

    async def touch(self, session_id: str) -> bool:
        """Extend expiry without rewriting the payload. False if the session is gone."""
        t = self.table
        statement = (
            update(t)
            .where(t.c.sid == session_id, t.c.expire >= utcnow())
            .values(expire=self._expiry())
        )
        result = await self._run(statement, "touch")
        return result.rowcount > 0

    async def destroy(self, session_id: str) -> bool:
        """Delete a session (logout)."""
        result = await self._run(delete(self.table).where(self.table.c.sid == session_id), "destroy")
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"🗑️ {self.name.capitalize()} session destroyed: {session_id[:8]}...")
        return deleted

    async def length(self) -> int:
        """Count of stored sessions, expired rows included."""
        result = await self._run(select(func.count()).select_from(self.table), "count")
        return int(result.scalar() or 0)
