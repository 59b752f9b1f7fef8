"""
Session Middleware - Rolling Cookie Sessions

Loads the request's session from its store, creates one when the cookie is
missing or invalid, and after the response saves or touches it and
refreshes the cookie.
"""
import logging
from typing import Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from newsdesk.core.cookies import sign_session_id, unsign_session_id
from newsdesk.core.errors import NewsdeskError
from newsdesk.core.session_store import SessionData, SqlSessionStore

logger = logging.getLogger(__name__)


class SessionMiddleware(BaseHTTPMiddleware):
    """
    One instance per session population.

    Args:
        store: Backing SqlSessionStore
        cookie_name: Cookie carrying the signed session id
        secret: Cookie signing secret
        state_key: Attribute set on request.state
        path_prefix: Only requests under this path get a session
        save_uninitialized: Persist new sessions even if nothing was written
        secure: Send the cookie over HTTPS only (production)
    """

    def __init__(
        self,
        app,
        store: SqlSessionStore,
        cookie_name: str,
        secret: str,
        state_key: str,
        path_prefix: str = "/",
        save_uninitialized: bool = False,
        secure: bool = False
    ):
        super().__init__(app)
        self.store = store
        self.cookie_name = cookie_name
        self.secret = secret
        self.state_key = state_key
        self.path_prefix = path_prefix
        self.save_uninitialized = save_uninitialized
        self.secure = secure
        self.same_site = "none" if secure else "lax"

    async def _load(self, request: Request) -> SessionData:
        token = request.cookies.get(self.cookie_name)
        session_id = unsign_session_id(token, self.secret) if token else None

        session: Optional[SessionData] = None
        if session_id:
            try:
                session = await self.store.get(session_id)
            except NewsdeskError as e:
                logger.error(f"❌ Could not load {self.store.name} session: {e}")
        return session or self.store.new_session()

    async def _commit(self, session: SessionData, response: Response):
        if session.destroyed:
            response.delete_cookie(self.cookie_name, path="/")
            return

        try:
            if session.is_new:
                if not (self.save_uninitialized or session.modified):
                    return
                await self.store.set(session)
            elif session.modified:
                await self.store.set(session)
            elif not await self.store.touch(session.session_id):
                # Expired between load and touch
                return
        except NewsdeskError as e:
            logger.error(f"❌ Could not save {self.store.name} session: {e}")
            return

        response.set_cookie(
            self.cookie_name,
            sign_session_id(session.session_id, self.secret),
            max_age=int(self.store.max_age.total_seconds()),
            path="/",
            httponly=True,
            secure=self.secure,
            samesite=self.same_site,
        )

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        session = await self._load(request)
        setattr(request.state, self.state_key, session)

        response = await call_next(request)
        await self._commit(session, response)
        return response
