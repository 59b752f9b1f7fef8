"""
Connection Manager - Pooled Async Access to the Relational Store

Owns the SQLAlchemy async engine (connection pool), recreates it after
connection loss and retries transient query failures with backoff.
"""
import asyncio
import logging
import socket
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Union

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.sql import Executable

from newsdesk.config import Settings
from newsdesk.core.errors import StoreConnectionError
from newsdesk.models.database import Base, build_database_url, normalize_database_url
import newsdesk.models.sessions  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)

# Substrings of driver messages that mean the connection itself is gone
CONNECTION_LOSS_MARKERS = (
    "terminat",
    "connection refused",
    "econnrefused",
    "could not connect",
    "could not translate host name",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "connection reset",
    "connection was closed",
    "connection is closed",
    "server closed the connection",
    "unable to open database file",
    "timeout expired",
)

# Operational failures worth another attempt on the same pool
TRANSIENT_MARKERS = (
    "database is locked",
    "deadlock",
    "canceling statement",
    "statement timeout",
)


def is_connection_error(exc: BaseException) -> bool:
    """True if the error means the pool's connections can no longer be trusted."""
    if isinstance(exc, StoreConnectionError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, (ConnectionError, socket.gaierror, asyncio.TimeoutError, PoolTimeoutError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in CONNECTION_LOSS_MARKERS)


def is_transient_error(exc: BaseException) -> bool:
    """True if retrying the same statement may succeed."""
    if is_connection_error(exc):
        return True
    if isinstance(exc, OperationalError):
        message = str(exc).lower()
        return any(marker in message for marker in TRANSIENT_MARKERS)
    return False


class ConnectionManager:
    """
    Lazily-created connection pool with a capped reconnection policy.

    Features:
    - Pool creation gated by an asyncio.Lock (callers await readiness)
    - Pool discarded on connection loss, recreated on next use
    - Recreation stops after `DB_MAX_RECONNECT_ATTEMPTS` until reset()
    - Query retries with capped exponential backoff
    - Per-connection statement / idle-in-transaction timeouts
    """

    def __init__(self, settings: Settings, database_url: Optional[str] = None):
        self.settings = settings
        if database_url:
            self.url, self._connect_args = normalize_database_url(database_url)
        else:
            self.url, self._connect_args = build_database_url(settings)

        self.max_retries = max(1, settings.DB_QUERY_MAX_RETRIES)
        self.backoff_seconds = settings.DB_RETRY_BACKOFF_SECONDS
        self.backoff_cap_seconds = settings.DB_RETRY_BACKOFF_CAP_SECONDS
        self.max_reconnect_attempts = settings.DB_MAX_RECONNECT_ATTEMPTS

        self._engine: Optional[AsyncEngine] = None
        self._lock = asyncio.Lock()
        self._reconnect_attempts = 0
        self._exhausted = False

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def is_exhausted(self) -> bool:
        """True once automatic pool recreation has given up."""
        return self._exhausted

    def _create_engine(self) -> AsyncEngine:
        connect_args: Dict[str, Any] = dict(self._connect_args)
        engine_kwargs: Dict[str, Any] = {
            "echo": self.settings.LOG_LEVEL.upper() == "DEBUG",
            "pool_pre_ping": True,
        }

        if self.is_sqlite:
            connect_args.setdefault("check_same_thread", False)
        else:
            connect_args.setdefault("timeout", self.settings.DB_CONNECT_TIMEOUT_SECONDS)
            connect_args.setdefault("server_settings", {
                "statement_timeout": str(self.settings.DB_STATEMENT_TIMEOUT_MS),
                "idle_in_transaction_session_timeout": str(self.settings.DB_IDLE_IN_TRANSACTION_TIMEOUT_MS),
            })
            engine_kwargs.update(
                pool_size=self.settings.DB_POOL_SIZE,
                max_overflow=self.settings.DB_MAX_OVERFLOW,
                pool_timeout=self.settings.DB_POOL_TIMEOUT_SECONDS,
            )

        engine = create_async_engine(self.url, connect_args=connect_args, **engine_kwargs)
        event.listen(engine.sync_engine, "connect", self._on_connect)
        return engine

    def _on_connect(self, dbapi_connection, connection_record):
        """Apply per-connection settings the driver can't take as connect args."""
        if self.is_sqlite:
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA busy_timeout = {int(self.settings.DB_STATEMENT_TIMEOUT_MS)}")
            cursor.close()
        logger.debug("✅ Database pool client connected")

    async def get_engine(self) -> AsyncEngine:
        """Return the pool, creating it on first use."""
        if self._engine is not None:
            return self._engine

        async with self._lock:
            if self._engine is None:
                if self._exhausted:
                    raise StoreConnectionError(
                        "Database pool recreation disabled after "
                        f"{self.max_reconnect_attempts} attempts; manual intervention required"
                    )
                self._engine = self._create_engine()
                logger.info(f"🔌 Database pool created ({self.url.split('://')[0]})")
        return self._engine

    async def _discard_pool(self, error: BaseException):
        """Drop the pool after connection loss so the next caller rebuilds it."""
        async with self._lock:
            engine, self._engine = self._engine, None
            if engine is None:
                return
            self._reconnect_attempts += 1
            if self._reconnect_attempts >= self.max_reconnect_attempts:
                self._exhausted = True
                logger.critical(
                    f"❌ Database connection lost {self._reconnect_attempts} times, "
                    f"automatic reconnection stopped. Manual intervention required: {error}"
                )
            else:
                logger.warning(
                    f"🔄 Database connection lost ({error}). Pool will be recreated "
                    f"(attempt {self._reconnect_attempts}/{self.max_reconnect_attempts})"
                )

        try:
            await engine.dispose()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"⚠️ Error disposing broken pool: {e}")

    @asynccontextmanager
    async def acquire_connection(self) -> AsyncIterator[AsyncConnection]:
        """
        Check a connection out of the pool.

        Raises:
            StoreConnectionError: store unreachable or connection lost while in use
        """
        engine = await self.get_engine()
        try:
            conn = await engine.connect()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            if is_connection_error(e):
                await self._discard_pool(e)
                raise StoreConnectionError(f"Could not acquire database connection: {e}") from e
            raise

        self._reconnect_attempts = 0
        try:
            yield conn
        except (SQLAlchemyError, OSError) as e:
            if isinstance(e, StoreConnectionError) or not is_connection_error(e):
                raise
            await self._discard_pool(e)
            raise StoreConnectionError(f"Database connection lost: {e}") from e
        finally:
            try:
                await conn.close()
            except (SQLAlchemyError, OSError) as e:
                logger.warning(f"⚠️ Error releasing connection: {e}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Connection inside BEGIN; commits on exit, rolls back on error."""
        async with self.acquire_connection() as conn:
            async with conn.begin():
                yield conn

    async def execute_query(
        self,
        statement: Union[str, Executable],
        params: Optional[Dict[str, Any]] = None
    ):
        """
        Execute a single statement in its own transaction, retrying transient failures.

        Args:
            statement: SQL text or SQLAlchemy Core statement
            params: Bound parameters

        Returns:
            Buffered SQLAlchemy result
        """
        if isinstance(statement, str):
            statement = text(statement)

        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.transaction() as conn:
                    if params:
                        return await conn.execute(statement, params)
                    return await conn.execute(statement)
            except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
                if not is_transient_error(e) or attempt >= self.max_retries or self._exhausted:
                    raise
                delay = min(self.backoff_seconds * (2 ** (attempt - 1)), self.backoff_cap_seconds)
                logger.warning(
                    f"⚠️ Query failed, retrying in {delay:.1f}s "
                    f"({self.max_retries - attempt} left): {e}"
                )
                await asyncio.sleep(delay)

    async def ping(self) -> bool:
        """Single round trip, no retries."""
        async with self.acquire_connection() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def check_connection(self, attempts: int = 5, delay: float = 2.0) -> bool:
        """Startup connectivity check. Returns False instead of raising when the store stays down."""
        for attempt in range(1, attempts + 1):
            try:
                await self.ping()
                logger.info("✅ Database connection OK")
                return True
            except (StoreConnectionError, SQLAlchemyError, OSError) as e:
                logger.error(f"❌ Database connection attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    self.reset()
                    await asyncio.sleep(delay)
        return False

    def reset(self):
        """Re-enable automatic pool recreation after manual intervention."""
        self._reconnect_attempts = 0
        self._exhausted = False

    async def create_tables(self):
        """Create any missing tables."""
        async with self.transaction() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables initialized")

    async def close_all(self):
        """Release all pooled connections. Safe to call more than once."""
        async with self._lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            await engine.dispose()
            logger.info("🔻 Database pool closed")
