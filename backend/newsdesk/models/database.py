"""
Database URL handling and SQLAlchemy declarative base.
Uses PostgreSQL (asyncpg) in production; SQLite (aiosqlite) works for local dev and tests.
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Tuple
from sqlalchemy.engine import URL
from sqlalchemy.orm import DeclarativeBase

from newsdesk.config import Settings


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_database_url(url: str) -> Tuple[str, Dict[str, Any]]:
    """
    Convert a connection string into an async SQLAlchemy URL.

    Returns:
        Tuple of (url, connect_args)
    """
    connect_args: Dict[str, Any] = {}

    # Convert postgres:// to postgresql+asyncpg:// for SQLAlchemy compatibility
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # asyncpg takes ssl as a connect arg instead of sslmode in the query string
    if "asyncpg" in url and "sslmode=" in url:
        match = re.search(r'sslmode=([^&]*)', url)
        url = re.sub(r'[\?&]sslmode=[^&]*', '', url).rstrip('?&')
        if match and match.group(1) != "disable":
            connect_args["ssl"] = "require"

    return url, connect_args


def build_database_url(settings: Settings) -> Tuple[str, Dict[str, Any]]:
    """Resolve DATABASE_URL, falling back to the discrete DB_* parameters."""
    if settings.DATABASE_URL:
        return normalize_database_url(settings.DATABASE_URL)

    url = URL.create(
        "postgresql+asyncpg",
        username=settings.DB_USER,
        password=settings.DB_PASSWORD or None,
        host=settings.DB_HOST,
        port=settings.DB_PORT,
        database=settings.DB_NAME,
    )
    return url.render_as_string(hide_password=False), {}
