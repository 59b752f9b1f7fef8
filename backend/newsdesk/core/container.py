"""
Service wiring. One container per application instance; nothing here is a
module-level singleton, so tests can build isolated containers.
"""
from dataclasses import dataclass
from typing import Optional

from newsdesk.config import Settings
from newsdesk.core.cleanup import CleanupEngine
from newsdesk.core.connection import ConnectionManager
from newsdesk.core.history import HistoryReporter
from newsdesk.core.scheduler import CleanupScheduler
from newsdesk.core.session_store import SqlSessionStore
from newsdesk.models.sessions import AdminSession, PublicSession
from newsdesk.services.geo import GeoTracker
from newsdesk.services.metrics import CleanupMetrics


@dataclass
class ServiceContainer:
    settings: Settings
    connections: ConnectionManager
    history: HistoryReporter
    engine: CleanupEngine
    metrics: CleanupMetrics
    scheduler: CleanupScheduler
    admin_sessions: SqlSessionStore
    public_sessions: SqlSessionStore
    geo: GeoTracker

    @classmethod
    def build(cls, settings: Settings, database_url: Optional[str] = None) -> "ServiceContainer":
        connections = ConnectionManager(settings, database_url=database_url)
        history = HistoryReporter(connections, default_limit=settings.CLEANUP_HISTORY_DEFAULT_LIMIT)
        engine = CleanupEngine(
            connections,
            history,
            geo_stale_hours=settings.CLEANUP_GEO_STALE_HOURS,
            active_device_window_days=settings.ACTIVE_DEVICE_WINDOW_DAYS,
        )
        metrics = CleanupMetrics()
        scheduler = CleanupScheduler(
            engine,
            history,
            metrics=metrics,
            interval_hours=settings.CLEANUP_INTERVAL_HOURS,
            max_failures=settings.CLEANUP_MAX_FAILURES,
        )
        return cls(
            settings=settings,
            connections=connections,
            history=history,
            engine=engine,
            metrics=metrics,
            scheduler=scheduler,
            admin_sessions=SqlSessionStore(
                connections, AdminSession.__table__, settings.ADMIN_SESSION_MAX_AGE_SECONDS, "admin"
            ),
            public_sessions=SqlSessionStore(
                connections, PublicSession.__table__, settings.PUBLIC_SESSION_MAX_AGE_SECONDS, "public"
            ),
            geo=GeoTracker(connections),
        )
