from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from newsdesk.config import Settings, settings as default_settings
from newsdesk.core.container import ServiceContainer
from newsdesk.core.errors import NewsdeskError, StoreConnectionError
from newsdesk.core.session_middleware import SessionMiddleware
from newsdesk.models.database import utcnow
from newsdesk.routes import cleanup as cleanup_routes
from newsdesk.routes import sessions as session_routes
import logging

# Configure logging
logging.basicConfig(
    level=getattr(logging, default_settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

ADMIN_COOKIE_NAME = "newsdesk_admin_session"
PUBLIC_COOKIE_NAME = "newsdesk_public_session"


def create_app(settings: Optional[Settings] = None, database_url: Optional[str] = None) -> FastAPI:
    """
    Build the API with its own service container.

    Args:
        settings: Configuration (defaults to environment / .env)
        database_url: Override for settings.DATABASE_URL
    """
    settings = settings or default_settings
    services = ServiceContainer.build(settings, database_url=database_url)

    app = FastAPI(
        title="Newsdesk API",
        description="News site backend: sessions, geo tracking and maintenance",
        version="1.0.0"
    )
    app.state.services = services

    # Middleware (last added runs first)
    app.add_middleware(
        SessionMiddleware,
        store=services.admin_sessions,
        cookie_name=ADMIN_COOKIE_NAME,
        secret=settings.SESSION_SECRET,
        state_key="admin_session",
        path_prefix="/api/admin",
        save_uninitialized=False,
        secure=settings.is_production,
    )
    app.add_middleware(
        SessionMiddleware,
        store=services.public_sessions,
        cookie_name=PUBLIC_COOKIE_NAME,
        secret=settings.SESSION_SECRET,
        state_key="public_session",
        path_prefix="/api",
        save_uninitialized=True,
        secure=settings.is_production,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(cleanup_routes.router)
    app.include_router(session_routes.router)

    @app.exception_handler(StoreConnectionError)
    async def store_unavailable_handler(request: Request, exc: StoreConnectionError):
        logger.error(f"❌ Database unavailable on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": "Database unavailable", "message": str(exc)}
        )

    @app.exception_handler(NewsdeskError)
    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: Exception):
        logger.error(f"❌ Store error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "message": str(exc) if not settings.is_production else None
            }
        )

    @app.get("/")
    async def root():
        """Liveness check"""
        return {
            "status": "healthy",
            "service": "newsdesk",
            "version": "1.0.0"
        }

    @app.get("/health")
    async def health():
        """Database connectivity plus scheduler state"""
        scheduler_status = services.scheduler.get_status()
        database = {"status": "connected"}
        try:
            await services.connections.ping()
        except (NewsdeskError, SQLAlchemyError, OSError) as e:
            database = {"status": "disconnected", "error": str(e)}

        healthy = database["status"] == "connected"
        body = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": utcnow().isoformat(),
            "environment": settings.ENVIRONMENT,
            "database": database,
            "scheduler": {
                "running": scheduler_status["is_running"],
                "processing": scheduler_status["is_processing"],
                "next_run": scheduler_status["next_run"],
                "failure_count": scheduler_status["failure_count"],
            }
        }
        if not healthy:
            return JSONResponse(status_code=503, content=body)
        return body

    @app.get("/metrics")
    async def get_metrics(limit: int = 10):
        """Cleanup metrics snapshot"""
        stats = services.metrics.get_stats()
        stats["recent_passes"] = services.metrics.get_recent_passes(limit)
        return stats

    @app.on_event("startup")
    async def startup_event():
        """Initialize services on startup"""
        logger.info("Starting Newsdesk API...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")

        connected = await services.connections.check_connection(
            attempts=settings.DB_STARTUP_ATTEMPTS,
            delay=settings.DB_STARTUP_RETRY_DELAY_SECONDS
        )
        if not connected:
            logger.warning("⚠️ Database not available, cleanup scheduler not started")
            return

        if settings.DB_CREATE_TABLES:
            await services.connections.create_tables()

        if settings.CLEANUP_SCHEDULER_ENABLED:
            await services.scheduler.start(settings.CLEANUP_INTERVAL_HOURS)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the scheduler and drain the pool"""
        logger.info("Shutting down Newsdesk API...")
        await services.scheduler.shutdown()
        await services.connections.close_all()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "newsdesk.main:app",
        host="0.0.0.0",
        port=5000,
        reload=default_settings.DEBUG,
        log_level="info"
    )
