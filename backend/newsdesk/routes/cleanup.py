"""
Cleanup admin endpoints - manual runs, stats, scheduler control and history.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from newsdesk.core.container import ServiceContainer
from newsdesk.core.errors import NewsdeskError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/system-services/cleanup", tags=["cleanup"])


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def error_response(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "message": str(exc)}
    )


# Request models
class SchedulerStartRequest(BaseModel):
    interval_hours: Optional[float] = Field(default=None, gt=0)

class IntervalRequest(BaseModel):
    interval_hours: float = Field(gt=0)


@router.post("/run-now")
async def run_now(services: ServiceContainer = Depends(get_services)):
    """Run a manual cleanup pass and return its counts."""
    logger.info("🧹 Manual cleanup triggered by admin")
    try:
        result = await services.scheduler.run_cleanup("manual")
    except (NewsdeskError, SQLAlchemyError) as e:
        logger.error(f"❌ Manual cleanup error: {e}")
        return error_response(500, "Cleanup action failed", e)

    body = result.to_dict()
    if result.skipped:
        body["message"] = "Cleanup already in progress"
        return JSONResponse(status_code=409, content=body)
    if not result.success:
        body["message"] = "Manual cleanup failed"
        return JSONResponse(status_code=500, content=body)

    body["message"] = "Manual cleanup completed"
    return body


@router.get("/stats")
async def cleanup_stats(services: ServiceContainer = Depends(get_services)):
    """Current row counts per store."""
    try:
        stats = await services.engine.get_stats()
    except (NewsdeskError, SQLAlchemyError) as e:
        logger.error(f"❌ Get stats error: {e}")
        return error_response(500, "Failed to fetch cleanup stats", e)
    return {"success": True, "stats": stats}


@router.get("/status")
async def cleanup_status(services: ServiceContainer = Depends(get_services)):
    """Scheduler state."""
    return {"success": True, "status": services.scheduler.get_status()}


@router.get("/history")
async def cleanup_history(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    services: ServiceContainer = Depends(get_services)
):
    """Most recent cleanup runs first."""
    try:
        history = await services.history.get_history(limit)
    except (NewsdeskError, SQLAlchemyError) as e:
        logger.error(f"❌ Get history error: {e}")
        return error_response(500, "Failed to fetch cleanup history", e)
    return {"success": True, "count": len(history), "history": history}


@router.get("/scheduler-logs")
async def scheduler_logs(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    services: ServiceContainer = Depends(get_services)
):
    """Scheduler start/stop/disable audit trail, newest first."""
    try:
        events = await services.history.get_scheduler_events(limit)
    except (NewsdeskError, SQLAlchemyError) as e:
        logger.error(f"❌ Get scheduler logs error: {e}")
        return error_response(500, "Failed to fetch scheduler logs", e)
    return {"success": True, "count": len(events), "events": events}


@router.post("/scheduler-start")
async def scheduler_start(
    request: SchedulerStartRequest = None,
    services: ServiceContainer = Depends(get_services)
):
    """Start or restart the scheduler. Runs one pass immediately."""
    interval = request.interval_hours if request else None
    try:
        return await services.scheduler.start(interval)
    except (NewsdeskError, SQLAlchemyError) as e:
        logger.error(f"❌ Failed to start cleanup scheduler: {e}")
        return error_response(500, "Failed to start cleanup scheduler", e)


@router.post("/scheduler-stop")
async def scheduler_stop(services: ServiceContainer = Depends(get_services)):
    """Stop the scheduler. No-op if already stopped."""
    result = await services.scheduler.stop()
    result["status"] = services.scheduler.get_status()
    return result


@router.put("/interval")
async def update_interval(
    request: IntervalRequest,
    services: ServiceContainer = Depends(get_services)
):
    """Change the interval; restarts the scheduler if it is running."""
    try:
        return await services.scheduler.update_interval(request.interval_hours)
    except (NewsdeskError, SQLAlchemyError) as e:
        logger.error(f"❌ Failed to update cleanup interval: {e}")
        return error_response(500, "Failed to update cleanup interval", e)
