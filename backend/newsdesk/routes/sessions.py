"""
Session endpoints - logout for both session populations and geo visit tracking.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from newsdesk.core.container import ServiceContainer
from newsdesk.routes.cleanup import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])


class GeoVisitRequest(BaseModel):
    category: Optional[str] = Field(default=None, max_length=100)
    county: Optional[str] = Field(default=None, max_length=100)
    town: Optional[str] = Field(default=None, max_length=100)


async def _logout(request: Request, state_key: str, store) -> dict:
    session = getattr(request.state, state_key)
    destroyed = False
    if not session.is_new:
        destroyed = await store.destroy(session.session_id)
    session.destroyed = True
    return {"success": True, "message": "Logged out successfully", "session_destroyed": destroyed}


@router.post("/api/admin/auth/logout")
async def admin_logout(request: Request, services: ServiceContainer = Depends(get_services)):
    """Destroy the admin session and clear its cookie."""
    return await _logout(request, "admin_session", services.admin_sessions)


@router.post("/api/client/auth/logout")
async def client_logout(request: Request, services: ServiceContainer = Depends(get_services)):
    """Destroy the public session and clear its cookie."""
    return await _logout(request, "public_session", services.public_sessions)


@router.post("/api/geo/track")
async def track_visit(
    payload: GeoVisitRequest,
    request: Request,
    services: ServiceContainer = Depends(get_services)
):
    """Count a visit for the caller's public session."""
    session = request.state.public_session
    device = await services.geo.record_visit(
        session.session_id,
        category=payload.category,
        county=payload.county,
        town=payload.town,
    )
    return {"success": True, "device": device}
