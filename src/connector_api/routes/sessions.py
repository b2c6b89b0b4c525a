"""
Session endpoints.

GET /location/{location_id}/session is public: the pairing page polls it.
Everything else requires a bearer token.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from connector_api.deps import get_controller, rate_limit, require_tenant
from whatsapp_connector.ratelimit import SESSIONS
from whatsapp_connector.service.lifecycle import SessionLifecycleController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/location", tags=["sessions"])


@router.get("/admin/sessions")
async def list_sessions(
    tenant_id: UUID = Depends(require_tenant),
    controller: SessionLifecycleController = Depends(get_controller),
):
    """All sessions of the tenant with their location."""
    sessions = controller.list_sessions(tenant_id)
    return {"sessions": sessions, "count": len(sessions)}


@router.post("/{location_id}/session", dependencies=[Depends(rate_limit(SESSIONS))])
async def create_session(
    location_id: str,
    tenant_id: UUID = Depends(require_tenant),
    controller: SessionLifecycleController = Depends(get_controller),
):
    """Create a session for the location, or restart its current one."""
    session_id = await controller.create_or_restart_session(tenant_id, location_id)
    return {
        "success": True,
        "sessionId": str(session_id),
        "message": "Session initialization started",
    }


@router.get("/{location_id}/session")
async def get_session_status(
    location_id: str,
    controller: SessionLifecycleController = Depends(get_controller),
):
    """Current session status and pairing code of a location."""
    return controller.get_status(location_id).to_dict()


@router.delete("/{location_id}/session")
async def delete_session(
    location_id: str,
    tenant_id: UUID = Depends(require_tenant),
    controller: SessionLifecycleController = Depends(get_controller),
):
    session_id = await controller.delete_session(tenant_id, location_id)
    return {"success": True, "sessionId": str(session_id), "message": "Session deleted successfully"}
