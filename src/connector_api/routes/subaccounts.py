"""
Subaccount administration endpoints.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from connector_api.deps import get_controller, require_tenant
from connector_api.schemas import ConnectSubaccountRequest, SubaccountOut, UpdateSubaccountRequest
from connector_core.db import get_db
from whatsapp_connector.service.lifecycle import SessionLifecycleController
from whatsapp_connector.service.subaccounts import SubaccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/subaccounts", tags=["subaccounts"])


def _out(subaccount) -> dict:
    return SubaccountOut.model_validate(subaccount).model_dump(mode="json")


@router.post("/connect")
async def connect_subaccount(
    request: ConnectSubaccountRequest,
    tenant_id: UUID = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    """Bind a CRM location to the tenant (or rename it if already bound)."""
    subaccount, created = SubaccountService(db).connect(tenant_id, request.location_id, request.name)
    return {
        "success": True,
        "subaccount": _out(subaccount),
        "message": "Subaccount connected successfully" if created else "Subaccount updated successfully",
    }


@router.get("")
async def list_subaccounts(
    tenant_id: UUID = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    subaccounts = SubaccountService(db).list_for_tenant(tenant_id)
    return {"subaccounts": [_out(s) for s in subaccounts], "count": len(subaccounts)}


@router.get("/{location_id}")
async def get_subaccount(
    location_id: str,
    tenant_id: UUID = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    return {"subaccount": _out(SubaccountService(db).get(tenant_id, location_id))}


@router.put("/{location_id}")
async def update_subaccount(
    location_id: str,
    request: UpdateSubaccountRequest,
    tenant_id: UUID = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    subaccount = SubaccountService(db).rename(tenant_id, location_id, request.name)
    return {"success": True, "subaccount": _out(subaccount)}


@router.delete("/{location_id}")
async def delete_subaccount(
    location_id: str,
    tenant_id: UUID = Depends(require_tenant),
    db: Session = Depends(get_db),
    controller: SessionLifecycleController = Depends(get_controller),
):
    """Delete the subaccount with its sessions, messages and installation."""
    async with controller.registry.lock_for(location_id):
        session_ids = SubaccountService(db).delete(tenant_id, location_id)
        await controller.release_sessions(session_ids)
    return {"success": True, "message": "Subaccount deleted successfully", "deletedSessions": len(session_ids)}
