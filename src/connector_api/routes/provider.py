"""
CRM conversation-provider endpoints.

- GET /provider: pairing page opened from the CRM custom menu link
- POST /provider/messages: outbound messages pushed by the CRM
- POST /provider/install: store the provider credentials of a location
"""

import logging
from pathlib import Path
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from connector_api.deps import get_controller, get_relay, rate_limit, require_tenant
from connector_api.schemas import ProviderInstallRequest, ProviderMessageRequest
from connector_core.db import get_db
from whatsapp_connector.errors import NotFound
from whatsapp_connector.phone import format_for_display
from whatsapp_connector.ratelimit import MESSAGES
from whatsapp_connector.service.lifecycle import SessionLifecycleController
from whatsapp_connector.service.relay import MessageRelay
from whatsapp_connector.service.subaccounts import SubaccountService

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

router = APIRouter(prefix="/provider", tags=["provider"])


@router.get("", response_class=HTMLResponse)
async def pairing_page(
    request: Request,
    location_id: str | None = Query(None, alias="locationId"),
    controller: SessionLifecycleController = Depends(get_controller),
):
    """Render the QR pairing page for a location."""
    if not location_id:
        return templates.TemplateResponse(
            request,
            "provider_error.html",
            {"title": "Error", "detail": "Location ID is required"},
            status_code=400,
        )

    try:
        status = controller.get_status(location_id)
    except NotFound:
        return templates.TemplateResponse(
            request,
            "provider_error.html",
            {
                "title": "Location Not Found",
                "detail": f'Location ID "{location_id}" not found or not connected.',
            },
            status_code=404,
        )

    return templates.TemplateResponse(
        request,
        "provider.html",
        {
            "location_id": location_id,
            "status": status,
            "phone_display": format_for_display(status.phone_number) if status.phone_number else None,
        },
    )


@router.post("/messages", dependencies=[Depends(rate_limit(MESSAGES))])
async def provider_outbound(
    payload: ProviderMessageRequest,
    relay: MessageRelay = Depends(get_relay),
):
    """Deliver a CRM-originated message through the location's ready session."""
    result = await relay.send_for_location(
        location_id=payload.location_id,
        phone=payload.phone,
        message=payload.message,
        attachments=payload.attachments,
    )
    return {"success": True, "messageId": result.provider_message_id, "sent": result.sent_count}


@router.post("/install")
async def install_provider(
    payload: ProviderInstallRequest,
    tenant_id: UUID = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    installation = SubaccountService(db).install_provider(
        tenant_id=tenant_id,
        location_id=payload.location_id,
        conversation_provider_id=payload.conversation_provider_id,
        access_token=payload.access_token,
        refresh_token=payload.refresh_token,
    )
    return {
        "success": True,
        "installationId": str(installation.id),
        "conversationProviderId": installation.conversation_provider_id,
    }
