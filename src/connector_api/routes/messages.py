"""
Message endpoints: send, and the history views used by the dashboard chat.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from connector_api.deps import get_relay, rate_limit, require_tenant
from connector_api.schemas import MessageOut, MessagePageOut, SendMessageRequest
from whatsapp_connector.ratelimit import MESSAGES
from whatsapp_connector.service.relay import MessagePage, MessageRelay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


def _page_response(page: MessagePage) -> dict:
    return MessagePageOut(
        messages=[MessageOut.model_validate(m) for m in page.messages],
        count=page.count,
        has_more=page.has_more,
    ).model_dump(mode="json", by_alias=True)


@router.post("/send", dependencies=[Depends(rate_limit(MESSAGES))])
async def send_message(
    request: SendMessageRequest,
    tenant_id: UUID = Depends(require_tenant),
    relay: MessageRelay = Depends(get_relay),
):
    """Send a WhatsApp message from one of the tenant's ready sessions."""
    result = await relay.send_message(
        tenant_id=tenant_id,
        session_id=request.session_id,
        to=request.to,
        body=request.message,
        media_ref=request.media_url,
        media_mime=request.media_mime,
    )
    return {
        "success": True,
        "messageId": result.provider_message_id,
        "savedMessageId": str(result.message_id) if result.message_id else None,
        "recipient": result.recipient,
        "timestamp": result.timestamp.isoformat(),
    }


@router.get("/subaccount/{subaccount_id}")
async def list_subaccount_messages(
    subaccount_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: UUID = Depends(require_tenant),
    relay: MessageRelay = Depends(get_relay),
):
    return _page_response(relay.list_subaccount_messages(tenant_id, subaccount_id, limit, offset))


@router.get("/conversation/{session_id}/{phone}")
async def get_conversation(
    session_id: UUID,
    phone: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: UUID = Depends(require_tenant),
    relay: MessageRelay = Depends(get_relay),
):
    """Messages exchanged with one phone number."""
    return _page_response(relay.get_conversation(tenant_id, session_id, phone, limit, offset))


@router.get("/{session_id}")
async def list_session_messages(
    session_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tenant_id: UUID = Depends(require_tenant),
    relay: MessageRelay = Depends(get_relay),
):
    return _page_response(relay.list_session_messages(tenant_id, session_id, limit, offset))
