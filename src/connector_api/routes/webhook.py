"""
Evolution API webhook receiver.

Evolution posts instance events here; they are routed to the live client of
the session the instance belongs to.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from connector_api.deps import get_app_settings, get_controller
from whatsapp_connector.clients.evolution.webhook import validate_api_key
from whatsapp_connector.service.lifecycle import SessionLifecycleController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.post("/evolution")
async def evolution_webhook(
    request: Request,
    controller: SessionLifecycleController = Depends(get_controller),
):
    api_key = get_app_settings(request).EVOLUTION_API_KEY
    if api_key and not validate_api_key(dict(request.headers), api_key):
        logger.warning("Invalid Evolution API key")
        raise HTTPException(status_code=403, detail="Invalid API key")

    try:
        payload = json.loads(await request.body())
    except json.JSONDecodeError:
        logger.warning("Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON")

    if not isinstance(payload, dict):
        return {"status": "ignored", "reason": "unexpected_payload"}

    routed = await controller.route_webhook(payload)
    if not routed:
        return {"status": "ignored", "reason": "unknown_instance"}
    return {"status": "accepted", "event": payload.get("event")}
