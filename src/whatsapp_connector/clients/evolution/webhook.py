"""
Evolution API Webhook Utilities

Helpers that turn Evolution API webhook payloads into client events.

Evolution posts one JSON document per event:
{
    "event": "messages.upsert",
    "instance": "wa_<session id>",
    "data": {...},
    "sender": "5511999999999@s.whatsapp.net",
}
"""

import logging
from datetime import datetime, timezone
from typing import Any

from whatsapp_connector.clients.base import (
    ClientAuthFailure,
    ClientDisconnected,
    ClientEvent,
    ClientReady,
    InboundMessage,
    MessageReceived,
    PairingCodeIssued,
)

logger = logging.getLogger(__name__)

MEDIA_MESSAGE_TYPES = {
    "imageMessage": "image/jpeg",
    "videoMessage": "video/mp4",
    "audioMessage": "audio/ogg",
    "documentMessage": "application/octet-stream",
    "stickerMessage": "image/webp",
}

# Baileys disconnect reason for a logged-out / rejected device
LOGGED_OUT_STATUS = 401


def normalize_event_name(event: str | None) -> str:
    """Evolution v1 sends "QRCODE_UPDATED", v2 sends "qrcode.updated"."""
    return (event or "").lower().replace("_", ".")


def extract_instance_name(payload: dict[str, Any]) -> str | None:
    """Extract instance name from webhook payload."""
    return payload.get("instance")


def validate_api_key(request_headers: dict[str, str], expected_api_key: str) -> bool:
    """
    Validate API key from request headers.

    Evolution API can send API key in:
    - Header: "apikey"
    - Header: "Authorization: Bearer <key>"
    """
    headers = {k.lower(): v for k, v in request_headers.items()}
    if headers.get("apikey") == expected_api_key:
        return True

    auth_header = headers.get("authorization", "")
    if auth_header.startswith("Bearer ") and auth_header[7:] == expected_api_key:
        return True

    return False


def parse_client_event(payload: dict[str, Any]) -> ClientEvent | None:
    """
    Convert a webhook payload into a client event.

    Returns:
        The event, or None for events the connector does not track
    """
    event = normalize_event_name(payload.get("event"))
    data = payload.get("data") or {}

    if event == "qrcode.updated":
        qrcode = data.get("qrcode") or {}
        code = qrcode.get("code") or data.get("code")
        if not code:
            logger.warning("QR code webhook without code", extra={"instance": payload.get("instance")})
            return None
        return PairingCodeIssued(code=code)

    if event == "connection.update":
        return _parse_connection_update(payload, data)

    if event == "messages.upsert":
        message = parse_inbound_message(data)
        if message is None:
            return None
        return MessageReceived(message=message)

    logger.debug(f"Ignoring Evolution event {event}", extra={"instance": payload.get("instance")})
    return None


def _parse_connection_update(payload: dict[str, Any], data: dict[str, Any]) -> ClientEvent | None:
    state = (data.get("state") or "").lower()

    if state == "open":
        identity = data.get("wuid") or data.get("ownerJid") or payload.get("sender")
        return ClientReady(identity=identity)

    if state == "close":
        reason = data.get("statusReason")
        try:
            status_reason = int(reason) if reason is not None else None
        except (TypeError, ValueError):
            status_reason = None
        if status_reason == LOGGED_OUT_STATUS:
            return ClientAuthFailure(reason=str(reason))
        return ClientDisconnected(reason=str(reason) if reason is not None else None)

    # "connecting" carries no state change for us
    return None


def parse_inbound_message(data: dict[str, Any]) -> InboundMessage | None:
    """
    Parse a ``messages.upsert`` data block.

    Messages sent by the linked phone itself (``fromMe``) are echoes of our
    own outbound traffic and are dropped.
    """
    if isinstance(data.get("messages"), list):
        # Evolution v1 batches messages
        data = data["messages"][0] if data["messages"] else {}

    key = data.get("key") or {}
    if key.get("fromMe"):
        return None

    remote_jid = key.get("remoteJid") or ""
    if not remote_jid:
        return None

    message_data = data.get("message") or {}
    message_type = data.get("messageType") or next(iter(message_data), "conversation")

    body = message_data.get("conversation") or (message_data.get("extendedTextMessage") or {}).get("text")

    has_media = message_type in MEDIA_MESSAGE_TYPES
    media_mime = None
    if has_media:
        media_obj = message_data.get(message_type) or {}
        media_mime = media_obj.get("mimetype") or MEDIA_MESSAGE_TYPES[message_type]
        body = body or media_obj.get("caption")

    timestamp = datetime.now(timezone.utc)
    if data.get("messageTimestamp"):
        try:
            timestamp = datetime.fromtimestamp(int(data["messageTimestamp"]), tz=timezone.utc)
        except (ValueError, TypeError):
            pass

    return InboundMessage(
        message_id=key.get("id", ""),
        from_address=remote_jid,
        to_address=None,
        body=body,
        has_media=has_media,
        media_mime=media_mime,
        timestamp=timestamp,
        raw_payload=data,
    )
