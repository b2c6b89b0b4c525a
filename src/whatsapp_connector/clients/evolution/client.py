"""
Evolution API Messaging Client

Live client backed by an Evolution API instance (Baileys-based WhatsApp Web
integration). Each connector session gets its own instance named
``<EVOLUTION_INSTANCE_PREFIX><session id>``. Lifecycle changes and inbound
messages arrive as webhooks and are fed back through handle_webhook().

Documentation: https://doc.evolution-api.com/
"""

import logging
from typing import Any
from uuid import UUID

from whatsapp_connector.clients.base import (
    ClientError,
    ClientReady,
    InboundMessage,
    MediaContent,
    MessagingClient,
    OutgoingContent,
    PairingCodeIssued,
    SentMessage,
)
from whatsapp_connector.clients.evolution.instance_manager import EvolutionInstanceManager
from whatsapp_connector.clients.evolution.webhook import parse_client_event

logger = logging.getLogger(__name__)


def instance_name_for(session_id: UUID, prefix: str) -> str:
    return f"{prefix}{session_id}"


def session_id_from_instance(instance_name: str | None, prefix: str) -> UUID | None:
    """Inverse of instance_name_for; None for instances we did not create."""
    if not instance_name or not instance_name.startswith(prefix):
        return None
    try:
        return UUID(instance_name[len(prefix):])
    except ValueError:
        return None


def _media_type(mimetype: str | None) -> str:
    major = (mimetype or "").split("/", 1)[0]
    if major in ("image", "video", "audio"):
        return major
    return "document"


class EvolutionMessagingClient(MessagingClient):
    """
    Evolution API client for one session.

    Pairing codes, connection changes and messages are pushed by Evolution
    to the connector webhook and converted into events here.
    """

    def __init__(
        self,
        session_id: UUID,
        api_url: str,
        api_key: str,
        webhook_url: str | None = None,
        instance_prefix: str = "wa_",
        timeout: float = 30.0,
    ):
        super().__init__(session_id)
        self.instance_name = instance_name_for(session_id, instance_prefix)
        self.webhook_url = webhook_url
        self.manager = EvolutionInstanceManager(api_url=api_url, api_key=api_key, timeout=timeout)

    async def initialize(self) -> None:
        """Create the instance (or reconnect an existing one) and emit the first QR code."""
        try:
            response = await self.manager.create_instance(self.instance_name, webhook_url=self.webhook_url)
        except ClientError as e:
            if e.code not in ("403", "409"):
                raise
            logger.info(
                "Evolution instance already exists, reconnecting",
                extra={"instance": self.instance_name},
            )
            response = await self.manager.connect_instance(self.instance_name)

        code = (response.get("qrcode") or {}).get("code") or response.get("code")
        if code:
            self.emit(PairingCodeIssued(code=code))

        logger.info(
            "Evolution instance initialized",
            extra={"instance": self.instance_name, "session_id": str(self.session_id)},
        )

    async def handle_webhook(self, payload: dict[str, Any]) -> None:
        event = parse_client_event(payload)
        if event is None:
            return

        if isinstance(event, ClientReady) and not event.identity:
            try:
                info = await self.manager.fetch_instance(self.instance_name)
            except ClientError as e:
                # Still connected; the phone number stays unknown
                logger.warning(
                    f"Could not fetch owner of connected instance: {e}",
                    extra={"instance": self.instance_name, "code": e.code},
                )
                info = {}
            event = ClientReady(identity=info.get("ownerJid") or info.get("owner"))

        self.emit(event)

    async def send_message(self, address: str, content: OutgoingContent) -> SentMessage:
        """Send text via /message/sendText or media via /message/sendMedia."""
        number = address.split("@", 1)[0]

        if content.has_media:
            media = content.media_ref
            mimetype = content.media_mime
            if media.startswith("data:"):
                header, _, media = media.partition(",")
                mimetype = mimetype or header[5:].split(";", 1)[0]
            payload: dict[str, Any] = {
                "number": number,
                "mediatype": _media_type(mimetype),
                "media": media,
            }
            if mimetype:
                payload["mimetype"] = mimetype
            if content.body:
                payload["caption"] = content.body
            endpoint = f"/message/sendMedia/{self.instance_name}"
        else:
            payload = {"number": number, "text": content.body or ""}
            endpoint = f"/message/sendText/{self.instance_name}"

        response = await self.manager.request("POST", endpoint, payload)
        message_id = (response.get("key") or {}).get("id") or response.get("id")

        logger.info(
            "Sent message via Evolution API",
            extra={"to": number, "message_id": message_id, "instance": self.instance_name},
        )

        return SentMessage(message_id=message_id, raw_response=response)

    async def download_media(self, message: InboundMessage) -> MediaContent | None:
        if not message.has_media:
            return None

        response = await self.manager.request(
            "POST",
            f"/chat/fetchBase64FromMediaMessage/{self.instance_name}",
            {"message": {"key": {"id": message.message_id}}, "convertToMp4": False},
        )
        data = response.get("base64")
        if not data:
            raise ClientError("Media download returned no data", code="MEDIA_EMPTY")

        return MediaContent(
            data=data,
            mimetype=response.get("mimetype") or message.media_mime or "application/octet-stream",
            filename=response.get("fileName"),
        )

    async def destroy(self) -> None:
        """Log out and delete the instance. Failures are logged; the handle is gone either way."""
        for step in (self.manager.logout_instance, self.manager.delete_instance):
            try:
                await step(self.instance_name)
            except ClientError as e:
                logger.warning(
                    f"Evolution {step.__name__} failed: {e}",
                    extra={"instance": self.instance_name, "code": e.code},
                )
        await self.manager.close()
