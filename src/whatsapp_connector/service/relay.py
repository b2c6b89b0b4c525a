"""
Message Relay

Moves messages between WhatsApp and the CRM:

Outbound:
1. Validate content (body and/or media)
2. Check the session belongs to the tenant and is ready
3. Resolve the live client and normalize the recipient
4. Dispatch through the client
5. Persist the message (best-effort)

Inbound:
1. Drop broadcast/status traffic
2. Canonicalize addresses, materialize media
3. Persist with tenant/subaccount taken from the session row
4. Forward to the CRM when the subaccount has an installation
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from whatsapp_connector.clients.base import ClientError, InboundMessage, MessagingClient, OutgoingContent
from whatsapp_connector.errors import (
    ClientUnavailable,
    DeliveryFailed,
    EmptyMessage,
    InvalidPhoneFormat,
    NotFound,
    SessionNotReady,
)
from whatsapp_connector.persistence.models import Message, MessageDirection, ProviderInstallation
from whatsapp_connector.persistence.repo import ConnectorRepository
from whatsapp_connector.phone import from_network_address, is_broadcast_address, normalize, to_network_address
from whatsapp_connector.routing.ownership import OwnershipGuard
from whatsapp_connector.secrets import decrypt_secret
from whatsapp_connector.service.forwarder import CrmForwarder
from whatsapp_connector.service.registry import ClientRegistry

logger = logging.getLogger(__name__)

READY = "ready"
DOWNLOAD_FAILED_BODY = "[Media message - download failed]"
UNKNOWN_NUMBER = "unknown"


@dataclass
class SendResult:
    provider_message_id: str | None
    message_id: UUID | None
    recipient: str
    timestamp: datetime


@dataclass
class LocationSendResult:
    provider_message_id: str | None
    sent_count: int
    message_ids: list[UUID] = field(default_factory=list)


@dataclass
class MessagePage:
    messages: list[Message]
    count: int
    has_more: bool


@dataclass
class _SendTarget:
    session_id: UUID
    user_id: UUID
    subaccount_id: UUID
    phone_number: str | None
    client: MessagingClient


class MessageRelay:
    """Inbound attribution/forwarding and outbound dispatch."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: ClientRegistry,
        forwarder: CrmForwarder | None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.forwarder = forwarder

    # =========================================================================
    # Outbound
    # =========================================================================

    def _require_client(self, session_id: UUID) -> MessagingClient:
        live = self.registry.get(session_id)
        if live is None:
            raise ClientUnavailable("WhatsApp client not available. Please reconnect.")
        return live.client

    async def _dispatch(self, client: MessagingClient, recipient: str, content: OutgoingContent):
        try:
            return await client.send_message(to_network_address(recipient), content)
        except ClientError as e:
            logger.error(
                f"Client rejected outbound message: {e}",
                extra={"recipient": recipient, "code": e.code},
            )
            raise DeliveryFailed(f"Failed to send message: {e}") from e

    def _persist_outbound(
        self,
        target: _SendTarget,
        recipient: str,
        content: OutgoingContent,
        provider_message_id: str | None,
    ) -> UUID | None:
        """Save an outbound message. A failure here does not undo the send."""
        with self.session_factory() as db:
            repo = ConnectorRepository(db)
            try:
                message = repo.create_message(
                    session_id=target.session_id,
                    user_id=target.user_id,
                    subaccount_id=target.subaccount_id,
                    from_number=target.phone_number or UNKNOWN_NUMBER,
                    to_number=recipient,
                    direction=MessageDirection.OUTBOUND,
                    body=content.body,
                    media_url=content.media_ref,
                    media_mime=content.media_mime,
                    provider_message_id=provider_message_id,
                )
                db.commit()
                return message.id
            except SQLAlchemyError:
                db.rollback()
                logger.error(
                    "Failed to save outbound message",
                    extra={"session_id": str(target.session_id), "provider_message_id": provider_message_id},
                    exc_info=True,
                )
                return None

    async def send_message(
        self,
        tenant_id: UUID,
        session_id: UUID,
        to: str,
        body: str | None = None,
        media_ref: str | None = None,
        media_mime: str | None = None,
    ) -> SendResult:
        """
        Send a message from a tenant's session.

        Raises:
            EmptyMessage: Neither body nor media given
            NotFound: Session missing or owned by another tenant
            SessionNotReady: Session is not in ready state
            ClientUnavailable: No live client for the session
            InvalidPhoneFormat: Recipient cannot be normalized
            DeliveryFailed: The client rejected the message
        """
        if not body and not media_ref:
            raise EmptyMessage("Either message or media is required")

        with self.session_factory() as db:
            session = ConnectorRepository(db).get_session_for_tenant(session_id, tenant_id)
            if not session:
                raise NotFound("Session not found")
            if session.status != READY:
                raise SessionNotReady(f"Session not ready. Current status: {session.status}")
            target = _SendTarget(
                session_id=session.id,
                user_id=session.user_id,
                subaccount_id=session.subaccount_id,
                phone_number=session.phone_number,
                client=self._require_client(session.id),
            )

        recipient = normalize(to)
        content = OutgoingContent(body=body, media_ref=media_ref, media_mime=media_mime)
        sent = await self._dispatch(target.client, recipient, content)

        message_id = self._persist_outbound(target, recipient, content, sent.message_id)

        logger.info(
            "Outbound message sent",
            extra={
                "session_id": str(session_id),
                "recipient": recipient,
                "provider_message_id": sent.message_id,
            },
        )

        return SendResult(
            provider_message_id=sent.message_id,
            message_id=message_id,
            recipient=recipient,
            timestamp=sent.timestamp,
        )

    async def send_for_location(
        self,
        location_id: str,
        phone: str,
        message: str | None = None,
        attachments: list[str] | None = None,
    ) -> LocationSendResult:
        """
        Send a CRM-originated message through the session mapped to a location.

        The text goes first, then each attachment as its own message.
        """
        attachments = [url for url in (attachments or []) if url]
        if not message and not attachments:
            raise EmptyMessage("Either message or attachments are required")

        with self.session_factory() as db:
            repo = ConnectorRepository(db)
            mapping = repo.get_location_map(location_id)
            if not mapping:
                raise NotFound(f"No WhatsApp session mapped to location {location_id}")
            session = repo.get_session(mapping.session_id)
            if not session:
                raise NotFound("Mapped session no longer exists")
            if session.status != READY:
                raise SessionNotReady(f"Session not ready. Current status: {session.status}")
            target = _SendTarget(
                session_id=session.id,
                user_id=session.user_id,
                subaccount_id=session.subaccount_id,
                phone_number=session.phone_number,
                client=self._require_client(session.id),
            )

        recipient = normalize(phone)

        contents = []
        if message:
            contents.append(OutgoingContent(body=message))
        contents.extend(OutgoingContent(media_ref=url) for url in attachments)

        result = LocationSendResult(provider_message_id=None, sent_count=0)
        for content in contents:
            sent = await self._dispatch(target.client, recipient, content)
            if result.provider_message_id is None:
                result.provider_message_id = sent.message_id
            result.sent_count += 1
            message_id = self._persist_outbound(target, recipient, content, sent.message_id)
            if message_id:
                result.message_ids.append(message_id)

        logger.info(
            "CRM outbound message sent",
            extra={"location_id": location_id, "recipient": recipient, "sent_count": result.sent_count},
        )
        return result

    # =========================================================================
    # Inbound
    # =========================================================================

    async def handle_inbound(
        self,
        session_id: UUID,
        message: InboundMessage,
        client: MessagingClient,
    ) -> Message | None:
        """
        Persist and forward a message received by a live client.

        Never raises: failures are logged and the message is dropped.

        Returns:
            The stored message, or None if it was ignored or not saved
        """
        if is_broadcast_address(message.from_address):
            logger.debug("Ignoring broadcast message", extra={"session_id": str(session_id)})
            return None

        with self.session_factory() as db:
            session = ConnectorRepository(db).get_session(session_id)
        if not session:
            logger.warning("Inbound message for unknown session", extra={"session_id": str(session_id)})
            return None

        try:
            from_number = from_network_address(message.from_address)
            to_number = (
                from_network_address(message.to_address)
                if message.to_address
                else session.phone_number or UNKNOWN_NUMBER
            )
        except InvalidPhoneFormat:
            logger.warning(
                "Inbound message with unusable address",
                extra={"session_id": str(session_id), "from": message.from_address},
            )
            return None

        body, media_url, media_mime = await self._materialize_media(message, client)

        with self.session_factory() as db:
            repo = ConnectorRepository(db)
            try:
                stored = repo.create_message(
                    session_id=session.id,
                    user_id=session.user_id,
                    subaccount_id=session.subaccount_id,
                    from_number=from_number,
                    to_number=to_number,
                    direction=MessageDirection.INBOUND,
                    body=body,
                    media_url=media_url,
                    media_mime=media_mime,
                    provider_message_id=message.message_id or None,
                    created_at=message.timestamp,
                )
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.error(
                    "Failed to save inbound message",
                    extra={"session_id": str(session_id), "provider_message_id": message.message_id},
                    exc_info=True,
                )
                return None

            logger.info(
                "Inbound message saved",
                extra={"session_id": str(session_id), "from": from_number, "message_id": str(stored.id)},
            )

            installation = repo.get_installation(session.subaccount_id)
            subaccount = repo.get_subaccount(session.subaccount_id)

        if installation is not None and subaccount is not None:
            await self._forward(installation, subaccount.location_id, stored)
        else:
            logger.debug("No CRM installation, skipping forward", extra={"message_id": str(stored.id)})
        return stored

    async def _materialize_media(
        self,
        message: InboundMessage,
        client: MessagingClient,
    ) -> tuple[str | None, str | None, str | None]:
        body = message.body
        if not message.has_media:
            return body, None, None

        try:
            media = await client.download_media(message)
        except ClientError as e:
            logger.warning(
                f"Media download failed: {e}",
                extra={"session_id": str(client.session_id), "provider_message_id": message.message_id},
            )
            media = None

        if media is None:
            return body or DOWNLOAD_FAILED_BODY, None, None

        return body or f"[{media.mimetype}]", media.to_data_url(), media.mimetype

    async def _forward(self, installation: ProviderInstallation, location_id: str, stored: Message) -> bool:
        access_token = decrypt_secret(installation.access_token)
        if not access_token or not installation.conversation_provider_id:
            logger.debug(
                "CRM installation incomplete, skipping forward",
                extra={"message_id": str(stored.id), "subaccount_id": str(stored.subaccount_id)},
            )
            return False
        if self.forwarder is None:
            return False

        return await self.forwarder.forward_inbound(
            access_token=access_token,
            location_id=location_id,
            phone=stored.from_number,
            message=stored.body,
            media_url=stored.media_url,
            media_mime=stored.media_mime,
            message_id=str(stored.id),
        )

    # =========================================================================
    # Read side
    # =========================================================================

    @staticmethod
    def _page(rows: list[Message], limit: int) -> MessagePage:
        has_more = len(rows) > limit
        rows = rows[:limit]
        return MessagePage(messages=rows, count=len(rows), has_more=has_more)

    def list_session_messages(self, tenant_id: UUID, session_id: UUID, limit: int = 50, offset: int = 0) -> MessagePage:
        """Messages of a tenant's session, newest first."""
        with self.session_factory() as db:
            repo = ConnectorRepository(db)
            if not repo.get_session_for_tenant(session_id, tenant_id):
                raise NotFound("Session not found")
            return self._page(repo.list_session_messages(session_id, limit + 1, offset), limit)

    def list_subaccount_messages(
        self,
        tenant_id: UUID,
        subaccount_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> MessagePage:
        """Messages of every session of a subaccount, newest first."""
        with self.session_factory() as db:
            OwnershipGuard(db).require_subaccount(tenant_id, subaccount_id)
            repo = ConnectorRepository(db)
            return self._page(repo.list_subaccount_messages(subaccount_id, limit + 1, offset), limit)

    def get_conversation(
        self,
        tenant_id: UUID,
        session_id: UUID,
        phone: str,
        limit: int = 50,
        offset: int = 0,
    ) -> MessagePage:
        """Messages of a session exchanged with one phone number, newest first."""
        with self.session_factory() as db:
            repo = ConnectorRepository(db)
            if not repo.get_session_for_tenant(session_id, tenant_id):
                raise NotFound("Session not found")
            canonical = normalize(phone)
            return self._page(repo.list_conversation(session_id, canonical, limit + 1, offset), limit)

