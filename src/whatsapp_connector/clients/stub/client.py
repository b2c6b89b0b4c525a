"""
Stub Messaging Client

In-process client that logs every operation without touching WhatsApp.
Used for local development and tests; the simulate_* helpers drive the
lifecycle the way a real phone would.
"""

import logging
from typing import Any
from uuid import UUID, uuid4

from whatsapp_connector.clients.base import (
    ClientAuthFailure,
    ClientDisconnected,
    ClientError,
    ClientReady,
    InboundMessage,
    MediaContent,
    MessageReceived,
    MessagingClient,
    OutgoingContent,
    PairingCodeIssued,
    SentMessage,
)

logger = logging.getLogger(__name__)


class StubMessagingClient(MessagingClient):
    """
    Stub client for development and testing.

    - Emits a fake pairing code on initialize()
    - Records sent messages in ``sent_messages``
    - Serves attachments registered in ``media``
    - Can be told to fail sends, downloads or initialization
    """

    def __init__(
        self,
        session_id: UUID,
        auto_pair: bool = True,
        fail_sends: bool = False,
        fail_initialize: bool = False,
    ):
        super().__init__(session_id)
        self.auto_pair = auto_pair
        self.fail_sends = fail_sends
        self.fail_initialize = fail_initialize
        self.sent_messages: list[dict[str, Any]] = []
        self.media: dict[str, MediaContent] = {}
        self.initialized = False
        self.destroyed = False

    async def initialize(self) -> None:
        if self.fail_initialize:
            raise ClientError("Simulated initialization failure", code="STUB_INIT_FAILED")

        self.initialized = True
        logger.info("[STUB] Client initialized", extra={"session_id": str(self.session_id)})

        if self.auto_pair:
            self.emit(PairingCodeIssued(code=f"stub-pairing-{self.session_id}"))

    async def send_message(self, address: str, content: OutgoingContent) -> SentMessage:
        if self.destroyed:
            raise ClientError("Client destroyed", code="STUB_DESTROYED")
        if self.fail_sends:
            raise ClientError("Simulated failure for testing", code="STUB_SIMULATED_FAILURE")

        message_id = f"stub_msg_{uuid4().hex[:16]}"
        self.sent_messages.append({
            "to": address,
            "body": content.body,
            "media_ref": content.media_ref,
            "media_mime": content.media_mime,
            "message_id": message_id,
        })

        logger.info(
            "[STUB] Sending message",
            extra={"to": address, "has_media": content.has_media, "message_id": message_id},
        )

        return SentMessage(message_id=message_id, raw_response={"stub": True, "message_id": message_id})

    async def download_media(self, message: InboundMessage) -> MediaContent | None:
        if not message.has_media:
            return None
        media = self.media.get(message.message_id)
        if media is None:
            raise ClientError("Media not available", code="STUB_MEDIA_MISSING")
        return media

    async def destroy(self) -> None:
        self.destroyed = True
        logger.info("[STUB] Client destroyed", extra={"session_id": str(self.session_id)})

    # =========================================================================
    # Simulation helpers
    # =========================================================================

    def simulate_pairing_code(self, code: str) -> None:
        self.emit(PairingCodeIssued(code=code))

    def simulate_ready(self, identity: str) -> None:
        self.emit(ClientReady(identity=identity))

    def simulate_disconnect(self, reason: str | None = "NAVIGATION") -> None:
        self.emit(ClientDisconnected(reason=reason))

    def simulate_auth_failure(self, reason: str | None = "auth failure") -> None:
        self.emit(ClientAuthFailure(reason=reason))

    def simulate_inbound(
        self,
        from_address: str,
        body: str | None = None,
        to_address: str | None = None,
        media: MediaContent | None = None,
        has_media: bool = False,
    ) -> InboundMessage:
        """Deliver an inbound message. Passing ``media`` makes it downloadable."""
        message = InboundMessage(
            message_id=f"stub_in_{uuid4().hex[:16]}",
            from_address=from_address,
            to_address=to_address,
            body=body,
            has_media=has_media or media is not None,
            media_mime=media.mimetype if media else None,
        )
        if media is not None:
            self.media[message.message_id] = media
        self.emit(MessageReceived(message=message))
        return message
