"""
Messaging Client Base

Abstract interface for live WhatsApp clients. A client is bound to one
session: it is initialized once, reports lifecycle changes and inbound
messages as events through a single callback, sends messages to network
addresses and is destroyed when the session is restarted, deleted or
disconnected.

Implementations: Evolution API (production), Stub (development and tests).
"""

import base64
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union
from uuid import UUID

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Error from a live messaging client."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


@dataclass
class MediaContent:
    """Materialized attachment (base64 payload + MIME type)."""

    data: str
    mimetype: str
    filename: str | None = None

    def to_data_url(self) -> str:
        return f"data:{self.mimetype};base64,{self.data}"

    @classmethod
    def from_bytes(cls, raw: bytes, mimetype: str, filename: str | None = None) -> "MediaContent":
        return cls(data=base64.b64encode(raw).decode(), mimetype=mimetype, filename=filename)


@dataclass
class InboundMessage:
    """
    Message received by a live client.

    Addresses are in network format ("5511999999999@c.us").
    """

    message_id: str
    from_address: str
    to_address: str | None = None
    body: str | None = None
    has_media: bool = False
    media_mime: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class OutgoingContent:
    """
    What to send. With media, ``body`` becomes the caption.

    ``media_ref`` is either an http(s) URL or a data URL.
    """

    body: str | None = None
    media_ref: str | None = None
    media_mime: str | None = None

    @property
    def has_media(self) -> bool:
        return bool(self.media_ref)


@dataclass
class SentMessage:
    """Result of a successful send."""

    message_id: str | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw_response: dict[str, Any] = field(default_factory=dict)


# =========================================================================
# Lifecycle events
# =========================================================================


@dataclass
class PairingCodeIssued:
    code: str


@dataclass
class ClientReady:
    identity: str | None  # network address or bare digits of the linked phone


@dataclass
class ClientDisconnected:
    reason: str | None = None


@dataclass
class ClientAuthFailure:
    reason: str | None = None


@dataclass
class MessageReceived:
    message: InboundMessage


ClientEvent = Union[PairingCodeIssued, ClientReady, ClientDisconnected, ClientAuthFailure, MessageReceived]
EventListener = Callable[[ClientEvent], None]


class MessagingClient(ABC):
    """
    Abstract live WhatsApp client.

    Implementations must:
    - start pairing on initialize() and report progress via emit()
    - send text or media to a network address
    - materialize inbound attachments on demand
    - release every external resource on destroy()
    """

    def __init__(self, session_id: UUID):
        self.session_id = session_id
        self._listener: EventListener | None = None

    def bind(self, listener: EventListener) -> None:
        """Attach the single event listener. The listener must not block."""
        self._listener = listener

    def emit(self, event: ClientEvent) -> None:
        if self._listener is None:
            logger.debug(
                f"Dropping {type(event).__name__}: no listener bound",
                extra={"session_id": str(self.session_id)},
            )
            return
        self._listener(event)

    @abstractmethod
    async def initialize(self) -> None:
        """Start the client and begin pairing."""
        ...

    @abstractmethod
    async def send_message(self, address: str, content: OutgoingContent) -> SentMessage:
        """
        Send a message.

        Args:
            address: Recipient network address
            content: Text and/or media to send

        Returns:
            SentMessage with the network-assigned ID

        Raises:
            ClientError: If the network rejects the message
        """
        ...

    @abstractmethod
    async def download_media(self, message: InboundMessage) -> MediaContent | None:
        """
        Download the attachment of an inbound message.

        Returns:
            MediaContent or None if the message has nothing to download

        Raises:
            ClientError: If the download fails
        """
        ...

    @abstractmethod
    async def destroy(self) -> None:
        """Stop the client and release its resources."""
        ...

    async def handle_webhook(self, payload: dict[str, Any]) -> None:
        """Feed a push notification from the backend. Clients without webhooks ignore it."""
        logger.debug(
            "Webhook ignored by client without webhook support",
            extra={"session_id": str(self.session_id)},
        )


ClientFactory = Callable[[UUID], MessagingClient]
