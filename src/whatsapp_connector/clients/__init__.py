"""
Live WhatsApp Clients

Abstract client interface and implementations.
"""

from whatsapp_connector.clients.base import (
    ClientAuthFailure,
    ClientDisconnected,
    ClientError,
    ClientEvent,
    ClientFactory,
    ClientReady,
    InboundMessage,
    MediaContent,
    MessageReceived,
    MessagingClient,
    OutgoingContent,
    PairingCodeIssued,
    SentMessage,
)

__all__ = [
    "ClientAuthFailure",
    "ClientDisconnected",
    "ClientError",
    "ClientEvent",
    "ClientFactory",
    "ClientReady",
    "InboundMessage",
    "MediaContent",
    "MessageReceived",
    "MessagingClient",
    "OutgoingContent",
    "PairingCodeIssued",
    "SentMessage",
]
