"""
Connector Services

Session lifecycle, message relay and tenant-facing management.
"""

from whatsapp_connector.service.lifecycle import (
    LiveSession,
    SessionLifecycleController,
    SessionStatus,
    SessionStatusView,
)
from whatsapp_connector.service.registry import ClientRegistry
from whatsapp_connector.service.relay import MessageRelay, SendResult

__all__ = [
    "ClientRegistry",
    "LiveSession",
    "MessageRelay",
    "SendResult",
    "SessionLifecycleController",
    "SessionStatus",
    "SessionStatusView",
]
