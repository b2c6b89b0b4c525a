"""
Connector Persistence

SQLAlchemy models and repository for the connector tables.
"""

from whatsapp_connector.persistence.models import (
    ConnectorBase,
    LocationSessionMap,
    MarketplaceAccount,
    Message,
    MessageDirection,
    ProviderInstallation,
    Subaccount,
    WhatsAppSession,
)
from whatsapp_connector.persistence.repo import ConnectorRepository

__all__ = [
    "ConnectorBase",
    "ConnectorRepository",
    "LocationSessionMap",
    "MarketplaceAccount",
    "Message",
    "MessageDirection",
    "ProviderInstallation",
    "Subaccount",
    "WhatsAppSession",
]
