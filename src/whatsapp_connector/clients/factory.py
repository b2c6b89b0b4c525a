"""
Client factory selection.

MESSAGING_CLIENT picks the implementation: "evolution" for production,
anything else falls back to the in-process stub.
"""

import logging
from uuid import UUID

from connector_core.settings import Settings, get_settings
from whatsapp_connector.clients.base import ClientFactory, MessagingClient
from whatsapp_connector.clients.evolution import EvolutionMessagingClient
from whatsapp_connector.clients.stub import StubMessagingClient

logger = logging.getLogger(__name__)


def build_client_factory(settings: Settings | None = None) -> ClientFactory:
    """Return a callable creating one client per session id."""
    settings = settings or get_settings()

    if settings.MESSAGING_CLIENT == "evolution":
        if not settings.EVOLUTION_API_URL:
            raise ValueError("EVOLUTION_API_URL is required when MESSAGING_CLIENT=evolution")

        def evolution_factory(session_id: UUID) -> MessagingClient:
            return EvolutionMessagingClient(
                session_id=session_id,
                api_url=settings.EVOLUTION_API_URL,
                api_key=settings.EVOLUTION_API_KEY,
                webhook_url=settings.EVOLUTION_WEBHOOK_URL or None,
                instance_prefix=settings.EVOLUTION_INSTANCE_PREFIX,
            )

        return evolution_factory

    logger.info("Using stub messaging client")
    return StubMessagingClient
