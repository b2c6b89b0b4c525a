"""
Evolution API Client

Live client for Evolution API (Baileys-based WhatsApp Web).
"""

from whatsapp_connector.clients.evolution.client import (
    EvolutionMessagingClient,
    instance_name_for,
    session_id_from_instance,
)
from whatsapp_connector.clients.evolution.instance_manager import EvolutionInstanceManager

__all__ = [
    "EvolutionInstanceManager",
    "EvolutionMessagingClient",
    "instance_name_for",
    "session_id_from_instance",
]
