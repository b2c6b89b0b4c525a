"""
Connector Routing

Tenant ownership checks.
"""

from whatsapp_connector.routing.ownership import OwnershipGuard

__all__ = ["OwnershipGuard"]
