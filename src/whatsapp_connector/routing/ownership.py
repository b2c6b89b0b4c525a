"""
Ownership Guard

Answers "does tenant X own a subaccount matching Y?" for every mutating
operation that is not already tenant-scoped in its own query. Both checks
go through one EXISTS predicate; nothing is cached.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from whatsapp_connector.errors import Forbidden
from whatsapp_connector.persistence.models import Subaccount
from whatsapp_connector.persistence.repo import ConnectorRepository

logger = logging.getLogger(__name__)


class OwnershipGuard:
    """Tenant ownership checks for subaccounts."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ConnectorRepository(db)

    def _owns(self, tenant_id: UUID, criterion) -> bool:
        return self.repo.tenant_owns(tenant_id, criterion)

    def owns_subaccount(self, tenant_id: UUID, subaccount_id: UUID) -> bool:
        """Check ownership by subaccount ID."""
        return self._owns(tenant_id, Subaccount.id == subaccount_id)

    def owns_location(self, tenant_id: UUID, location_id: str) -> bool:
        """Check ownership by CRM location ID."""
        return self._owns(tenant_id, Subaccount.location_id == location_id)

    def require_subaccount(self, tenant_id: UUID, subaccount_id: UUID) -> None:
        """
        Raises:
            Forbidden: If the tenant does not own the subaccount
        """
        if not self.owns_subaccount(tenant_id, subaccount_id):
            logger.warning(
                "Subaccount ownership check failed",
                extra={"tenant_id": str(tenant_id), "subaccount_id": str(subaccount_id)},
            )
            raise Forbidden("Access denied to this subaccount")

    def require_location(self, tenant_id: UUID, location_id: str) -> None:
        """
        Raises:
            Forbidden: If the tenant does not own the location
        """
        if not self.owns_location(tenant_id, location_id):
            logger.warning(
                "Location ownership check failed",
                extra={"tenant_id": str(tenant_id), "location_id": location_id},
            )
            raise Forbidden("Access denied to this location")
