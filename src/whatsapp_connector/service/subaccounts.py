"""
Subaccount Service

Tenant-facing management of CRM locations and their conversation-provider
installations.
"""

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whatsapp_connector.errors import Forbidden, NotFound, PersistenceError
from whatsapp_connector.persistence.models import ProviderInstallation, Subaccount
from whatsapp_connector.persistence.repo import ConnectorRepository
from whatsapp_connector.routing.ownership import OwnershipGuard
from whatsapp_connector.secrets import encrypt_secret

logger = logging.getLogger(__name__)


def default_location_name(location_id: str) -> str:
    return f"Location {location_id}"


class SubaccountService:
    """CRUD for a tenant's subaccounts."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ConnectorRepository(db)
        self.guard = OwnershipGuard(db)

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action}", exc_info=True)
            raise PersistenceError(f"Failed to {action}") from e

    def connect(self, tenant_id: UUID, location_id: str, name: str | None = None) -> tuple[Subaccount, bool]:
        """
        Bind a location to a tenant, or rename it if already bound.

        Returns:
            Tuple of (subaccount, created)

        Raises:
            Forbidden: The location belongs to another tenant
        """
        existing = self.repo.get_subaccount_by_location(location_id)
        if existing:
            if existing.user_id != tenant_id:
                logger.warning(
                    "Location already connected to another tenant",
                    extra={"location_id": location_id, "tenant_id": str(tenant_id)},
                )
                raise Forbidden("Location is already connected to another account")
            if name:
                existing.name = name
                self._commit("update subaccount")
            return existing, False

        subaccount = self.repo.create_subaccount(tenant_id, location_id, name or default_location_name(location_id))
        self._commit("create subaccount")

        logger.info(
            "Subaccount connected",
            extra={"location_id": location_id, "tenant_id": str(tenant_id), "subaccount_id": str(subaccount.id)},
        )
        return subaccount, True

    def list_for_tenant(self, tenant_id: UUID) -> list[Subaccount]:
        return self.repo.list_subaccounts(tenant_id)

    def get(self, tenant_id: UUID, location_id: str) -> Subaccount:
        subaccount = self.repo.get_subaccount_for_tenant(tenant_id, location_id)
        if not subaccount:
            raise NotFound("Subaccount not found")
        return subaccount

    def rename(self, tenant_id: UUID, location_id: str, name: str) -> Subaccount:
        subaccount = self.get(tenant_id, location_id)
        subaccount.name = name
        self._commit("update subaccount")
        return subaccount

    def delete(self, tenant_id: UUID, location_id: str) -> list[UUID]:
        """
        Delete a subaccount and everything hanging off it.

        Returns:
            IDs of the deleted sessions, whose live clients the caller must stop
        """
        subaccount = self.get(tenant_id, location_id)
        session_ids = self.repo.delete_subaccount_cascade(subaccount)
        self._commit("delete subaccount")

        logger.info(
            "Subaccount deleted",
            extra={"location_id": location_id, "tenant_id": str(tenant_id), "sessions": len(session_ids)},
        )
        return session_ids

    def install_provider(
        self,
        tenant_id: UUID,
        location_id: str,
        conversation_provider_id: str,
        access_token: str,
        refresh_token: str | None = None,
    ) -> ProviderInstallation:
        """
        Store CRM conversation-provider credentials for a location.

        Raises:
            Forbidden: Tenant does not own the location
        """
        self.guard.require_location(tenant_id, location_id)
        subaccount = self.get(tenant_id, location_id)

        installation = self.repo.upsert_installation(
            user_id=tenant_id,
            subaccount_id=subaccount.id,
            location_id=location_id,
            conversation_provider_id=conversation_provider_id,
            access_token=encrypt_secret(access_token),
            refresh_token=encrypt_secret(refresh_token),
        )
        self._commit("save provider installation")

        logger.info(
            "Provider installation saved",
            extra={"location_id": location_id, "conversation_provider_id": conversation_provider_id},
        )
        return installation
