"""
Connector Repository

Repository pattern for connector database operations.
Methods add and modify rows but never commit; the calling service owns the
unit of work.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from whatsapp_connector.persistence.models import (
    LocationSessionMap,
    MarketplaceAccount,
    Message,
    MessageDirection,
    ProviderInstallation,
    Subaccount,
    WhatsAppSession,
    utcnow,
)


class ConnectorRepository:
    """Repository for connector database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Subaccounts
    # =========================================================================

    def get_subaccount(self, subaccount_id: UUID) -> Subaccount | None:
        """Get subaccount by ID."""
        return self.db.query(Subaccount).filter(Subaccount.id == subaccount_id).first()

    def get_subaccount_by_location(self, location_id: str) -> Subaccount | None:
        """Get a subaccount by CRM location ID, regardless of owner."""
        return self.db.query(Subaccount).filter(Subaccount.location_id == location_id).first()

    def get_subaccount_for_tenant(self, user_id: UUID, location_id: str) -> Subaccount | None:
        """Get a subaccount by location ID, scoped to its owner."""
        return (
            self.db.query(Subaccount)
            .filter(Subaccount.user_id == user_id, Subaccount.location_id == location_id)
            .first()
        )

    def list_subaccounts(self, user_id: UUID) -> list[Subaccount]:
        """List a tenant's subaccounts, newest first."""
        return (
            self.db.query(Subaccount)
            .filter(Subaccount.user_id == user_id)
            .order_by(Subaccount.created_at.desc())
            .all()
        )

    def create_subaccount(self, user_id: UUID, location_id: str, name: str) -> Subaccount:
        """Create a new subaccount."""
        subaccount = Subaccount(user_id=user_id, location_id=location_id, name=name)
        self.db.add(subaccount)
        self.db.flush()
        return subaccount

    def tenant_owns(self, user_id: UUID, *criteria: Any) -> bool:
        """
        EXISTS(subaccounts WHERE user_id = tenant AND <criteria>).

        Every ownership check goes through this predicate.
        """
        stmt = select(exists().where(Subaccount.user_id == user_id, *criteria))
        return bool(self.db.execute(stmt).scalar())

    def delete_subaccount_cascade(self, subaccount: Subaccount) -> list[UUID]:
        """
        Delete a subaccount with its sessions, messages, map rows and installations.

        Returns:
            IDs of the deleted sessions (their live handles must be released)
        """
        session_ids = [
            row.id
            for row in self.db.query(WhatsAppSession.id)
            .filter(WhatsAppSession.subaccount_id == subaccount.id)
            .all()
        ]
        if session_ids:
            self.db.query(Message).filter(Message.session_id.in_(session_ids)).delete(
                synchronize_session=False
            )
            self.db.query(LocationSessionMap).filter(
                LocationSessionMap.session_id.in_(session_ids)
            ).delete(synchronize_session=False)
        self.db.query(LocationSessionMap).filter(
            LocationSessionMap.subaccount_id == subaccount.id
        ).delete(synchronize_session=False)
        self.db.query(WhatsAppSession).filter(
            WhatsAppSession.subaccount_id == subaccount.id
        ).delete(synchronize_session=False)
        self.db.query(ProviderInstallation).filter(
            ProviderInstallation.subaccount_id == subaccount.id
        ).delete(synchronize_session=False)
        self.db.delete(subaccount)
        return session_ids

    # =========================================================================
    # Sessions
    # =========================================================================

    def get_session(self, session_id: UUID) -> WhatsAppSession | None:
        """Get session by ID."""
        return self.db.query(WhatsAppSession).filter(WhatsAppSession.id == session_id).first()

    def get_session_for_tenant(self, session_id: UUID, user_id: UUID) -> WhatsAppSession | None:
        """Get session by ID, scoped to its owner."""
        return (
            self.db.query(WhatsAppSession)
            .filter(WhatsAppSession.id == session_id, WhatsAppSession.user_id == user_id)
            .first()
        )

    def get_current_session(self, subaccount_id: UUID) -> WhatsAppSession | None:
        """Highest created_at wins; ties go to the highest id."""
        return (
            self.db.query(WhatsAppSession)
            .filter(WhatsAppSession.subaccount_id == subaccount_id)
            .order_by(WhatsAppSession.created_at.desc(), WhatsAppSession.id.desc())
            .first()
        )

    def create_session(self, user_id: UUID, subaccount_id: UUID, status: str) -> WhatsAppSession:
        """Create a new session row."""
        session = WhatsAppSession(user_id=user_id, subaccount_id=subaccount_id, status=status)
        self.db.add(session)
        self.db.flush()
        return session

    def update_session(self, session_id: UUID, **values: Any) -> WhatsAppSession | None:
        """Update session columns and bump updated_at."""
        session = self.get_session(session_id)
        if not session:
            return None
        for key, value in values.items():
            setattr(session, key, value)
        session.updated_at = utcnow()
        return session

    def list_sessions_for_tenant(self, user_id: UUID) -> list[tuple[WhatsAppSession, Subaccount]]:
        """List a tenant's sessions with their subaccount, newest first."""
        return (
            self.db.query(WhatsAppSession, Subaccount)
            .join(Subaccount, Subaccount.id == WhatsAppSession.subaccount_id)
            .filter(WhatsAppSession.user_id == user_id)
            .order_by(WhatsAppSession.created_at.desc(), WhatsAppSession.id.desc())
            .all()
        )

    def delete_session_cascade(self, session_id: UUID) -> None:
        """Delete a session with its map rows and messages."""
        self.db.query(LocationSessionMap).filter(
            LocationSessionMap.session_id == session_id
        ).delete(synchronize_session=False)
        self.db.query(Message).filter(Message.session_id == session_id).delete(
            synchronize_session=False
        )
        self.db.query(WhatsAppSession).filter(WhatsAppSession.id == session_id).delete(
            synchronize_session=False
        )

    # =========================================================================
    # Location -> Session Map
    # =========================================================================

    def get_location_map(self, location_id: str) -> LocationSessionMap | None:
        """Get the session mapping of a location."""
        return (
            self.db.query(LocationSessionMap)
            .filter(LocationSessionMap.location_id == location_id)
            .first()
        )

    def upsert_location_map(
        self,
        location_id: str,
        session_id: UUID,
        user_id: UUID,
        subaccount_id: UUID,
    ) -> LocationSessionMap:
        """Insert or replace the mapping for a location (conflict key: location_id)."""
        mapping = self.get_location_map(location_id)
        if mapping:
            mapping.session_id = session_id
            mapping.user_id = user_id
            mapping.subaccount_id = subaccount_id
            mapping.updated_at = utcnow()
            return mapping

        mapping = LocationSessionMap(
            location_id=location_id,
            session_id=session_id,
            user_id=user_id,
            subaccount_id=subaccount_id,
        )
        self.db.add(mapping)
        return mapping

    # =========================================================================
    # Messages
    # =========================================================================

    def create_message(
        self,
        session_id: UUID,
        user_id: UUID,
        subaccount_id: UUID,
        from_number: str,
        to_number: str,
        direction: MessageDirection,
        body: str | None = None,
        media_url: str | None = None,
        media_mime: str | None = None,
        provider_message_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Message:
        """Create a message row."""
        message = Message(
            session_id=session_id,
            user_id=user_id,
            subaccount_id=subaccount_id,
            from_number=from_number,
            to_number=to_number,
            direction=direction.value,
            body=body,
            media_url=media_url,
            media_mime=media_mime,
            provider_message_id=provider_message_id,
        )
        if created_at is not None:
            message.created_at = created_at
        self.db.add(message)
        self.db.flush()
        return message

    def list_session_messages(self, session_id: UUID, limit: int, offset: int) -> list[Message]:
        return (
            self.db.query(Message)
            .filter(Message.session_id == session_id)
            .order_by(Message.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_subaccount_messages(self, subaccount_id: UUID, limit: int, offset: int) -> list[Message]:
        return (
            self.db.query(Message)
            .filter(Message.subaccount_id == subaccount_id)
            .order_by(Message.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_conversation(self, session_id: UUID, phone: str, limit: int, offset: int) -> list[Message]:
        """Messages of a session exchanged with one phone number, newest first."""
        return (
            self.db.query(Message)
            .filter(
                Message.session_id == session_id,
                or_(Message.from_number == phone, Message.to_number == phone),
            )
            .order_by(Message.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    # =========================================================================
    # Provider Installations
    # =========================================================================

    def get_installation(self, subaccount_id: UUID) -> ProviderInstallation | None:
        """Get the CRM installation of a subaccount."""
        return (
            self.db.query(ProviderInstallation)
            .filter(ProviderInstallation.subaccount_id == subaccount_id)
            .first()
        )

    def upsert_installation(
        self,
        user_id: UUID,
        subaccount_id: UUID,
        location_id: str,
        conversation_provider_id: str | None,
        access_token: str | None,
        refresh_token: str | None,
    ) -> ProviderInstallation:
        """Insert or replace the installation of a subaccount."""
        installation = self.get_installation(subaccount_id)
        if installation is None:
            installation = ProviderInstallation(user_id=user_id, subaccount_id=subaccount_id)
            self.db.add(installation)
        installation.location_id = location_id
        installation.conversation_provider_id = conversation_provider_id
        installation.access_token = access_token
        installation.refresh_token = refresh_token
        installation.updated_at = utcnow()
        return installation

    # =========================================================================
    # Marketplace Accounts
    # =========================================================================

    def get_marketplace_account(self, user_id: UUID) -> MarketplaceAccount | None:
        return (
            self.db.query(MarketplaceAccount)
            .filter(MarketplaceAccount.user_id == user_id)
            .first()
        )

    def upsert_marketplace_account(
        self,
        user_id: UUID,
        company_id: str | None,
        user_type: str | None,
        access_token: str | None,
        refresh_token: str | None,
    ) -> MarketplaceAccount:
        """Insert or replace a tenant's marketplace account (conflict key: user_id)."""
        account = self.get_marketplace_account(user_id)
        if account is None:
            account = MarketplaceAccount(user_id=user_id)
            self.db.add(account)
        account.company_id = company_id
        account.user_type = user_type
        account.access_token = access_token
        account.refresh_token = refresh_token
        account.updated_at = utcnow()
        return account
