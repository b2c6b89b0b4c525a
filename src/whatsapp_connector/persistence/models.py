"""
Connector Database Models

Tables:
- subaccounts: CRM locations, each bound to one tenant
- sessions: WhatsApp pairing attempts per subaccount
- messages: inbound/outbound messages (append-only)
- location_session_map: location -> ready session used for CRM outbound
- provider_installations: per-subaccount CRM conversation-provider credentials
- marketplace_accounts: per-tenant marketplace OAuth account
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import declarative_base

ConnectorBase = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageDirection(str, Enum):
    """Direction of a WhatsApp message."""

    INBOUND = "in"
    OUTBOUND = "out"


class TimestampMixin:
    """Common fields for all connector models."""

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Subaccount(ConnectorBase, TimestampMixin):
    """
    A CRM location bound to exactly one tenant.

    location_id is unique across the whole system, so a location cannot be
    claimed by two tenants.
    """

    __tablename__ = "subaccounts"

    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    location_id = Column(String(100), nullable=False)
    name = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("location_id", name="uq_subaccounts_location_id"),
    )


class WhatsAppSession(ConnectorBase, TimestampMixin):
    """
    One attempt at linking a WhatsApp identity to a subaccount.

    The current session of a subaccount is the row with the highest
    created_at, ties broken by the highest id.
    """

    __tablename__ = "sessions"

    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    subaccount_id = Column(
        Uuid(as_uuid=True), ForeignKey("subaccounts.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(String(20), nullable=False, default="initializing")
    pairing_code = Column(Text, nullable=True)  # data URL of the QR image
    phone_number = Column(String(20), nullable=True)  # E.164, set on ready

    __table_args__ = (
        Index("idx_sessions_subaccount_created", "subaccount_id", "created_at"),
    )


class Message(ConnectorBase, TimestampMixin):
    """Stores WhatsApp messages in both directions."""

    __tablename__ = "messages"

    session_id = Column(
        Uuid(as_uuid=True), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    subaccount_id = Column(Uuid(as_uuid=True), nullable=False)
    from_number = Column(String(40), nullable=False)
    to_number = Column(String(40), nullable=False)
    body = Column(Text, nullable=True)
    media_url = Column(Text, nullable=True)
    media_mime = Column(String(100), nullable=True)
    direction = Column(String(3), nullable=False)  # 'in' or 'out'
    provider_message_id = Column(String(150), nullable=True)

    __table_args__ = (
        Index("idx_messages_subaccount_created", "subaccount_id", "created_at"),
        Index("idx_messages_session_created", "session_id", "created_at"),
    )


class LocationSessionMap(ConnectorBase, TimestampMixin):
    """Maps a location to the session that last became ready for it."""

    __tablename__ = "location_session_map"

    location_id = Column(String(100), nullable=False)
    session_id = Column(
        Uuid(as_uuid=True), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    subaccount_id = Column(Uuid(as_uuid=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("location_id", name="uq_location_session_map_location_id"),
    )


class ProviderInstallation(ConnectorBase, TimestampMixin):
    """
    CRM conversation-provider credentials for a subaccount.

    Tokens are stored encrypted when ENCRYPTION_KEY is configured.
    """

    __tablename__ = "provider_installations"

    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    subaccount_id = Column(
        Uuid(as_uuid=True), ForeignKey("subaccounts.id", ondelete="CASCADE"), nullable=False
    )
    location_id = Column(String(100), nullable=True)
    conversation_provider_id = Column(String(150), nullable=True)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("subaccount_id", name="uq_provider_installations_subaccount_id"),
    )


class MarketplaceAccount(ConnectorBase, TimestampMixin):
    """Marketplace OAuth account of a tenant."""

    __tablename__ = "marketplace_accounts"

    user_id = Column(Uuid(as_uuid=True), nullable=False)
    company_id = Column(String(100), nullable=True)
    user_type = Column(String(50), nullable=True)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_marketplace_accounts_user_id"),
    )
