"""
API request/response schemas.

Request bodies keep the camelCase field names the CRM and the dashboard
send; Python code uses snake_case through aliases.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SendMessageRequest(CamelModel):
    session_id: UUID = Field(alias="sessionId")
    to: str = Field(min_length=1)
    message: str | None = None
    media_url: str | None = Field(default=None, alias="mediaUrl")
    media_mime: str | None = Field(default=None, alias="mediaMime")


class ConnectSubaccountRequest(CamelModel):
    location_id: str = Field(alias="locationId", min_length=1)
    name: str | None = None


class UpdateSubaccountRequest(CamelModel):
    name: str = Field(min_length=1, max_length=255)


class ProviderMessageRequest(CamelModel):
    """Outbound message pushed by the CRM conversation provider."""

    location_id: str = Field(alias="locationId", min_length=1)
    phone: str = Field(min_length=1)
    message: str | None = None
    attachments: list[str] = Field(default_factory=list)
    contact_id: str | None = Field(default=None, alias="contactId")
    message_id: str | None = Field(default=None, alias="messageId")
    type: str | None = None


class ProviderInstallRequest(CamelModel):
    location_id: str = Field(alias="locationId", min_length=1)
    conversation_provider_id: str = Field(alias="conversationProviderId", min_length=1)
    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str | None = Field(default=None, alias="refreshToken")


class SubaccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    location_id: str
    name: str | None
    created_at: datetime
    updated_at: datetime


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    subaccount_id: UUID
    from_number: str
    to_number: str
    body: str | None
    media_url: str | None
    media_mime: str | None
    direction: str
    provider_message_id: str | None
    created_at: datetime


class MessagePageOut(BaseModel):
    messages: list[MessageOut]
    count: int
    has_more: bool = Field(serialization_alias="hasMore")
