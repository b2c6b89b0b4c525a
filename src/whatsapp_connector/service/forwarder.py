"""
CRM Forwarder

Pushes inbound WhatsApp messages into the CRM conversation of a location
through the LeadConnector conversations API. Forwarding is best-effort:
failures are logged and reported as False, never raised.
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class CrmForwarder:
    """HTTP client for the CRM conversations endpoint."""

    def __init__(
        self,
        api_url: str,
        api_version: str,
        timeout: float = 30.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers={"Version": self.api_version})
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    @staticmethod
    def build_payload(
        location_id: str,
        phone: str,
        message: str | None,
        media_url: str | None = None,
        media_mime: str | None = None,
        message_id: str | None = None,
    ) -> dict[str, Any]:
        attachments = []
        if media_url:
            attachments.append({
                "url": media_url,
                "type": media_mime or "image",
                "name": f"whatsapp_media_{message_id}",
            })

        return {
            "locationId": location_id,
            "contactId": None,
            "phone": phone,
            "message": message,
            "attachments": attachments,
        }

    async def forward_inbound(
        self,
        access_token: str,
        location_id: str,
        phone: str,
        message: str | None,
        media_url: str | None = None,
        media_mime: str | None = None,
        message_id: str | None = None,
    ) -> bool:
        """
        Forward one inbound message to the CRM.

        Args:
            access_token: Decrypted CRM access token of the installation
            location_id: CRM location the message belongs to
            phone: Sender in canonical format
            message: Message text
            media_url: Data URL of the attachment, if any
            media_mime: MIME type of the attachment
            message_id: Stored message ID, used to name the attachment

        Returns:
            True if the CRM accepted the message
        """
        payload = self.build_payload(location_id, phone, message, media_url, media_mime, message_id)
        try:
            response = await self.http.post(
                f"{self.api_url}/conversations/messages",
                json=payload,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.RequestError as e:
            logger.error(
                f"CRM forward request failed: {e}",
                extra={"location_id": location_id, "message_id": message_id},
            )
            return False

        if response.is_error:
            logger.error(
                "CRM rejected forwarded message",
                extra={
                    "location_id": location_id,
                    "message_id": message_id,
                    "status_code": response.status_code,
                    "response": response.text[:500],
                },
            )
            return False

        logger.info(
            "Forwarded inbound message to CRM",
            extra={"location_id": location_id, "message_id": message_id},
        )
        return True
