"""
REST calls against the Evolution API instance endpoints.

Every connector session gets its own Evolution instance, named from the
session id (see ``instance_name_for``).
"""

import logging
from typing import Any

import httpx

from whatsapp_connector.clients.base import ClientError

logger = logging.getLogger(__name__)

# Instance events the connector subscribes to on creation
WEBHOOK_EVENTS = ["QRCODE_UPDATED", "CONNECTION_UPDATE", "MESSAGES_UPSERT"]

DEFAULT_INTEGRATION = "WHATSAPP-BAILEYS"


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("error", "message", "response"):
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
    return "Evolution API error"


class EvolutionInstanceManager:
    """Instance create/connect/inspect/logout/delete plus the raw request helper."""

    def __init__(self, api_url: str, api_key: str, timeout: float = 30.0):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"apikey": self.api_key},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def request(self, method: str, endpoint: str, json_data: dict[str, Any] | None = None) -> Any:
        """
        Call ``endpoint`` and return the decoded body.

        Non-JSON bodies come back as ``{"raw": text}``.

        Raises:
            ClientError: transport failures (code "HTTP_ERROR", retryable) and
                4xx/5xx answers (code = status, retryable for 5xx)
        """
        try:
            response = await self.http.request(method.upper(), self.api_url + endpoint, json=json_data)
        except httpx.RequestError as e:
            logger.error(
                f"Evolution API unreachable: {e}",
                extra={"endpoint": endpoint, "method": method.upper()},
            )
            raise ClientError(f"HTTP request failed: {e}", code="HTTP_ERROR", retryable=True) from e

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        if response.is_error:
            logger.warning(
                f"Evolution API returned {response.status_code}",
                extra={"endpoint": endpoint, "status_code": response.status_code},
            )
            raise ClientError(
                _error_message(body),
                code=str(response.status_code),
                details=body if isinstance(body, dict) else {"body": body},
                retryable=response.status_code >= 500,
            )
        return body

    async def create_instance(
        self,
        instance_name: str,
        webhook_url: str | None = None,
        integration: str = DEFAULT_INTEGRATION,
    ) -> dict[str, Any]:
        """Create ``instance_name`` with QR pairing; the answer may already hold the first code."""
        payload: dict[str, Any] = {
            "instanceName": instance_name,
            "integration": integration,
            "qrcode": True,
        }
        if webhook_url:
            payload["webhook"] = {
                "url": webhook_url,
                "events": WEBHOOK_EVENTS,
                "byEvents": False,
                "base64": True,
            }
        return await self.request("POST", "/instance/create", payload)

    async def connect_instance(self, instance_name: str) -> dict[str, Any]:
        return await self.request("GET", f"/instance/connect/{instance_name}")

    async def fetch_instance(self, instance_name: str) -> dict[str, Any]:
        """Details of one instance (state, owner JID), or ``{}`` when Evolution does not know it."""
        body = await self.request("GET", f"/instance/fetchInstances?instanceName={instance_name}")
        if isinstance(body, dict):
            body = body.get("instance", [])
        entries = [body] if isinstance(body, dict) else body

        for entry in entries:
            info = entry.get("instance", entry)
            if instance_name in (info.get("instanceName"), info.get("name")):
                return info
        return {}

    async def logout_instance(self, instance_name: str) -> None:
        await self.request("DELETE", f"/instance/logout/{instance_name}")

    async def delete_instance(self, instance_name: str) -> None:
        await self.request("DELETE", f"/instance/delete/{instance_name}")
