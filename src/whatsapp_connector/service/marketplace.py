"""
Marketplace OAuth

Authorization-code flow against the CRM marketplace: build the consent URL,
exchange the returned code for tokens and store them on the tenant's
marketplace account.
"""

import logging
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from connector_core.settings import Settings, get_settings
from whatsapp_connector.errors import ConnectorError, PersistenceError
from whatsapp_connector.persistence.models import MarketplaceAccount
from whatsapp_connector.persistence.repo import ConnectorRepository
from whatsapp_connector.secrets import encrypt_secret

logger = logging.getLogger(__name__)


class OAuthExchangeFailed(ConnectorError):
    code = "oauth_exchange_failed"
    status_code = 502
    default_message = "OAuth token exchange failed"


class MarketplaceOAuth:
    """OAuth client for the CRM marketplace."""

    def __init__(self, settings: Settings | None = None, timeout: float = 30.0):
        self.settings = settings or get_settings()
        self.timeout = timeout

    def authorization_url(self, state: str | None = None) -> str:
        """Consent screen URL the tenant is redirected to."""
        params = {
            "response_type": "code",
            "redirect_uri": self.settings.MARKETPLACE_REDIRECT_URI,
            "client_id": self.settings.MARKETPLACE_CLIENT_ID,
            "scope": self.settings.MARKETPLACE_SCOPES,
        }
        if state:
            params["state"] = state
        return f"{self.settings.MARKETPLACE_OAUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Raises:
            OAuthExchangeFailed: On transport failure or a rejected code
        """
        url = f"{self.settings.LEADCONNECTOR_API_URL.rstrip('/')}/oauth/token"
        data = {
            "client_id": self.settings.MARKETPLACE_CLIENT_ID,
            "client_secret": self.settings.MARKETPLACE_CLIENT_SECRET,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.MARKETPLACE_REDIRECT_URI,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, data=data, headers={"Accept": "application/json"})
        except httpx.RequestError as e:
            logger.error(f"OAuth token request failed: {e}")
            raise OAuthExchangeFailed(f"OAuth token request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "OAuth token exchange rejected",
                extra={"status_code": response.status_code, "response": response.text[:500]},
            )
            raise OAuthExchangeFailed()

        return response.json()

    def store_tokens(self, db: Session, tenant_id: UUID, tokens: dict[str, Any]) -> MarketplaceAccount:
        """Upsert the tenant's marketplace account (conflict key: user_id)."""
        repo = ConnectorRepository(db)
        account = repo.upsert_marketplace_account(
            user_id=tenant_id,
            company_id=tokens.get("companyId"),
            user_type=tokens.get("userType"),
            access_token=encrypt_secret(tokens.get("access_token")),
            refresh_token=encrypt_secret(tokens.get("refresh_token")),
        )
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to store marketplace tokens", exc_info=True)
            raise PersistenceError("Failed to store marketplace account") from e

        logger.info(
            "Marketplace account connected",
            extra={"tenant_id": str(tenant_id), "company_id": account.company_id},
        )
        return account
