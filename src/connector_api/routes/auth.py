"""
Marketplace OAuth endpoints.

The tenant starts at /auth/connect (bearer required), approves the app on
the marketplace and comes back to /auth/callback, which runs in a popup and
reports the outcome to the opener window.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from connector_api.deps import OAUTH_STATE_TYPE, get_app_settings, rate_limit, require_tenant
from connector_core.db import get_db
from connector_core.settings import Settings
from whatsapp_connector.errors import ConnectorError, NotFound
from whatsapp_connector.persistence.repo import ConnectorRepository
from whatsapp_connector.ratelimit import OAUTH
from whatsapp_connector.service.marketplace import MarketplaceOAuth

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

router = APIRouter(prefix="/auth", tags=["auth"])

STATE_TTL = timedelta(minutes=10)


def encode_state(settings: Settings, tenant_id: UUID, return_url: str) -> str:
    """Signed OAuth state carrying the tenant and where to go afterwards."""
    claims = {
        "sub": str(tenant_id),
        "typ": OAUTH_STATE_TYPE,
        "aud": OAUTH_STATE_TYPE,
        "return_url": return_url,
        "exp": datetime.now(timezone.utc) + STATE_TTL,
    }
    return jwt.encode(claims, settings.SUPABASE_JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_state(settings: Settings, state: str) -> dict | None:
    try:
        claims = jwt.decode(
            state,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=OAUTH_STATE_TYPE,
        )
    except JWTError:
        return None
    return claims if claims.get("typ") == OAUTH_STATE_TYPE else None


def _result_page(request: Request, success: bool, detail: str, status_code: int = 200, return_url: str | None = None):
    return templates.TemplateResponse(
        request,
        "oauth_result.html",
        {"success": success, "detail": detail, "return_url": return_url},
        status_code=status_code,
    )


@router.get("/connect", dependencies=[Depends(rate_limit(OAUTH))])
async def connect(
    request: Request,
    return_url: str | None = Query(None),
    tenant_id: UUID = Depends(require_tenant),
):
    """Redirect to the marketplace consent screen."""
    settings = get_app_settings(request)
    state = encode_state(settings, tenant_id, return_url or f"{settings.FRONTEND_URL}/dashboard")
    url = MarketplaceOAuth(settings).authorization_url(state)
    logger.info("Redirecting to marketplace OAuth", extra={"tenant_id": str(tenant_id)})
    return RedirectResponse(url=url, status_code=302)


@router.get("/callback", response_class=HTMLResponse, dependencies=[Depends(rate_limit(OAUTH))])
async def callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    db: Session = Depends(get_db),
):
    """Exchange the authorization code and store the tenant's marketplace account."""
    if error:
        logger.warning(f"OAuth error from marketplace: {error}")
        return _result_page(request, False, f"Error: {error}", status_code=400)

    if not code or not state:
        return _result_page(request, False, "Missing authorization code or state", status_code=400)

    settings = get_app_settings(request)
    claims = decode_state(settings, state)
    if not claims or not claims.get("sub"):
        return _result_page(request, False, "Invalid state parameter", status_code=400)

    oauth = MarketplaceOAuth(settings)
    try:
        tokens = await oauth.exchange_code(code)
        oauth.store_tokens(db, UUID(claims["sub"]), tokens)
    except ConnectorError as e:
        return _result_page(request, False, e.message, status_code=e.status_code)

    return _result_page(request, True, "Your LeadConnector account has been connected.", return_url=claims.get("return_url"))


@router.get("/account")
async def get_account(
    tenant_id: UUID = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    """The tenant's marketplace account, without tokens."""
    account = ConnectorRepository(db).get_marketplace_account(tenant_id)
    if not account:
        raise NotFound("Marketplace account not connected")
    return {
        "account": {
            "id": str(account.id),
            "company_id": account.company_id,
            "user_type": account.user_type,
            "connected": bool(account.access_token),
            "created_at": account.created_at.isoformat(),
            "updated_at": account.updated_at.isoformat(),
        }
    }
