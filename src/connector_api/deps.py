"""
Request dependencies: bearer authentication, wired services and rate limits.
"""

import logging
from uuid import UUID

from fastapi import Depends, Request
from jose import JWTError, jwt

from connector_core.settings import Settings, get_settings
from whatsapp_connector.errors import Unauthenticated
from whatsapp_connector.ratelimit import RateLimiter, RateLimitRule
from whatsapp_connector.service.lifecycle import SessionLifecycleController
from whatsapp_connector.service.relay import MessageRelay

logger = logging.getLogger(__name__)

# typ and aud claims of signed OAuth state tokens
OAUTH_STATE_TYPE = "oauth_state"


def decode_bearer_token(token: str, settings: Settings) -> dict | None:
    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options={"verify_aud": bool(settings.JWT_AUDIENCE)},
        )
    except JWTError as e:
        logger.info(f"Rejected bearer token: {e}")
        return None

    if payload.get("typ") == OAUTH_STATE_TYPE:
        logger.info("Rejected OAuth state used as bearer token")
        return None
    return payload


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


async def require_tenant(request: Request) -> UUID:
    """
    Resolve the tenant from the bearer JWT (``sub`` claim).

    Raises:
        Unauthenticated: Missing, invalid or expired token
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise Unauthenticated("Missing or invalid authorization header")

    payload = decode_bearer_token(auth_header[7:], get_app_settings(request))
    if payload is None:
        raise Unauthenticated("Invalid or expired token")

    try:
        return UUID(payload.get("sub") or "")
    except ValueError:
        raise Unauthenticated("Token has no valid subject")


def get_controller(request: Request) -> SessionLifecycleController:
    return request.app.state.controller


def get_relay(request: Request) -> MessageRelay:
    return request.app.state.relay


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(rule: RateLimitRule):
    """Dependency counting one hit of ``rule`` for the caller's IP."""

    def dependency(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
        limiter.hit(rule, client_ip(request))

    dependency.__name__ = f"rate_limit_{rule.bucket}"
    return dependency
