"""
WhatsApp Connector API

FastAPI application bridging CRM locations and WhatsApp sessions.

Responsibilities:
- Session pairing and lifecycle (/location)
- Message send and history (/messages)
- Subaccount administration (/admin/subaccounts)
- CRM conversation-provider hooks and pairing page (/provider)
- Marketplace OAuth (/auth)
- Evolution API webhooks (/webhook)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from connector_api.deps import rate_limit
from connector_api.routes import auth, messages, provider, sessions, subaccounts, webhook
from connector_core.db import get_db, get_sessionmaker
from connector_core.redis import get_redis_client
from connector_core.settings import Settings, get_settings
from whatsapp_connector import __version__
from whatsapp_connector.clients.base import ClientFactory
from whatsapp_connector.clients.factory import build_client_factory
from whatsapp_connector.errors import ConnectorError, RateLimited
from whatsapp_connector.ratelimit import API, RateLimiter
from whatsapp_connector.service.forwarder import CrmForwarder
from whatsapp_connector.service.lifecycle import SessionLifecycleController
from whatsapp_connector.service.registry import ClientRegistry
from whatsapp_connector.service.relay import MessageRelay

logger = logging.getLogger(__name__)


async def connector_error_handler(request: Request, exc: ConnectorError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}", extra={"path": request.url.path})
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    client_factory: ClientFactory | None = None,
    forwarder: CrmForwarder | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """
    Build the API with its services.

    Every collaborator can be injected; missing ones are built from settings.
    """
    settings = settings or get_settings()
    injected_session_factory = session_factory is not None
    session_factory = session_factory or get_sessionmaker()
    forwarder = forwarder or CrmForwarder(settings.LEADCONNECTOR_API_URL, settings.LEADCONNECTOR_API_VERSION)
    if rate_limiter is None:
        rate_limiter = RateLimiter(get_redis_client(), enabled=settings.RATE_LIMIT_ENABLED)

    registry = ClientRegistry()
    relay = MessageRelay(session_factory, registry, forwarder)
    controller = SessionLifecycleController(
        session_factory=session_factory,
        client_factory=client_factory or build_client_factory(settings),
        relay=relay,
        registry=registry,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{settings.APP_NAME} started", extra={"environment": settings.ENVIRONMENT})
        yield
        await controller.shutdown()
        await forwarder.close()
        logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Connects CRM locations to WhatsApp sessions",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.relay = relay
    app.state.controller = controller
    app.state.rate_limiter = rate_limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )
    app.add_exception_handler(ConnectorError, connector_error_handler)

    if injected_session_factory:

        def get_injected_db():
            db = session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = get_injected_db

    for module in (sessions, messages, subaccounts, provider, auth):
        app.include_router(module.router, dependencies=[Depends(rate_limit(API))])
    # Evolution webhooks stay outside the per-IP API bucket
    app.include_router(webhook.router)

    @app.get("/")
    async def root():
        return {"service": settings.APP_NAME, "version": __version__, "status": "running"}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "service": "whatsapp-connector", "live_sessions": len(registry)}

    return app
