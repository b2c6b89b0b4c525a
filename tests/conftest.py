"""
Pytest fixtures for connector tests.

Everything runs against an in-memory SQLite database and stub clients;
no Postgres, Redis or WhatsApp backend is needed.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from connector_core.settings import Settings
from whatsapp_connector.clients.stub import StubMessagingClient
from whatsapp_connector.persistence.models import ConnectorBase, Subaccount, WhatsAppSession
from whatsapp_connector.service.lifecycle import LiveSession, SessionLifecycleController
from whatsapp_connector.service.registry import ClientRegistry
from whatsapp_connector.service.relay import MessageRelay

JWT_SECRET = "test-jwt-secret"


class RecordingForwarder:
    """Stands in for CrmForwarder and keeps every forwarded call."""

    def __init__(self, result: bool = True):
        self.result = result
        self.calls: list[dict] = []
        self.closed = False

    async def forward_inbound(self, **kwargs) -> bool:
        self.calls.append(kwargs)
        return self.result

    async def close(self) -> None:
        self.closed = True


class StubClientFactory:
    """Client factory that remembers every client it built."""

    def __init__(self, **client_kwargs):
        self.client_kwargs = client_kwargs
        self.clients: list[StubMessagingClient] = []

    def __call__(self, session_id: UUID) -> StubMessagingClient:
        client = StubMessagingClient(session_id, **self.client_kwargs)
        self.clients.append(client)
        return client

    @property
    def last(self) -> StubMessagingClient:
        return self.clients[-1]


class FakeRedisPipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))
        return self

    def ttl(self, key):
        self.ops.append(("ttl", key))
        return self

    def execute(self):
        results = [getattr(self.redis, name)(key) for name, key in self.ops]
        self.ops = []
        return results


class FakeRedis:
    """The handful of Redis commands the rate limiter uses."""

    def __init__(self):
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    def pipeline(self):
        return FakeRedisPipeline(self)

    def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def ttl(self, key):
        if key not in self.values:
            return -2
        return self.ttls.get(key, -1)

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        SUPABASE_JWT_SECRET=JWT_SECRET,
        JWT_AUDIENCE="authenticated",
        DATABASE_URL="sqlite://",
        EVOLUTION_API_KEY="",
        MESSAGING_CLIENT="stub",
        RATE_LIMIT_ENABLED=False,
        PAIRING_CODE_TTL_SECONDS=None,
        CORS_ORIGINS=["http://localhost:3000"],
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    ConnectorBase.metadata.create_all(engine)
    yield engine
    ConnectorBase.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tenant_id():
    return UUID("12345678-1234-1234-1234-123456789012")


@pytest.fixture
def other_tenant_id():
    return UUID("87654321-4321-4321-4321-210987654321")


@pytest.fixture
def location_id():
    return "loc_abc123"


@pytest.fixture
def subaccount(session_factory, tenant_id, location_id):
    """A subaccount of ``tenant_id`` for ``location_id``."""
    with session_factory() as db:
        subaccount = Subaccount(user_id=tenant_id, location_id=location_id, name="Main Office")
        db.add(subaccount)
        db.commit()
        return subaccount


@pytest.fixture
def make_session(session_factory):
    """Insert a session row directly, bypassing the lifecycle."""

    def _make(subaccount, status="ready", phone_number="+16502530000", created_at=None):
        with session_factory() as db:
            session = WhatsAppSession(
                user_id=subaccount.user_id,
                subaccount_id=subaccount.id,
                status=status,
                phone_number=phone_number,
            )
            if created_at is not None:
                session.created_at = created_at
            db.add(session)
            db.commit()
            return session

    return _make


@pytest.fixture
def registry():
    return ClientRegistry()


@pytest.fixture
def forwarder():
    return RecordingForwarder()


@pytest.fixture
def client_factory():
    return StubClientFactory()


@pytest.fixture
def relay(session_factory, registry, forwarder):
    return MessageRelay(session_factory, registry, forwarder)


@pytest_asyncio.fixture
async def controller(session_factory, client_factory, relay, registry, settings):
    controller = SessionLifecycleController(
        session_factory=session_factory,
        client_factory=client_factory,
        relay=relay,
        registry=registry,
        settings=settings,
    )
    yield controller
    await controller.shutdown()


@pytest.fixture
def attach_client(registry):
    """Register an idle live handle for a session so sends can reach a stub client."""

    def _attach(session, location_id="loc_abc123", **client_kwargs) -> StubMessagingClient:
        client = StubMessagingClient(session.id, **client_kwargs)

        async def _no_handler(live, event):
            return None

        registry.acquire(LiveSession(session.id, location_id, client, _no_handler))
        return client

    return _attach


@pytest.fixture
def fake_redis():
    return FakeRedis()


def make_token(tenant_id: UUID, secret: str = JWT_SECRET, expires_in: timedelta = timedelta(hours=1)) -> str:
    claims = {
        "sub": str(tenant_id),
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def auth_headers(tenant_id):
    return {"Authorization": f"Bearer {make_token(tenant_id)}"}


@pytest.fixture
def other_auth_headers(other_tenant_id):
    return {"Authorization": f"Bearer {make_token(other_tenant_id)}"}


@pytest.fixture
def token_for():
    """Builds bearer tokens, e.g. expired ones or ones signed with another secret."""
    return make_token
