"""
Session Lifecycle Controller

Drives a WhatsApp session from creation to ready (or failure):

1. create_or_restart_session resets/creates the row and starts a live client
2. the client reports pairing codes, readiness and failures as events
3. each event is queued on the session's LiveSession and applied by its
   single worker, so one session's events are handled in emission order
4. every status change goes through the transition table below

Create, restart and delete of one location are serialized by a per-location
asyncio.Lock held across lookup, handle termination, status write and new
handle acquisition.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from connector_core.settings import Settings, get_settings
from whatsapp_connector.clients.base import (
    ClientAuthFailure,
    ClientDisconnected,
    ClientError,
    ClientEvent,
    ClientFactory,
    ClientReady,
    MessageReceived,
    MessagingClient,
    PairingCodeIssued,
)
from whatsapp_connector.clients.evolution.client import session_id_from_instance
from whatsapp_connector.clients.evolution.webhook import extract_instance_name
from whatsapp_connector.errors import InvalidPhoneFormat, NotFound, PersistenceError
from whatsapp_connector.persistence.repo import ConnectorRepository
from whatsapp_connector.phone import from_network_address
from whatsapp_connector.routing.ownership import OwnershipGuard
from whatsapp_connector.service.qr import render_pairing_code
from whatsapp_connector.service.registry import ClientRegistry
from whatsapp_connector.service.relay import MessageRelay

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Status of a WhatsApp session."""

    INITIALIZING = "initializing"
    QR = "qr"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"


class LifecycleEvent(str, Enum):
    """Inputs of the session state machine."""

    PAIRING_CODE = "pairing_code"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"
    RESTART = "restart"


_ACTIVE_TRANSITIONS = {
    LifecycleEvent.PAIRING_CODE: SessionStatus.QR,
    LifecycleEvent.READY: SessionStatus.READY,
    LifecycleEvent.DISCONNECTED: SessionStatus.DISCONNECTED,
    LifecycleEvent.AUTH_FAILURE: SessionStatus.AUTH_FAILURE,
    LifecycleEvent.RESTART: SessionStatus.INITIALIZING,
}

TRANSITIONS: dict[SessionStatus, dict[LifecycleEvent, SessionStatus]] = {
    SessionStatus.INITIALIZING: dict(_ACTIVE_TRANSITIONS),
    SessionStatus.QR: dict(_ACTIVE_TRANSITIONS),
    SessionStatus.READY: {
        LifecycleEvent.READY: SessionStatus.READY,
        LifecycleEvent.DISCONNECTED: SessionStatus.DISCONNECTED,
        LifecycleEvent.AUTH_FAILURE: SessionStatus.AUTH_FAILURE,
        LifecycleEvent.RESTART: SessionStatus.INITIALIZING,
    },
    SessionStatus.DISCONNECTED: {LifecycleEvent.RESTART: SessionStatus.INITIALIZING},
    SessionStatus.AUTH_FAILURE: {LifecycleEvent.RESTART: SessionStatus.INITIALIZING},
}

_EVENT_KINDS: dict[type, LifecycleEvent] = {
    PairingCodeIssued: LifecycleEvent.PAIRING_CODE,
    ClientReady: LifecycleEvent.READY,
    ClientDisconnected: LifecycleEvent.DISCONNECTED,
    ClientAuthFailure: LifecycleEvent.AUTH_FAILURE,
}

NO_SESSION = "no_session"


def next_status(current: SessionStatus, event: LifecycleEvent) -> SessionStatus | None:
    """Target status for an event, or None if the event is not allowed from ``current``."""
    return TRANSITIONS[current].get(event)


@dataclass
class SessionStatusView:
    """Public view of the current session of a location."""

    session_id: UUID | None
    status: str
    pairing_code: str | None = None
    phone_number: str | None = None
    pairing_expired: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": str(self.session_id) if self.session_id else None,
            "status": self.status,
            "qr": self.pairing_code,
            "phone_number": self.phone_number,
            "pairing_expired": self.pairing_expired,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


EventHandler = Callable[["LiveSession", ClientEvent], Awaitable[None]]


class LiveSession:
    """
    One live client with its event queue and worker task.

    The client callback only enqueues; the worker applies events one at a
    time. A lifecycle transition whose persistence failed is kept in
    ``pending`` and retried before the next event.
    """

    def __init__(
        self,
        session_id: UUID,
        location_id: str,
        client: MessagingClient,
        handler: EventHandler,
    ):
        self.session_id = session_id
        self.location_id = location_id
        self.client = client
        self.status = SessionStatus.INITIALIZING
        self.pending: ClientEvent | None = None
        self.queue: asyncio.Queue[ClientEvent] = asyncio.Queue()
        self.worker: asyncio.Task | None = None
        self.init_task: asyncio.Task | None = None
        self.closed = False
        self._handler = handler

    def start(self) -> None:
        self.client.bind(self.enqueue)
        self.worker = asyncio.create_task(self._run(), name=f"live-session-{self.session_id}")

    def enqueue(self, event: ClientEvent) -> None:
        if self.closed:
            logger.debug(
                f"Dropping {type(event).__name__} for closed session",
                extra={"session_id": str(self.session_id)},
            )
            return
        self.queue.put_nowait(event)

    async def _run(self) -> None:
        while not self.closed:
            event = await self.queue.get()
            try:
                await self._handler(self, event)
            except Exception:
                logger.error(
                    f"Unhandled error processing {type(event).__name__}",
                    extra={"session_id": str(self.session_id)},
                    exc_info=True,
                )
            finally:
                self.queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        if self.init_task is not None:
            await asyncio.gather(self.init_task, return_exceptions=True)
        await self.queue.join()

    async def stop(self) -> None:
        """Stop the worker and destroy the client. Safe to call from the worker itself."""
        if self.closed:
            return
        self.closed = True

        current = asyncio.current_task()
        for task in (self.init_task, self.worker):
            if task is not None and task is not current and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        # Anything still queued will never be handled
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()

        try:
            await self.client.destroy()
        except ClientError as e:
            logger.warning(
                f"Client destroy failed: {e}",
                extra={"session_id": str(self.session_id), "code": e.code},
            )

        logger.info("Live session stopped", extra={"session_id": str(self.session_id)})


class SessionLifecycleController:
    """Owns the live clients and the status of every session."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        client_factory: ClientFactory,
        relay: MessageRelay,
        registry: ClientRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.relay = relay
        self.registry = registry or relay.registry
        self.settings = settings or get_settings()

    # =========================================================================
    # Create / Restart
    # =========================================================================

    async def create_or_restart_session(self, tenant_id: UUID, location_id: str) -> UUID:
        """
        Start pairing for a location, reusing its current session if any.

        Returns immediately; the client starts in the background.

        Raises:
            Forbidden: Tenant does not own the location
            NotFound: Location has no subaccount
            PersistenceError: The status write failed
        """
        async with self.registry.lock_for(location_id):
            with self.session_factory() as db:
                OwnershipGuard(db).require_location(tenant_id, location_id)
                repo = ConnectorRepository(db)

                subaccount = repo.get_subaccount_for_tenant(tenant_id, location_id)
                if not subaccount:
                    raise NotFound("Subaccount not found")

                current = repo.get_current_session(subaccount.id)
                prior = self.registry.release(current.id) if current else None
                if prior is not None:
                    await prior.stop()

                try:
                    if current:
                        repo.update_session(
                            current.id,
                            status=SessionStatus.INITIALIZING.value,
                            pairing_code=None,
                            phone_number=None,
                        )
                        session_id = current.id
                        restarted = True
                    else:
                        session_id = repo.create_session(
                            tenant_id, subaccount.id, SessionStatus.INITIALIZING.value
                        ).id
                        restarted = False
                    db.commit()
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.error(
                        "Failed to write session status",
                        extra={"location_id": location_id},
                        exc_info=True,
                    )
                    raise PersistenceError("Failed to create session") from e

            live = LiveSession(session_id, location_id, self.client_factory(session_id), self._handle_event)
            self.registry.acquire(live)
            live.start()
            live.init_task = asyncio.create_task(self._initialize_client(live))

        logger.info(
            "Session restarted" if restarted else "Session created",
            extra={"session_id": str(session_id), "location_id": location_id, "tenant_id": str(tenant_id)},
        )
        return session_id

    async def _initialize_client(self, live: LiveSession) -> None:
        try:
            await live.client.initialize()
        except ClientError as e:
            logger.error(
                f"Client initialization failed: {e}",
                extra={"session_id": str(live.session_id), "code": e.code},
            )
            live.enqueue(ClientDisconnected(reason=f"initialize failed: {e}"))

    # =========================================================================
    # Event handling
    # =========================================================================

    async def _handle_event(self, live: LiveSession, event: ClientEvent) -> None:
        if not self.registry.is_current(live):
            logger.debug(
                f"Ignoring {type(event).__name__} from stale client",
                extra={"session_id": str(live.session_id)},
            )
            return

        if isinstance(event, MessageReceived):
            if live.pending is not None:
                await self._apply_transition(live, live.pending)
            await self.relay.handle_inbound(live.session_id, event.message, live.client)
            return

        if live.pending is not None:
            logger.info(
                f"Pending {type(live.pending).__name__} superseded by {type(event).__name__}",
                extra={"session_id": str(live.session_id)},
            )
            live.pending = None

        await self._apply_transition(live, event)

    async def _apply_transition(self, live: LiveSession, event: ClientEvent) -> None:
        kind = _EVENT_KINDS[type(event)]
        target = next_status(live.status, kind)
        if target is None:
            logger.warning(
                f"Ignoring {kind.value} event in status {live.status.value}",
                extra={"session_id": str(live.session_id)},
            )
            live.pending = None
            return

        values: dict[str, Any] = {"status": target.value}
        if isinstance(event, PairingCodeIssued):
            values["pairing_code"] = render_pairing_code(event.code)
        else:
            values["pairing_code"] = None
        if isinstance(event, ClientReady):
            values["phone_number"] = self._phone_from_identity(live, event.identity)

        try:
            with self.session_factory() as db:
                repo = ConnectorRepository(db)
                session = repo.update_session(live.session_id, **values)
                if session is None:
                    logger.warning(
                        "Session row vanished, dropping event",
                        extra={"session_id": str(live.session_id)},
                    )
                    live.pending = None
                    return
                if target is SessionStatus.READY:
                    repo.upsert_location_map(
                        live.location_id, session.id, session.user_id, session.subaccount_id
                    )
                db.commit()
        except SQLAlchemyError:
            live.pending = event
            logger.error(
                f"Failed to persist {target.value} transition, will retry",
                extra={"session_id": str(live.session_id)},
                exc_info=True,
            )
        else:
            live.pending = None
            live.status = target
            logger.info(
                f"Session is now {target.value}",
                extra={"session_id": str(live.session_id), "location_id": live.location_id},
            )

        if target in (SessionStatus.DISCONNECTED, SessionStatus.AUTH_FAILURE):
            self.registry.release_if_current(live)
            await live.stop()

    def _phone_from_identity(self, live: LiveSession, identity: str | None) -> str | None:
        if not identity:
            logger.warning("Client ready without identity", extra={"session_id": str(live.session_id)})
            return None
        try:
            return from_network_address(identity)
        except InvalidPhoneFormat:
            logger.warning(
                "Client reported unusable identity",
                extra={"session_id": str(live.session_id), "identity": identity},
            )
            return None

    # =========================================================================
    # Status / Delete / List
    # =========================================================================

    def get_status(self, location_id: str) -> SessionStatusView:
        """
        Current session of a location. Public: used by the pairing page.

        Raises:
            NotFound: Unknown location
        """
        with self.session_factory() as db:
            repo = ConnectorRepository(db)
            subaccount = repo.get_subaccount_by_location(location_id)
            if not subaccount:
                raise NotFound("Location not found")

            session = repo.get_current_session(subaccount.id)
            if not session:
                return SessionStatusView(session_id=None, status=NO_SESSION)

            view = SessionStatusView(
                session_id=session.id,
                status=session.status,
                pairing_code=session.pairing_code,
                phone_number=session.phone_number,
                created_at=session.created_at,
                updated_at=session.updated_at,
            )

        if view.status == SessionStatus.QR.value and self._pairing_expired(view.updated_at):
            view.pairing_expired = True
            view.pairing_code = None
        return view

    def _pairing_expired(self, updated_at: datetime | None) -> bool:
        ttl = self.settings.PAIRING_CODE_TTL_SECONDS
        if not ttl or updated_at is None:
            return False
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - updated_at > timedelta(seconds=ttl)

    async def delete_session(self, tenant_id: UUID, location_id: str) -> UUID:
        """
        Delete the current session of a location with its map rows and messages.

        Raises:
            Forbidden: Tenant does not own the location
            NotFound: No subaccount or no session
        """
        async with self.registry.lock_for(location_id):
            with self.session_factory() as db:
                OwnershipGuard(db).require_location(tenant_id, location_id)
                repo = ConnectorRepository(db)

                subaccount = repo.get_subaccount_for_tenant(tenant_id, location_id)
                if not subaccount:
                    raise NotFound("Subaccount not found")
                session = repo.get_current_session(subaccount.id)
                if not session:
                    raise NotFound("No session found")
                session_id = session.id

                live = self.registry.release(session_id)
                if live is not None:
                    await live.stop()

                try:
                    repo.delete_session_cascade(session_id)
                    db.commit()
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.error("Failed to delete session", extra={"session_id": str(session_id)}, exc_info=True)
                    raise PersistenceError("Failed to delete session") from e

        logger.info("Session deleted", extra={"session_id": str(session_id), "location_id": location_id})
        return session_id

    async def release_sessions(self, session_ids: list[UUID]) -> None:
        """Stop live clients of sessions removed by a subaccount cascade."""
        for session_id in session_ids:
            live = self.registry.release(session_id)
            if live is not None:
                await live.stop()

    def list_sessions(self, tenant_id: UUID) -> list[dict[str, Any]]:
        """All sessions of a tenant with their location, newest first."""
        with self.session_factory() as db:
            rows = ConnectorRepository(db).list_sessions_for_tenant(tenant_id)
            return [
                {
                    "id": str(session.id),
                    "subaccount_id": str(session.subaccount_id),
                    "status": session.status,
                    "phone_number": session.phone_number,
                    "created_at": session.created_at.isoformat() if session.created_at else None,
                    "updated_at": session.updated_at.isoformat() if session.updated_at else None,
                    "live": session.id in self.registry,
                    "subaccount": {"location_id": subaccount.location_id, "name": subaccount.name},
                }
                for session, subaccount in rows
            ]

    # =========================================================================
    # Webhooks / Shutdown
    # =========================================================================

    async def route_webhook(self, payload: dict[str, Any]) -> bool:
        """
        Hand a live-client webhook to the session it belongs to.

        Returns:
            True if a live client took it
        """
        instance = extract_instance_name(payload)
        session_id = session_id_from_instance(instance, self.settings.EVOLUTION_INSTANCE_PREFIX)
        live = self.registry.get(session_id) if session_id else None
        if live is None:
            logger.info(
                "Webhook for unknown or stale instance ignored",
                extra={"instance": instance, "event": payload.get("event")},
            )
            return False

        await live.client.handle_webhook(payload)
        return True

    async def shutdown(self) -> None:
        """Stop every live client."""
        handles = self.registry.all()
        for live in handles:
            self.registry.release(live.session_id)
            await live.stop()
        logger.info(f"Stopped {len(handles)} live sessions")
