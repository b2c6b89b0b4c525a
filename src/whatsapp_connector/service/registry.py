"""
Live client registry.

Owns the table session_id -> LiveSession and the per-location locks that
serialize create/restart/delete. There is at most one live handle per
session id: acquire() refuses to install over an existing entry.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from whatsapp_connector.service.lifecycle import LiveSession

logger = logging.getLogger(__name__)


class HandleConflict(RuntimeError):
    """A live handle is already registered for this session id."""


class ClientRegistry:
    """Single-process table of live client handles."""

    def __init__(self):
        self._handles: dict[UUID, "LiveSession"] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def lock_for(self, location_id: str):
        """
        Hold the lock serializing lifecycle operations of one location.

        A location's lock is dropped once nobody holds or waits for it.
        """
        lock = self._locks.get(location_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[location_id] = lock
        self._lock_users[location_id] = self._lock_users.get(location_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[location_id] -= 1
            if not self._lock_users[location_id]:
                del self._lock_users[location_id]
                del self._locks[location_id]

    def acquire(self, live: "LiveSession") -> None:
        """
        Register a live handle.

        Raises:
            HandleConflict: If the session id already has a handle
        """
        if live.session_id in self._handles:
            raise HandleConflict(f"Session {live.session_id} already has a live client")
        self._handles[live.session_id] = live
        logger.debug("Live client acquired", extra={"session_id": str(live.session_id)})

    def release(self, session_id: UUID) -> "LiveSession | None":
        """Remove and return the handle of a session, if any."""
        live = self._handles.pop(session_id, None)
        if live is not None:
            logger.debug("Live client released", extra={"session_id": str(session_id)})
        return live

    def release_if_current(self, live: "LiveSession") -> bool:
        """Release ``live`` only if it is still the registered handle of its session."""
        if self._handles.get(live.session_id) is live:
            self.release(live.session_id)
            return True
        return False

    def get(self, session_id: UUID) -> "LiveSession | None":
        return self._handles.get(session_id)

    def is_current(self, live: "LiveSession") -> bool:
        return self._handles.get(live.session_id) is live

    def all(self) -> list["LiveSession"]:
        return list(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, session_id: UUID) -> bool:
        return session_id in self._handles
