"""Session store with per-session write serialization."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from uuid import UUID

from nous_grade.domain.sessions import Session


class SessionRepository(Protocol):
    """Persistence interface for session records."""

    def get_session(self, session_id: UUID) -> Session | None:
        """Return a session by id, if present."""

    def save_session(self, session: Session) -> None:
        """Insert or replace the full session record."""

    def delete_session(self, session_id: UUID) -> bool:
        """Delete a session and return whether it existed."""

    def delete_expired(self, cutoff: datetime) -> int:
        """Delete sessions that expired before the cutoff and return the count."""


@dataclass
class SessionStore:
    """Authoritative read-modify-write unit for session records.

    Callers hold ``lock(session_id)`` around a get/put pair. Locks are keyed by
    session id, so writes to unrelated sessions never wait on each other, and a
    lock is discarded as soon as nobody holds or awaits it.
    """

    repository: SessionRepository
    _locks: dict[UUID, asyncio.Lock] = field(default_factory=dict, repr=False)
    _users: dict[UUID, int] = field(default_factory=dict, repr=False)

    @asynccontextmanager
    async def lock(self, session_id: UUID) -> AsyncIterator[None]:
        """Serialize access to one session record."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if self._users[session_id] == 0:
                del self._users[session_id]
                self._locks.pop(session_id, None)

    def is_locked(self, session_id: UUID) -> bool:
        """Return true while someone holds the lock for this session."""
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    async def get(self, session_id: UUID) -> Session | None:
        """Return a copy of the stored session."""
        return self.repository.get_session(session_id)

    async def put(self, session: Session) -> None:
        """Write back a full session record."""
        self.repository.save_session(session)

    async def delete(self, session_id: UUID) -> bool:
        """Remove a session record."""
        async with self.lock(session_id):
            return self.repository.delete_session(session_id)

    async def sweep(self, cutoff: datetime) -> int:
        """Purge sessions that expired before the cutoff."""
        return self.repository.delete_expired(cutoff)
