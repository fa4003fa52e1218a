"""
In-memory advisory-lock backend.

Useful for testing and development. Not suitable for production: locks only
exclude sessions created from the same InMemoryAdvisoryLockServer, i.e. within
one process.

The server reproduces PostgreSQL's session-level advisory lock behaviour:
- A lock free or already held by the asking session is granted
- Grants stack per session and each needs its own unlock
- Unlocking a key the session does not hold returns False
- Ending a session (close or terminate) frees every lock it held
"""

from __future__ import annotations

import asyncio
import itertools
import logging

from pgmutex.exceptions import LockConnectionError, SessionError
from pgmutex.types import LockId

logger = logging.getLogger(__name__)

_session_ids = itertools.count(1)


class InMemoryAdvisoryLockServer:
    """
    Shared lock table standing in for one PostgreSQL cluster.

    Example:
        >>> server = InMemoryAdvisoryLockServer()
        >>> lock_a = DistributedLock(server.session())
        >>> lock_b = DistributedLock(server.session())
    """

    def __init__(self) -> None:
        # lock_id -> (holding session, grant count)
        self._holders: dict[LockId, tuple[InMemoryLockSession, int]] = {}

    def session(self) -> InMemoryLockSession:
        """Create a new, not yet opened, session on this server."""
        return InMemoryLockSession(self)

    def holder_of(self, lock_id: LockId) -> InMemoryLockSession | None:
        """Return the session holding ``lock_id``, if any."""
        entry = self._holders.get(lock_id)
        return entry[0] if entry else None

    def is_locked(self, lock_id: LockId) -> bool:
        return lock_id in self._holders

    @property
    def locked_ids(self) -> frozenset[LockId]:
        return frozenset(self._holders)

    def _try_lock(self, session: InMemoryLockSession, lock_id: LockId) -> bool:
        entry = self._holders.get(lock_id)
        if entry is None:
            self._holders[lock_id] = (session, 1)
            return True
        holder, count = entry
        if holder is session:
            self._holders[lock_id] = (session, count + 1)
            return True
        return False

    def _unlock(self, session: InMemoryLockSession, lock_id: LockId) -> bool:
        entry = self._holders.get(lock_id)
        if entry is None or entry[0] is not session:
            return False
        count = entry[1] - 1
        if count:
            self._holders[lock_id] = (session, count)
        else:
            del self._holders[lock_id]
        return True

    def _release_all(self, session: InMemoryLockSession) -> int:
        owned = [lock_id for lock_id, (holder, _) in self._holders.items() if holder is session]
        for lock_id in owned:
            del self._holders[lock_id]
        return len(owned)


class InMemoryLockSession:
    """
    Session on an InMemoryAdvisoryLockServer.

    Every request yields to the event loop once, so concurrent callers
    interleave the way they would against a real server.

    Attributes:
        session_id: Process-unique number for log messages
        requests: ``(operation, lock_id)`` pairs in the order they were issued
    """

    def __init__(self, server: InMemoryAdvisoryLockServer) -> None:
        self._server = server
        self.session_id = next(_session_ids)
        self.requests: list[tuple[str, LockId]] = []
        self._opened = False
        self._closed = False
        self._terminated = False
        self._in_flight = False
        self._next_failure: BaseException | None = None

    @property
    def server(self) -> InMemoryAdvisoryLockServer:
        return self._server

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed and not self._terminated

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        if self._closed or self._terminated:
            raise LockConnectionError(f"In-memory session {self.session_id} is no longer usable")
        self._opened = True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        released = self._server._release_all(self)
        logger.debug(
            "Closed in-memory advisory-lock session: session_id=%d, released=%d",
            self.session_id,
            released,
        )

    def terminate(self) -> None:
        """Simulate the connection dropping; the server frees its locks."""
        self._terminated = True
        self._server._release_all(self)

    def fail_next(self, error: BaseException) -> None:
        """
        Make the next request raise ``error``.

        A LockConnectionError also terminates the session, as a real
        connection loss would.
        """
        self._next_failure = error

    async def try_advisory_lock(self, lock_id: LockId) -> bool:
        await self._begin("try_lock", lock_id)
        try:
            return self._server._try_lock(self, lock_id)
        finally:
            self._in_flight = False

    async def advisory_unlock(self, lock_id: LockId) -> bool:
        await self._begin("unlock", lock_id)
        try:
            return self._server._unlock(self, lock_id)
        finally:
            self._in_flight = False

    async def _begin(self, operation: str, lock_id: LockId) -> None:
        if self._closed or self._terminated:
            raise LockConnectionError(f"In-memory session {self.session_id} is no longer usable")
        if not self._opened:
            raise LockConnectionError(f"In-memory session {self.session_id} is not open")
        if self._in_flight:
            raise SessionError(
                f"{operation}({lock_id}) issued while another request is in flight"
            )

        self.requests.append((operation, lock_id))
        self._in_flight = True
        try:
            await asyncio.sleep(0)
            if self._terminated:
                raise LockConnectionError(
                    f"In-memory session {self.session_id} was terminated mid-request"
                )
            failure, self._next_failure = self._next_failure, None
            if failure is not None:
                if isinstance(failure, LockConnectionError):
                    self.terminate()
                raise failure
        except BaseException:
            self._in_flight = False
            raise


__all__ = [
    "InMemoryAdvisoryLockServer",
    "InMemoryLockSession",
]
