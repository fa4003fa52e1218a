"""
Tests for the in-memory advisory-lock backend.

Verifies that InMemoryAdvisoryLockServer follows PostgreSQL's session-level
advisory lock rules closely enough to stand in for a database in tests.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from pgmutex import (
    AdvisoryLockSession,
    InMemoryAdvisoryLockServer,
    InMemoryLockSession,
    LockConnectionError,
    SessionError,
)


@pytest_asyncio.fixture
async def opened(
    session_a: InMemoryLockSession,
    session_b: InMemoryLockSession,
) -> tuple[InMemoryLockSession, InMemoryLockSession]:
    await session_a.open()
    await session_b.open()
    return session_a, session_b


class TestInMemoryLockSession:
    """Tests for session behaviour."""

    def test_implements_protocol(self, session_a: InMemoryLockSession) -> None:
        """InMemoryLockSession satisfies AdvisoryLockSession."""
        assert isinstance(session_a, AdvisoryLockSession)

    def test_sessions_have_distinct_ids(
        self,
        session_a: InMemoryLockSession,
        session_b: InMemoryLockSession,
    ) -> None:
        """Each session gets its own id."""
        assert session_a.session_id != session_b.session_id
        assert session_a.server is session_b.server

    async def test_requests_require_open(self, session_a: InMemoryLockSession) -> None:
        """Requests before open raise LockConnectionError."""
        with pytest.raises(LockConnectionError, match="not open"):
            await session_a.try_advisory_lock(1)

    async def test_exclusion_between_sessions(
        self,
        opened: tuple[InMemoryLockSession, InMemoryLockSession],
        lock_server: InMemoryAdvisoryLockServer,
    ) -> None:
        """A lock held by one session is refused to another."""
        a, b = opened

        assert await a.try_advisory_lock(42) is True
        assert await b.try_advisory_lock(42) is False
        assert lock_server.holder_of(42) is a
        assert lock_server.locked_ids == frozenset({42})

    async def test_grants_stack_within_session(
        self,
        opened: tuple[InMemoryLockSession, InMemoryLockSession],
        lock_server: InMemoryAdvisoryLockServer,
    ) -> None:
        """Each grant to the same session needs its own unlock."""
        a, _ = opened
        await a.try_advisory_lock(42)
        await a.try_advisory_lock(42)

        assert await a.advisory_unlock(42) is True
        assert lock_server.is_locked(42)
        assert await a.advisory_unlock(42) is True
        assert not lock_server.is_locked(42)
        assert await a.advisory_unlock(42) is False

    async def test_unlock_by_non_holder(
        self,
        opened: tuple[InMemoryLockSession, InMemoryLockSession],
        lock_server: InMemoryAdvisoryLockServer,
    ) -> None:
        """Only the holder can unlock."""
        a, b = opened
        await a.try_advisory_lock(42)

        assert await b.advisory_unlock(42) is False
        assert lock_server.holder_of(42) is a

    async def test_close_releases_everything(
        self,
        opened: tuple[InMemoryLockSession, InMemoryLockSession],
    ) -> None:
        """Ending a session frees all its locks."""
        a, b = opened
        await a.try_advisory_lock(1)
        await a.try_advisory_lock(2)

        await a.close()
        await a.close()

        assert a.closed
        assert await b.try_advisory_lock(1) is True
        assert await b.try_advisory_lock(2) is True

    async def test_terminate_releases_and_breaks_session(
        self,
        opened: tuple[InMemoryLockSession, InMemoryLockSession],
    ) -> None:
        """A dropped connection frees locks and fails further requests."""
        a, b = opened
        await a.try_advisory_lock(1)

        a.terminate()

        assert not a.is_open
        assert await b.try_advisory_lock(1) is True
        with pytest.raises(LockConnectionError):
            await a.advisory_unlock(1)

    async def test_fail_next_raises_once(
        self,
        opened: tuple[InMemoryLockSession, InMemoryLockSession],
    ) -> None:
        """An injected failure affects exactly one request."""
        a, _ = opened
        a.fail_next(SessionError("boom"))

        with pytest.raises(SessionError, match="boom"):
            await a.try_advisory_lock(1)
        assert await a.try_advisory_lock(1) is True

    async def test_injected_connection_error_terminates(
        self,
        opened: tuple[InMemoryLockSession, InMemoryLockSession],
        lock_server: InMemoryAdvisoryLockServer,
    ) -> None:
        """An injected connection failure drops the session's locks."""
        a, _ = opened
        await a.try_advisory_lock(1)
        a.fail_next(LockConnectionError("reset"))

        with pytest.raises(LockConnectionError):
            await a.try_advisory_lock(2)

        assert not lock_server.is_locked(1)
        assert not a.is_open

    async def test_requests_are_recorded(
        self,
        opened: tuple[InMemoryLockSession, InMemoryLockSession],
    ) -> None:
        """Issued requests are recorded in order."""
        a, _ = opened
        await a.try_advisory_lock(1)
        await a.advisory_unlock(1)

        assert a.requests == [("try_lock", 1), ("unlock", 1)]
