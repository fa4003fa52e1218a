"""
Shared pytest fixtures for the pgmutex library tests.

This module provides:
- In-memory advisory-lock server and sessions (lock_server, session_a, session_b)
- Opened DistributedLock objects on independent sessions (lock_a, lock_b)
- A recording tracer (mock_tracer)

The in-memory backend follows PostgreSQL's session-level advisory lock
semantics, so lock coordinator behaviour can be tested without a database.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from pgmutex import DistributedLock, InMemoryAdvisoryLockServer, InMemoryLockSession
from pgmutex.observability import MockTracer


@pytest.fixture
def lock_server() -> InMemoryAdvisoryLockServer:
    """Provide a fresh in-memory lock server (one per test)."""
    return InMemoryAdvisoryLockServer()


@pytest.fixture
def session_a(lock_server: InMemoryAdvisoryLockServer) -> InMemoryLockSession:
    """Provide the first session on the shared server."""
    return lock_server.session()


@pytest.fixture
def session_b(lock_server: InMemoryAdvisoryLockServer) -> InMemoryLockSession:
    """Provide a second, independent session on the shared server."""
    return lock_server.session()


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a tracer that records spans."""
    return MockTracer()


@pytest_asyncio.fixture
async def lock_a(session_a: InMemoryLockSession) -> AsyncGenerator[DistributedLock, None]:
    """Provide an opened DistributedLock on session_a."""
    lock = DistributedLock(session_a, holder_id="worker-a", enable_tracing=False)
    await lock.open()
    yield lock
    await lock.close()


@pytest_asyncio.fixture
async def lock_b(session_b: InMemoryLockSession) -> AsyncGenerator[DistributedLock, None]:
    """Provide an opened DistributedLock on session_b."""
    lock = DistributedLock(session_b, holder_id="worker-b", enable_tracing=False)
    await lock.open()
    yield lock
    await lock.close()
