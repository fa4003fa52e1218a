"""
Distributed mutual exclusion over PostgreSQL advisory locks.

A DistributedLock owns one advisory-lock session for its whole life and runs
units of work under a 64-bit lock identifier. At most one session in the
cluster holds a given identifier at any instant; contention is reported
immediately, never waited on.

Usage:
    >>> async with DistributedLock(settings, holder_id="worker-1") as lock:
    ...     outcome = await lock.execute_under_lock(42, rebuild_index)
    ...     if outcome is LockOutcome.NOT_ACQUIRED:
    ...         print("Another instance is rebuilding the index")

Error precedence:
    When the unit of work raises, the lock is released first and a
    CriticalSectionError chained from the original error is raised. If that
    release also fails, the release error is logged and attached to the
    CriticalSectionError as ``release_error``; the unit of work's error stays
    the primary cause. A release that fails after a successful unit of work
    raises ReleaseAfterSuccessError.
"""

from __future__ import annotations

import inspect
import logging
import warnings
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine

from pgmutex.config import ConnectionSettings
from pgmutex.exceptions import (
    CriticalSectionError,
    LockConnectionError,
    LockNotHeldWarning,
    ReleaseAfterSuccessError,
)
from pgmutex.keys import validate_lock_id
from pgmutex.observability import (
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_HOLDER_ID,
    ATTR_LOCK_ACQUIRED,
    ATTR_LOCK_ID,
    ATTR_LOCK_OUTCOME,
    ATTR_LOCK_RELEASED,
    Tracer,
    create_tracer,
)
from pgmutex.session import AdvisoryLockSession, PostgreSQLLockSession
from pgmutex.types import CriticalSection, LockId, LockOutcome

logger = logging.getLogger(__name__)


class DistributedLock:
    """
    Runs critical sections under PostgreSQL session-level advisory locks.

    Lifecycle:
        The session is opened by ``open()`` (or entering ``async with``) and
        closed exactly once by ``close()`` (or leaving ``async with``). Closing
        the session releases every lock it still holds on the server.

    Concurrency:
        One request is in flight per lock object. Calls from concurrent tasks
        on the same object fail with SessionError rather than queueing; give
        each concurrent caller its own DistributedLock.

    Example:
        >>> lock = DistributedLock("postgresql://app@db/orders")
        >>> await lock.open()
        >>> try:
        ...     if await lock.try_acquire(42):
        ...         try:
        ...             await do_exclusive_work()
        ...         finally:
        ...             await lock.release(42)
        ... finally:
        ...     await lock.close()
    """

    def __init__(
        self,
        target: ConnectionSettings | str | URL | AsyncEngine | AdvisoryLockSession,
        *,
        holder_id: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the lock.

        Args:
            target: Where the session connects. Anything PostgreSQLLockSession
                accepts, or a ready AdvisoryLockSession (e.g. an
                InMemoryLockSession).
            holder_id: Optional identifier for this lock holder (for logs and spans)
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: Whether to enable OpenTelemetry tracing.
                          Ignored if tracer is explicitly provided.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

        if isinstance(target, AdvisoryLockSession):
            self._session: AdvisoryLockSession = target
        else:
            self._session = PostgreSQLLockSession(target)

        self._holder_id = holder_id
        # lock_id -> grant count; PostgreSQL session locks stack
        self._held: dict[LockId, int] = {}

    async def __aenter__(self) -> DistributedLock:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def session(self) -> AdvisoryLockSession:
        return self._session

    @property
    def holder_id(self) -> str | None:
        return self._holder_id

    @property
    def is_open(self) -> bool:
        return self._session.is_open

    @property
    def held_lock_ids(self) -> frozenset[LockId]:
        """Identifiers this object believes its session holds."""
        return frozenset(self._held)

    def is_held(self, lock_id: LockId) -> bool:
        return lock_id in self._held

    async def open(self) -> None:
        """
        Open the session.

        Raises:
            LockConnectionError: If the database cannot be reached or rejects
                the credentials
        """
        await self._session.open()

    async def close(self) -> None:
        """
        Close the session. Idempotent.

        Any lock still held is released by the server when the session ends.
        """
        if self._session.closed:
            return

        if self._held:
            logger.info(
                "Closing advisory-lock session with held locks: lock_ids=%s",
                sorted(self._held),
                extra={"holder_id": self._holder_id},
            )
        try:
            await self._session.close()
        finally:
            self._held.clear()

    async def try_acquire(self, lock_id: LockId) -> bool:
        """
        Try to acquire an advisory lock without waiting.

        Args:
            lock_id: 64-bit signed lock identifier

        Returns:
            True if the lock was granted to this session, False if another
            session holds it

        Raises:
            TypeError, ValueError: If lock_id is not a 64-bit int
            SessionError: If the request fails on the session
            LockConnectionError: If the session is not open or was lost
        """
        lock_id = validate_lock_id(lock_id)

        with self._tracer.span("pgmutex.lock.try_acquire", self._span_attributes(lock_id)) as span:
            logger.info(
                "Trying to acquire advisory lock: lock_id=%d",
                lock_id,
                extra=self._log_extra(lock_id),
            )

            try:
                acquired = await self._session.try_advisory_lock(lock_id)
            except LockConnectionError:
                self._forget_held_locks()
                raise

            if span:
                span.set_attribute(ATTR_LOCK_ACQUIRED, acquired)

            if acquired:
                self._held[lock_id] = self._held.get(lock_id, 0) + 1
                logger.info(
                    "Acquired advisory lock: lock_id=%d",
                    lock_id,
                    extra=self._log_extra(lock_id),
                )
            else:
                logger.info(
                    "Advisory lock rejected: lock_id=%d",
                    lock_id,
                    extra=self._log_extra(lock_id),
                )

            return acquired

    async def release(self, lock_id: LockId) -> bool:
        """
        Release an advisory lock held by this session.

        Releasing an identifier the session does not hold is a caller logic
        error, not a failure: it is logged, reported as LockNotHeldWarning and
        answered with False.

        Args:
            lock_id: 64-bit signed lock identifier

        Returns:
            True if the lock was held and is now released, False otherwise

        Raises:
            TypeError, ValueError: If lock_id is not a 64-bit int
            SessionError: If the request fails on the session
            LockConnectionError: If the session is not open or was lost
        """
        return await self._release(lock_id, stacklevel=3)

    async def _release(self, lock_id: LockId, stacklevel: int) -> bool:
        """
        Release ``lock_id``.

        ``stacklevel`` makes LockNotHeldWarning point at the caller's frame:
        the frames between this one and the caller's code, plus one.
        """
        lock_id = validate_lock_id(lock_id)

        with self._tracer.span("pgmutex.lock.release", self._span_attributes(lock_id)) as span:
            logger.info(
                "Releasing advisory lock: lock_id=%d",
                lock_id,
                extra=self._log_extra(lock_id),
            )

            try:
                released = await self._session.advisory_unlock(lock_id)
            except LockConnectionError:
                self._forget_held_locks()
                raise

            if span:
                span.set_attribute(ATTR_LOCK_RELEASED, released)

            if released:
                remaining = self._held.get(lock_id, 1) - 1
                if remaining > 0:
                    self._held[lock_id] = remaining
                else:
                    self._held.pop(lock_id, None)
                return True

            self._held.pop(lock_id, None)
            logger.warning(
                "Advisory lock was not held by this session: lock_id=%d",
                lock_id,
                extra=self._log_extra(lock_id),
            )
            warnings.warn(
                f"Advisory lock {lock_id} was not held by this session",
                LockNotHeldWarning,
                stacklevel=stacklevel,
            )
            return False

    async def execute_under_lock(
        self,
        lock_id: LockId,
        critical_section: CriticalSection,
    ) -> LockOutcome:
        """
        Run ``critical_section`` if the lock can be acquired right now.

        The lock is released on every exit path of the critical section,
        including cancellation.

        Args:
            lock_id: 64-bit signed lock identifier
            critical_section: Zero-argument callable; may return an awaitable

        Returns:
            LockOutcome.NOT_ACQUIRED if another session holds the lock (the
            callable is not invoked), LockOutcome.EXECUTED if it ran and the
            lock was released

        Raises:
            CriticalSectionError: If the callable raised; chained from its error
            ReleaseAfterSuccessError: If the callable succeeded but release failed
            SessionError: If the acquisition request failed on the session
            LockConnectionError: If the session is not open or was lost
        """
        lock_id = validate_lock_id(lock_id)

        with self._tracer.span("pgmutex.lock.execute", self._span_attributes(lock_id)) as span:
            if not await self.try_acquire(lock_id):
                if span:
                    span.set_attribute(ATTR_LOCK_OUTCOME, LockOutcome.NOT_ACQUIRED.value)
                return LockOutcome.NOT_ACQUIRED

            try:
                result = critical_section()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                release_error = await self._release_after_failure(lock_id, e, stacklevel=4)
                if span:
                    span.set_attribute(ATTR_LOCK_OUTCOME, LockOutcome.FAILED.value)
                    span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                raise CriticalSectionError(lock_id, release_error) from e
            except BaseException as e:
                # Cancellation and interpreter exit propagate unwrapped
                await self._release_after_failure(lock_id, e, stacklevel=4)
                raise

            try:
                await self._release(lock_id, stacklevel=3)
            except Exception as e:
                if span:
                    span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                raise ReleaseAfterSuccessError(lock_id) from e

            if span:
                span.set_attribute(ATTR_LOCK_OUTCOME, LockOutcome.EXECUTED.value)
            return LockOutcome.EXECUTED

    @asynccontextmanager
    async def hold(self, lock_id: LockId) -> AsyncIterator[bool]:
        """
        Hold a lock for the duration of an ``async with`` block.

        Yields whether the lock was acquired; the block runs either way and
        must check the value. Errors raised inside the block propagate
        unchanged after release.

        Example:
            >>> async with lock.hold(42) as acquired:
            ...     if acquired:
            ...         await do_exclusive_work()
        """
        if not await self.try_acquire(lock_id):
            yield False
            return

        try:
            yield True
        except BaseException as e:
            # Frames: hold, contextlib __aexit__, caller
            await self._release_after_failure(lock_id, e, stacklevel=5)
            raise

        try:
            await self._release(lock_id, stacklevel=4)
        except Exception as e:
            raise ReleaseAfterSuccessError(lock_id) from e

    async def _release_after_failure(
        self,
        lock_id: LockId,
        primary: BaseException,
        stacklevel: int,
    ) -> Exception | None:
        """Release after the guarded work failed; never let a release error replace it."""
        try:
            await self._release(lock_id, stacklevel)
        except Exception as release_error:
            logger.warning(
                "Error releasing advisory lock after failed critical section: lock_id=%d, error=%s",
                lock_id,
                release_error,
                extra=self._log_extra(lock_id),
            )
            primary.add_note(f"Releasing advisory lock {lock_id} also failed: {release_error!r}")
            return release_error
        return None

    def _forget_held_locks(self) -> None:
        if self._held:
            logger.warning(
                "Advisory-lock session lost; server released held locks: lock_ids=%s",
                sorted(self._held),
                extra={"holder_id": self._holder_id},
            )
        self._held.clear()

    def _span_attributes(self, lock_id: LockId) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            ATTR_LOCK_ID: lock_id,
            ATTR_DB_SYSTEM: "postgresql",
        }
        if self._holder_id is not None:
            attributes[ATTR_HOLDER_ID] = self._holder_id
        return attributes

    def _log_extra(self, lock_id: LockId) -> dict[str, Any]:
        return {"lock_id": lock_id, "holder_id": self._holder_id}


__all__ = [
    "DistributedLock",
]
