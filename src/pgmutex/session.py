"""
Advisory-lock sessions.

PostgreSQL advisory locks taken with ``pg_try_advisory_lock`` belong to the
session that took them:
- They persist until explicitly unlocked or the session ends
- A second session asking for the same key is refused immediately
- Closing (or losing) the connection releases every lock it held

A session object therefore owns exactly one connection for its whole life.
It never borrows a pooled connection per request, because a lock taken on one
pooled connection could not be released from another.

Usage:
    >>> session = PostgreSQLLockSession("postgresql://app@db/orders")
    >>> await session.open()
    >>> try:
    ...     if await session.try_advisory_lock(42):
    ...         await session.advisory_unlock(42)
    ... finally:
    ...     await session.close()
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import BigInteger, bindparam, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, InterfaceError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from pgmutex.config import ConnectionSettings
from pgmutex.exceptions import LockConnectionError, SessionError
from pgmutex.types import LockId

logger = logging.getLogger(__name__)

_VALIDATE_SQL = text("SELECT 1")
_TRY_LOCK_SQL = text("SELECT pg_try_advisory_lock(:lock_id)").bindparams(
    bindparam("lock_id", type_=BigInteger)
)
_UNLOCK_SQL = text("SELECT pg_advisory_unlock(:lock_id)").bindparams(
    bindparam("lock_id", type_=BigInteger)
)


@runtime_checkable
class AdvisoryLockSession(Protocol):
    """
    Protocol for a single session able to take and drop advisory locks.

    Implementations:
    - PostgreSQLLockSession: One dedicated SQLAlchemy async connection
    - InMemoryLockSession: In-process stand-in sharing an InMemoryAdvisoryLockServer
    """

    @property
    def is_open(self) -> bool:
        """True while requests can be issued."""
        ...

    @property
    def closed(self) -> bool:
        """True once close() has run."""
        ...

    async def open(self) -> None:
        """Establish and validate the session."""
        ...

    async def close(self) -> None:
        """End the session, releasing every lock it holds. Idempotent."""
        ...

    async def try_advisory_lock(self, lock_id: LockId) -> bool:
        """Try to take ``lock_id`` without waiting."""
        ...

    async def advisory_unlock(self, lock_id: LockId) -> bool:
        """Drop ``lock_id``; False if this session did not hold it."""
        ...


class PostgreSQLLockSession:
    """
    Advisory-lock session backed by one PostgreSQL connection.

    The connection runs in AUTOCOMMIT mode so the session never sits idle
    inside an open transaction while a lock is held.

    Args:
        target: ConnectionSettings, a database URL, or an AsyncEngine owned by
            the caller. Engines created from settings or URLs use ``NullPool``
            and are disposed on close; a caller's engine is left alone.

    Example:
        >>> settings = ConnectionSettings(host="db", database="orders", username="app")
        >>> session = PostgreSQLLockSession(settings)
        >>> await session.open()
        >>> await session.try_advisory_lock(42)
        True

    Note:
        Only one request may be in flight at a time. A concurrent request
        raises SessionError instead of queueing.
    """

    def __init__(self, target: ConnectionSettings | str | URL | AsyncEngine) -> None:
        self._engine: AsyncEngine | None
        self._settings: ConnectionSettings | None

        if isinstance(target, AsyncEngine):
            self._engine = target
            self._settings = None
            self._owns_engine = False
            self._description = target.url.render_as_string(hide_password=True)
        else:
            if isinstance(target, ConnectionSettings):
                self._settings = target
            else:
                self._settings = ConnectionSettings.from_url(target)
            self._engine = None
            self._owns_engine = True
            self._description = self._settings.to_url().render_as_string(hide_password=True)

        self._connection: AsyncConnection | None = None
        self._closed = False
        self._broken = False
        self._in_flight = False

    @property
    def is_open(self) -> bool:
        return self._connection is not None and not self._closed and not self._broken

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def description(self) -> str:
        """Connection target with the password masked."""
        return self._description

    async def open(self) -> None:
        """
        Connect and validate the session with ``SELECT 1``.

        Calling open on an already open session does nothing.

        Raises:
            LockConnectionError: If the server is unreachable, rejects the
                credentials, or the session was already closed
        """
        if self._closed:
            raise LockConnectionError(
                f"Advisory-lock session to {self._description} is closed; create a new one"
            )
        if self._connection is not None:
            return

        connection: AsyncConnection | None = None
        try:
            if self._engine is None:
                assert self._settings is not None
                self._engine = create_async_engine(
                    self._settings.to_url(),
                    poolclass=NullPool,
                    connect_args=self._settings.connect_args(),
                )
            connection = await self._engine.connect()
            connection = await connection.execution_options(isolation_level="AUTOCOMMIT")
            await connection.execute(_VALIDATE_SQL)
        except (SQLAlchemyError, OSError, ImportError) as e:
            # ImportError: the DBAPI module is missing when the engine is built
            if connection is not None:
                await self._close_quietly(connection)
            await self._dispose_engine()
            raise LockConnectionError(
                f"Could not open advisory-lock session to {self._description}: {e}"
            ) from e

        self._connection = connection
        self._broken = False
        logger.info("Opened advisory-lock session: target=%s", self._description)

    async def close(self) -> None:
        """
        Close the connection and dispose an owned engine.

        Idempotent: only the first call touches the connection.
        """
        if self._closed:
            return
        self._closed = True

        connection, self._connection = self._connection, None
        try:
            if connection is not None:
                await connection.close()
        finally:
            await self._dispose_engine()

        logger.info("Closed advisory-lock session: target=%s", self._description)

    async def try_advisory_lock(self, lock_id: LockId) -> bool:
        """
        Issue ``pg_try_advisory_lock`` for ``lock_id``.

        Returns:
            True if the lock was granted to this session, False if another
            session holds it

        Raises:
            SessionError: If the request fails at the protocol level
            LockConnectionError: If the session is not open or the connection
                is lost
        """
        return bool(await self._scalar(_TRY_LOCK_SQL, lock_id, "pg_try_advisory_lock"))

    async def advisory_unlock(self, lock_id: LockId) -> bool:
        """
        Issue ``pg_advisory_unlock`` for ``lock_id``.

        Returns:
            True if the lock was held and is now released, False if this
            session did not hold it

        Raises:
            SessionError: If the request fails at the protocol level
            LockConnectionError: If the session is not open or the connection
                is lost
        """
        return bool(await self._scalar(_UNLOCK_SQL, lock_id, "pg_advisory_unlock"))

    async def _scalar(self, statement: Any, lock_id: LockId, operation: str) -> Any:
        connection = self._require_connection()

        if self._in_flight:
            raise SessionError(
                f"{operation}({lock_id}) issued while another request is in flight; "
                "use one lock object per concurrent caller"
            )

        self._in_flight = True
        try:
            result = await connection.execute(statement, {"lock_id": lock_id})
            return result.scalar()
        except DBAPIError as e:
            if e.connection_invalidated or isinstance(e, InterfaceError):
                await self._mark_broken()
                raise LockConnectionError(
                    f"Connection lost during {operation}({lock_id}) on {self._description}: {e}"
                ) from e
            raise SessionError(f"{operation}({lock_id}) failed: {e}") from e
        except SQLAlchemyError as e:
            raise SessionError(f"{operation}({lock_id}) failed: {e}") from e
        except OSError as e:
            await self._mark_broken()
            raise LockConnectionError(
                f"Connection lost during {operation}({lock_id}) on {self._description}: {e}"
            ) from e
        finally:
            self._in_flight = False

    def _require_connection(self) -> AsyncConnection:
        if self._closed:
            raise LockConnectionError(f"Advisory-lock session to {self._description} is closed")
        if self._broken:
            raise LockConnectionError(
                f"Advisory-lock session to {self._description} was lost; "
                "all of its locks have been released by the server"
            )
        if self._connection is None:
            raise LockConnectionError(
                f"Advisory-lock session to {self._description} is not open; call open() first"
            )
        return self._connection

    async def _mark_broken(self) -> None:
        self._broken = True
        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_quietly(connection, invalidate=True)
        logger.error("Advisory-lock session lost: target=%s", self._description)

    async def _close_quietly(self, connection: AsyncConnection, invalidate: bool = False) -> None:
        try:
            if invalidate:
                await connection.invalidate()
            await connection.close()
        except (SQLAlchemyError, OSError) as e:
            logger.debug(
                "Error closing advisory-lock connection: target=%s, error=%s",
                self._description,
                e,
            )

    async def _dispose_engine(self) -> None:
        if self._owns_engine and self._engine is not None:
            engine, self._engine = self._engine, None
            await engine.dispose()


__all__ = [
    "AdvisoryLockSession",
    "PostgreSQLLockSession",
]
