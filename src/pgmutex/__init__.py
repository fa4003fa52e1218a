"""
pgmutex - Distributed mutual exclusion over PostgreSQL advisory locks.

This library provides:
- DistributedLock: try-acquire, guarded execution and guaranteed release
  bound to one persistent database session
- PostgreSQL and in-memory advisory-lock sessions
- Connection settings from URLs, connection strings or the environment
- Optional OpenTelemetry tracing

Example:
    >>> from pgmutex import ConnectionSettings, DistributedLock, LockOutcome
    >>>
    >>> settings = ConnectionSettings.from_env()
    >>> async with DistributedLock(settings, holder_id="worker-1") as lock:
    ...     outcome = await lock.execute_under_lock(42, send_daily_digest)
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pgmutex")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from pgmutex.config import DEFAULT_DRIVER, ConnectionSettings
from pgmutex.exceptions import (
    CriticalSectionError,
    LockConnectionError,
    LockNotHeldWarning,
    PgMutexError,
    ReleaseAfterSuccessError,
    SessionError,
)
from pgmutex.in_memory import InMemoryAdvisoryLockServer, InMemoryLockSession
from pgmutex.keys import lock_id_from_key, validate_lock_id
from pgmutex.lock import DistributedLock
from pgmutex.session import AdvisoryLockSession, PostgreSQLLockSession
from pgmutex.types import LOCK_ID_MAX, LOCK_ID_MIN, CriticalSection, LockId, LockOutcome

__all__ = [
    "__version__",
    # Lock coordinator
    "DistributedLock",
    "LockOutcome",
    # Sessions
    "AdvisoryLockSession",
    "PostgreSQLLockSession",
    "InMemoryAdvisoryLockServer",
    "InMemoryLockSession",
    # Configuration
    "ConnectionSettings",
    "DEFAULT_DRIVER",
    # Lock identifiers
    "LockId",
    "LOCK_ID_MIN",
    "LOCK_ID_MAX",
    "CriticalSection",
    "validate_lock_id",
    "lock_id_from_key",
    # Exceptions
    "PgMutexError",
    "SessionError",
    "LockConnectionError",
    "CriticalSectionError",
    "ReleaseAfterSuccessError",
    "LockNotHeldWarning",
]
