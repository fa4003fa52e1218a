"""Common type definitions for the pgmutex library."""

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

# 64-bit signed key naming a mutual-exclusion domain
LockId = int

# Unit of work run while a lock is held; may be sync or async
CriticalSection = Callable[[], Awaitable[Any] | Any]

LOCK_ID_MIN = -(2**63)
LOCK_ID_MAX = 2**63 - 1


class LockOutcome(Enum):
    """
    Result of running a unit of work under a lock.

    Values:
        NOT_ACQUIRED: Another session held the lock; nothing ran
        EXECUTED: Lock acquired, unit of work completed, lock released
        FAILED: Lock acquired but the unit of work raised
    """

    NOT_ACQUIRED = "not_acquired"
    EXECUTED = "executed"
    FAILED = "failed"
