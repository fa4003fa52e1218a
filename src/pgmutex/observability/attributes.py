"""
Span attribute names used by DistributedLock.

``db.system`` and ``error.type`` follow OpenTelemetry semantic conventions;
the rest live under the ``pgmutex.lock`` namespace.
"""

ATTR_DB_SYSTEM = "db.system"

ATTR_LOCK_ID = "pgmutex.lock.id"
ATTR_HOLDER_ID = "pgmutex.lock.holder_id"

# Results, set on the span once the server answers
ATTR_LOCK_ACQUIRED = "pgmutex.lock.acquired"
ATTR_LOCK_RELEASED = "pgmutex.lock.released"
ATTR_LOCK_OUTCOME = "pgmutex.lock.outcome"

ATTR_ERROR_TYPE = "error.type"

__all__ = [
    "ATTR_DB_SYSTEM",
    "ATTR_LOCK_ID",
    "ATTR_HOLDER_ID",
    "ATTR_LOCK_ACQUIRED",
    "ATTR_LOCK_RELEASED",
    "ATTR_LOCK_OUTCOME",
    "ATTR_ERROR_TYPE",
]
