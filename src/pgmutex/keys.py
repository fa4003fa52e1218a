"""
Lock identifier helpers.

PostgreSQL advisory locks are keyed by a signed 64-bit integer. Callers own
the namespace; these helpers only check that a value fits and offer a stable
way to derive an identifier from a human-readable name.

Example:
    >>> lock_id = lock_id_from_key("report:nightly")
    >>> async with DistributedLock(settings) as lock:
    ...     await lock.execute_under_lock(lock_id, build_report)
"""

from __future__ import annotations

import hashlib

from pgmutex.types import LOCK_ID_MAX, LOCK_ID_MIN, LockId


def validate_lock_id(value: object) -> LockId:
    """
    Check that a value is usable as an advisory lock identifier.

    Args:
        value: Candidate identifier

    Returns:
        The identifier as a plain int

    Raises:
        TypeError: If value is not an int (bool is rejected)
        ValueError: If value does not fit in a signed 64-bit integer
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"lock_id must be an int, got {type(value).__name__}")
    if not LOCK_ID_MIN <= value <= LOCK_ID_MAX:
        raise ValueError(f"lock_id must fit in a signed 64-bit integer, got {value}")
    return int(value)


def lock_id_from_key(key: str) -> LockId:
    """
    Convert a string key to a 64-bit lock identifier.

    Uses SHA-256 truncated to 63 bits so the result is always a
    non-negative PostgreSQL bigint.

    Args:
        key: String key to hash

    Returns:
        63-bit positive integer lock identifier

    Example:
        >>> lock_id_from_key("migration:tenant-abc") == lock_id_from_key("migration:tenant-abc")
        True
    """
    hash_bytes = hashlib.sha256(key.encode()).digest()
    # First 8 bytes, masked to 63 bits for signed bigint
    return int.from_bytes(hash_bytes[:8], byteorder="big") & 0x7FFFFFFFFFFFFFFF
