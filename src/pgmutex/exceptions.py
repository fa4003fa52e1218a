"""Library exceptions for the pgmutex package."""

from pgmutex.types import LockId, LockOutcome


class PgMutexError(Exception):
    """Base exception for pgmutex library."""

    pass


class SessionError(PgMutexError):
    """
    Raised when an advisory-lock request fails on the session.

    This covers protocol-level failures of an individual request while the
    session appeared open. It is never raised for lock contention; a lock held
    by another session is reported as a normal ``False`` result.
    """

    pass


class LockConnectionError(SessionError, ConnectionError):
    """
    Raised when the session cannot be established or has become unusable.

    Fatal to every further lock operation on the owning lock object. Any lock
    believed held on the lost session must be treated as released.
    """

    pass


class CriticalSectionError(PgMutexError):
    """
    Raised when the unit of work run under a lock fails.

    The lock has already been released (or its release attempted) by the time
    this error reaches the caller. The original error is available as
    ``__cause__``.

    Attributes:
        lock_id: Identifier of the lock that guarded the unit of work
        release_error: Error raised by the release that followed, if any
        outcome: Always ``LockOutcome.FAILED``
    """

    def __init__(self, lock_id: LockId, release_error: BaseException | None = None) -> None:
        self.lock_id = lock_id
        self.release_error = release_error
        self.outcome = LockOutcome.FAILED
        message = f"Critical section under lock {lock_id} failed"
        if release_error is not None:
            message += f" (release also failed: {release_error})"
        super().__init__(message)


class ReleaseAfterSuccessError(PgMutexError):
    """
    Raised when releasing a lock fails after the critical section succeeded.

    Attributes:
        lock_id: Identifier of the lock that could not be released
    """

    def __init__(self, lock_id: LockId) -> None:
        self.lock_id = lock_id
        super().__init__(f"Failed to release lock {lock_id} after critical section completed")


class LockNotHeldWarning(UserWarning):
    """Issued when unlocking an identifier this session does not hold."""

    pass
