"""
Basic Lock Example

This example demonstrates distributed mutual exclusion with advisory locks:
- Running a job under a lock identifier
- Contention between two lock holders
- Error handling when the job fails

It uses the in-memory backend so it runs without a database. Replace the
sessions with ConnectionSettings.from_env() to run against PostgreSQL.

Run with: python examples/basic_lock.py
"""

import asyncio
import logging

from pgmutex import (
    CriticalSectionError,
    DistributedLock,
    InMemoryAdvisoryLockServer,
    LockOutcome,
    lock_id_from_key,
)

# =============================================================================
# Step 1: Choose a lock identifier
# =============================================================================
# Every process that must not run the job concurrently uses the same id.

DIGEST_LOCK = lock_id_from_key("jobs:daily-digest")


async def send_daily_digest() -> None:
    print("   Sending daily digest...")
    await asyncio.sleep(0.1)


async def broken_job() -> None:
    raise RuntimeError("mail server unavailable")


# =============================================================================
# Step 2: Run the job from two workers
# =============================================================================


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    print("=" * 60)
    print("pgmutex Basic Lock Example")
    print("=" * 60)

    server = InMemoryAdvisoryLockServer()

    async with (
        DistributedLock(server.session(), holder_id="worker-1") as worker_1,
        DistributedLock(server.session(), holder_id="worker-2") as worker_2,
    ):
        print("\n1. Single worker runs the job:")
        outcome = await worker_1.execute_under_lock(DIGEST_LOCK, send_daily_digest)
        print(f"   Outcome: {outcome.value}")

        print("\n2. Two workers race for the same lock:")
        outcomes = await asyncio.gather(
            worker_1.execute_under_lock(DIGEST_LOCK, send_daily_digest),
            worker_2.execute_under_lock(DIGEST_LOCK, send_daily_digest),
        )
        for name, outcome in zip(("worker-1", "worker-2"), outcomes, strict=True):
            print(f"   {name}: {outcome.value}")
        assert outcomes.count(LockOutcome.EXECUTED) == 1

        print("\n3. A failing job still releases the lock:")
        try:
            await worker_1.execute_under_lock(DIGEST_LOCK, broken_job)
        except CriticalSectionError as e:
            print(f"   {e} (cause: {e.__cause__!r})")
        print(f"   Lock held afterwards: {server.is_locked(DIGEST_LOCK)}")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
