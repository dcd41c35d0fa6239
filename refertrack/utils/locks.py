"""
Redis distributed locks - serializes verification attempts on one referral.
Uses Redis SET NX with TTL for automatic expiration.

The lock only reduces contention. The version-guarded update in the
repository is what rejects a lost race.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from refertrack.errors import ConflictError

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 30
LOCK_WAIT_SECONDS = 5
LOCK_POLL_INTERVAL = 0.1  # 100ms

# Compare-and-delete so we only ever release our own lock
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


class LockTimeoutError(ConflictError):
    """Raised when a lock cannot be acquired within the timeout."""
    kind = "lock_timeout"
    retryable = True


@asynccontextmanager
async def referral_lock(
    referral_key: str,
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
):
    """
    Acquire a distributed lock for a referral (by id or code).

    Usage:
        async with referral_lock(code):
            # verify referral safely
    """
    lock_key = f"refertrack:lock:referral:{referral_key}"
    lock_value = uuid.uuid4().hex

    acquired = False
    try:
        acquired = await _acquire_lock(lock_key, lock_value, ttl, wait)
        if not acquired:
            raise LockTimeoutError(
                f"Could not acquire lock for referral {referral_key[:8]} within {wait}s"
            )
        yield
    finally:
        if acquired:
            await _release_lock(lock_key, lock_value)


async def _acquire_lock(key: str, value: str, ttl: int, wait: float) -> bool:
    """Try to acquire a Redis lock with polling."""
    try:
        from refertrack.utils.redis import get_redis
        redis = await get_redis()

        was_set = await redis.set(key, value, nx=True, ex=ttl)
        if was_set:
            return True

        elapsed = 0.0
        while elapsed < wait:
            await asyncio.sleep(LOCK_POLL_INTERVAL)
            elapsed += LOCK_POLL_INTERVAL
            was_set = await redis.set(key, value, nx=True, ex=ttl)
            if was_set:
                return True

        logger.warning("Lock acquisition timed out for %s", key)
        return False
    except Exception as e:
        # Redis outage degrades to the optimistic version check alone
        logger.warning("Redis lock error for %s: %s. Proceeding without lock.", key, str(e))
        return True


async def _release_lock(key: str, value: str) -> None:
    """Release a Redis lock only if we still own it."""
    try:
        from refertrack.utils.redis import get_redis
        redis = await get_redis()
        await redis.eval(_RELEASE_SCRIPT, 1, key, value)
    except Exception as e:
        logger.warning("Redis lock release error for %s: %s", key, str(e))
