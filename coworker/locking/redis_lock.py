"""Cross-process task store locking using Redis."""

import asyncio
import logging
import time
import uuid
from typing import Optional

import redis.asyncio as redis

from coworker.locking.base import Lock, LockTimeoutError

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisLock:
    """
    Distributed locking mechanism using Redis.

    Used when the task lists are written by more than one process (e.g. the
    orchestrator and a desktop UI), where in-process locks cannot serialize
    read-modify-write cycles.
    """

    def __init__(self, redis_client: redis.Redis, ttl: int = 60):
        """
        Initialize Redis lock manager.

        Args:
            redis_client: Redis async client
            ttl: Lock expiry in seconds, so a crashed holder cannot deadlock writers
        """
        self.redis = redis_client
        self.ttl = ttl

    async def acquire(
        self,
        resource: str,
        timeout: int = 300,
        retry_delay: float = 0.05,
        max_retry_delay: float = 1.0
    ) -> Lock:
        """
        Acquire distributed lock using Redis SET NX EX.

        Retries with exponential backoff if the lock is held elsewhere.

        Args:
            resource: Resource to lock (e.g., "taskstore:/home/me/PersonalAssistant")
            timeout: Seconds to keep trying before giving up
            retry_delay: Initial retry delay in seconds
            max_retry_delay: Maximum retry delay in seconds

        Returns:
            Lock object if successful

        Raises:
            LockTimeoutError: If lock cannot be acquired within timeout
        """
        lock_key = f"lock:{resource}"
        lock_id = str(uuid.uuid4())

        deadline = time.time() + timeout
        current_retry_delay = retry_delay

        while time.time() < deadline:
            acquired = await self.redis.set(
                lock_key,
                lock_id,
                ex=self.ttl,
                nx=True
            )

            if acquired:
                logger.debug(f"Acquired lock: {resource} (lock_id: {lock_id})")
                return Lock(
                    resource=resource,
                    lock_id=lock_id,
                    acquired_at=time.time()
                )

            current_holder = await self.redis.get(lock_key)
            if current_holder:
                logger.debug(
                    f"Lock {resource} held by {_decode(current_holder)}, "
                    f"retrying in {current_retry_delay}s"
                )

            await asyncio.sleep(current_retry_delay)
            current_retry_delay = min(current_retry_delay * 2, max_retry_delay)

        raise LockTimeoutError(
            f"Failed to acquire lock on {resource} within {timeout}s"
        )

    async def release(self, lock: Lock) -> bool:
        """
        Release lock using Lua script to ensure atomicity.

        Only the lock holder can release the lock (verified by lock_id).

        Args:
            lock: Lock object to release

        Returns:
            True if lock was released, False if not held
        """
        result = await self.redis.eval(
            _RELEASE_SCRIPT,
            1,
            f"lock:{lock.resource}",
            lock.lock_id
        )

        if result:
            logger.debug(f"Released lock: {lock.resource}")
            return True

        logger.warning(
            f"Failed to release lock {lock.resource}: "
            f"lock_id mismatch or already expired"
        )
        return False

    async def is_locked(self, resource: str) -> bool:
        exists = await self.redis.exists(f"lock:{resource}")
        return bool(exists)

    async def get_lock_holder(self, resource: str) -> Optional[str]:
        lock_id = await self.redis.get(f"lock:{resource}")
        return _decode(lock_id) if lock_id else None


def _decode(value) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)
