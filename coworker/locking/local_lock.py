"""In-process resource locking for a single orchestrator process."""

import asyncio
import logging
import time
import uuid

from coworker.locking.base import Lock, LockTimeoutError

logger = logging.getLogger(__name__)


class LocalLockManager:
    """Per-resource asyncio locks. Safe across agents in one event loop."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, str] = {}

    async def acquire(self, resource: str, timeout: int = 300) -> Lock:
        """
        Acquire the lock for a resource, waiting up to timeout seconds.

        Args:
            resource: Resource to lock (e.g., "taskstore:/home/me/PersonalAssistant")
            timeout: Maximum seconds to wait

        Returns:
            Lock object if successful

        Raises:
            LockTimeoutError: If lock cannot be acquired within timeout
        """
        lock = self._locks.setdefault(resource, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise LockTimeoutError(
                f"Failed to acquire lock on {resource} within {timeout}s"
            )

        lock_id = str(uuid.uuid4())
        self._holders[resource] = lock_id
        logger.debug(f"Acquired lock: {resource} (lock_id: {lock_id})")
        return Lock(resource=resource, lock_id=lock_id, acquired_at=time.time())

    async def release(self, lock: Lock) -> bool:
        """
        Release a lock. Only the current holder can release it.

        Args:
            lock: Lock object to release

        Returns:
            True if lock was released, False if not held
        """
        if self._holders.get(lock.resource) != lock.lock_id:
            logger.warning(f"Failed to release lock {lock.resource}: lock_id mismatch")
            return False

        del self._holders[lock.resource]
        self._locks[lock.resource].release()
        logger.debug(f"Released lock: {lock.resource}")
        return True

    async def is_locked(self, resource: str) -> bool:
        lock = self._locks.get(resource)
        return bool(lock and lock.locked())
