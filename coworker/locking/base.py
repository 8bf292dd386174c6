"""Lock primitives shared by the lock managers."""

from typing import Optional, Protocol

from pydantic import BaseModel


class Lock(BaseModel):
    """Represents an acquired lock."""
    resource: str
    lock_id: str
    acquired_at: float


class LockTimeoutError(Exception):
    """Raised when lock acquisition times out."""
    pass


class LockManager(Protocol):
    """Interface implemented by LocalLockManager and RedisLock."""

    async def acquire(self, resource: str, timeout: int = 300) -> Lock:
        ...

    async def release(self, lock: Lock) -> bool:
        ...


class LockContext:
    """Async context manager for lock acquisition."""

    def __init__(
        self,
        lock_manager: LockManager,
        resource: str,
        timeout: int = 300
    ):
        """
        Initialize lock context.

        Args:
            lock_manager: Lock manager instance
            resource: Resource to lock
            timeout: Lock timeout in seconds
        """
        self.lock_manager = lock_manager
        self.resource = resource
        self.timeout = timeout
        self.lock: Optional[Lock] = None

    async def __aenter__(self) -> Lock:
        """Acquire lock on entry."""
        self.lock = await self.lock_manager.acquire(
            self.resource,
            timeout=self.timeout
        )
        return self.lock

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release lock on exit."""
        if self.lock:
            await self.lock_manager.release(self.lock)
            self.lock = None
