"""Resource locking for task store writes."""

from coworker.locking.base import Lock, LockContext, LockManager, LockTimeoutError
from coworker.locking.local_lock import LocalLockManager

__all__ = [
    "Lock",
    "LockContext",
    "LockManager",
    "LockTimeoutError",
    "LocalLockManager",
]
