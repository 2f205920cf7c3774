"""Keyed asyncio locks.

Used to serialize nonce assignment per sender address and signing per
wallet, so two concurrent flows never pick the same EVM nonce.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from gamewallet.errors import LockTimeoutError

logger = logging.getLogger(__name__)

# Global lock registry: key -> asyncio.Lock
_locks: dict[str, asyncio.Lock] = {}
_registry_lock = asyncio.Lock()


async def get_lock(key: str) -> asyncio.Lock:
    """Get or create the lock for a key."""
    async with _registry_lock:
        if key not in _locks:
            _locks[key] = asyncio.Lock()
        return _locks[key]


class KeyedLock:
    """Context manager for exclusive access to a keyed resource.

    Example:
        async with KeyedLock(f"nonce:{address}", operation="reserve_nonce"):
            nonce = await next_nonce(address)
            await submit(sign(tx.with_nonce(nonce)))
    """

    def __init__(
        self,
        key: str,
        timeout: Optional[float] = 30.0,
        operation: str = "operation",
    ):
        """Initialize the lock.

        Args:
            key: Resource key
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.key = key
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "KeyedLock":
        self._lock = await get_lock(self.key)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
            self._acquired = True
        except asyncio.TimeoutError:
            logger.warning(f"Lock timeout for {self.key} after {self.timeout}s: {self.operation}")
            raise LockTimeoutError(f"Could not acquire lock {self.key} within {self.timeout}s")

        logger.debug(f"Lock acquired for {self.key}: {self.operation}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for {self.key}: {self.operation}")
        return False


@asynccontextmanager
async def keyed_lock(key: str, timeout: Optional[float] = 30.0, operation: str = "operation"):
    """Functional form of KeyedLock."""
    async with KeyedLock(key, timeout=timeout, operation=operation):
        yield


def clear_locks() -> None:
    """Clear all locks (useful for testing)."""
    _locks.clear()
