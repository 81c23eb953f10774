import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger


class ProviderLocks:
    """Registry of one ``asyncio.Lock`` per provider.

    Writers for the same provider queue behind each other; writers for
    different providers never contend. Locks are created on first use and
    kept for the life of the registry.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, provider_id: str) -> asyncio.Lock:
        lock = self._locks.get(provider_id)
        if lock is None:
            lock = self._locks[provider_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, provider_id: str) -> AsyncIterator[None]:
        lock = self._lock_for(provider_id)
        if lock.locked():
            logger.debug("Waiting for scheduling lock of provider {}", provider_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
