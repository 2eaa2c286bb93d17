from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Hashable

from cachetools import TTLCache


@dataclass
class AsyncLockRegistry:
    """Hands out one ``asyncio.Lock`` per key; idle locks age out of the cache."""

    cache: TTLCache
    lock: asyncio.Lock

    async def get(self, key: Hashable) -> asyncio.Lock:
        async with self.lock:
            existing = self.cache.get(key)
            if existing is None:
                existing = asyncio.Lock()
            # Re-inserting refreshes the TTL so a lock in use is not evicted.
            self.cache[key] = existing
            return existing


def make_lock_registry(*, maxsize: int, ttl_seconds: int) -> AsyncLockRegistry:
    return AsyncLockRegistry(cache=TTLCache(maxsize=maxsize, ttl=ttl_seconds), lock=asyncio.Lock())
