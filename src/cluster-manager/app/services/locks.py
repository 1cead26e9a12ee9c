"""Per-cluster operation locks."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID


class ClusterLocks:
    """One ``asyncio.Lock`` per cluster id.

    Lifecycle operations on the same cluster run one at a time; operations on
    different clusters do not block each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def locked(self, cluster_id: UUID | str) -> bool:
        lock = self._locks.get(str(cluster_id))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, cluster_id: UUID | str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(str(cluster_id), asyncio.Lock())
        async with lock:
            yield

    def forget(self, cluster_id: UUID | str) -> None:
        """Drop the lock of a deleted cluster unless someone still holds it."""
        key = str(cluster_id)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]
