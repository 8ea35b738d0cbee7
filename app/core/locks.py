"""Per-identity locks serializing lifecycle operations.

Operations on the same booking (or vehicle) run one at a time; operations
on different identities never wait on each other. The lock is held across
the database commit so a second caller always reads committed state.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import redis.asyncio as redis
from redis.exceptions import LockError

from app.config import settings
from app.core.exceptions import ConcurrentUpdate

logger = logging.getLogger(__name__)


class LockBackend(ABC):
    """Keyed mutual exclusion."""

    @abstractmethod
    def hold(self, key: str) -> Any:
        """Async context manager holding the lock for ``key``."""


@dataclass
class _LocalEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class LocalLockBackend(LockBackend):
    """In-process asyncio locks, one per key, discarded when idle.

    Correct for a single worker process. Multi-worker deployments use
    RedisLockBackend.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        self._entries: dict[str, _LocalEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, _LocalEntry())
        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self.timeout)
            except TimeoutError:
                logger.warning(f"Timed out waiting for lock {key}")
                raise ConcurrentUpdate(*key.split(":", 1))
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)


class RedisLockBackend(LockBackend):
    """Distributed locks shared by every worker through Redis."""

    def __init__(self, redis_url: str, timeout: float):
        self.redis_url = redis_url
        self.timeout = timeout
        self._redis: redis.Redis | None = None

    def get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self.get_redis().lock(
            f"lock:{key}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning(f"Timed out waiting for lock {key}")
            raise ConcurrentUpdate(*key.split(":", 1))
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lock expired while held; the version column still guards the write
                logger.error(f"Lock {key} expired before release")


class LockManager:
    """Named lock scopes used by the lifecycle service."""

    def __init__(self, backend: LockBackend):
        self.backend = backend

    def booking(self, booking_id: Any):
        return self.backend.hold(f"Booking:{booking_id}")

    def vehicle(self, vehicle_id: Any):
        return self.backend.hold(f"Vehicle:{vehicle_id}")


def build_lock_manager() -> LockManager:
    """New lock manager for the configured backend."""
    if settings.lock_backend == "redis":
        return LockManager(RedisLockBackend(settings.redis_url, settings.lock_timeout_seconds))
    return LockManager(LocalLockBackend(timeout=settings.lock_timeout_seconds))


@lru_cache
def get_lock_manager() -> LockManager:
    """Process-wide lock manager."""
    return build_lock_manager()
