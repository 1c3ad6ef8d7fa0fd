"""Keyed locks serializing booking commits and per-conversation processing."""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Dict

from .. import config

logger = logging.getLogger(__name__)

# Lua script for atomic compare-and-delete
COMPARE_AND_DELETE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
else
  return 0
end
"""


class LockBusyError(RuntimeError):
    """Raised when a distributed lock cannot be acquired within the retry budget"""


class KeyedLock(ABC):
    """Mutual exclusion per string key, used as `async with lock.acquire(key):`"""

    @abstractmethod
    def acquire(self, key: str):
        pass


class LocalKeyedLock(KeyedLock):
    """asyncio locks for a single process. Idle keys are dropped."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]


class RedisKeyedLock(KeyedLock):
    """Token-based distributed lock (SET NX PX, compare-and-delete release)."""

    def __init__(self, redis_client, ttl_ms: int = None, retries: int = 20, prefix: str = "booking_lock"):
        """
        Args:
            redis_client: Synchronous Redis client (redis-py)
            ttl_ms: Lock TTL in milliseconds
            retries: Acquisition attempts after the first one
        """
        self.redis = redis_client
        self.ttl_ms = ttl_ms or config.LOCK_TTL_MS
        self.retries = retries
        self.prefix = prefix

    @asynccontextmanager
    async def acquire(self, key: str):
        lock_key = f"{self.prefix}:{key}"
        token = str(uuid.uuid4())
        acquired = False

        try:
            acquired = self.redis.set(lock_key, token, nx=True, px=self.ttl_ms)

            if not acquired:
                # Linear backoff: 50ms, 100ms, 150ms...
                for i in range(self.retries):
                    await asyncio.sleep(0.05 * (i + 1))
                    acquired = self.redis.set(lock_key, token, nx=True, px=self.ttl_ms)
                    if acquired:
                        break

                if not acquired:
                    raise LockBusyError(f"Lock busy: {lock_key}")

            logger.debug(f"🔒 Acquired lock: {lock_key} (token: {token[:8]})")
            yield

        finally:
            if acquired:
                try:
                    self.redis.eval(COMPARE_AND_DELETE, 1, lock_key, token)
                    logger.debug(f"🔓 Released lock: {lock_key}")
                except Exception as e:
                    # Lock expires on its own after ttl_ms
                    logger.warning(f"Failed to release lock {lock_key}: {e}")


def create_keyed_lock(backend: str = None, redis_client=None) -> KeyedLock:
    backend = (backend or config.LOCK_BACKEND).lower()
    if backend == "redis":
        if redis_client is None:
            redis_client = config.get_redis_client()
        return RedisKeyedLock(redis_client)
    return LocalKeyedLock()
