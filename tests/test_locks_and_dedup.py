"""
Tests for keyed locks and webhook de-duplication
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from booking_engine.services.deduplication import (
    LocalMessageDeduplicator,
    RedisMessageDeduplicator,
    create_deduplicator,
)
from booking_engine.services.locks import (
    COMPARE_AND_DELETE,
    LocalKeyedLock,
    LockBusyError,
    RedisKeyedLock,
    create_keyed_lock,
)


class TestLocalKeyedLock:

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        lock = LocalKeyedLock()
        events = []

        async def worker(name):
            async with lock.acquire("1:1:2026-10-24"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        lock = LocalKeyedLock()
        events = []

        async def worker(key):
            async with lock.acquire(key):
                events.append(f"{key}-in")
                await asyncio.sleep(0.01)
                events.append(f"{key}-out")

        await asyncio.gather(worker("x"), worker("y"))

        assert events[:2] == ["x-in", "y-in"]

    @pytest.mark.asyncio
    async def test_idle_keys_are_dropped(self):
        lock = LocalKeyedLock()

        async with lock.acquire("k"):
            assert "k" in lock._locks

        assert lock._locks == {}
        assert lock._waiters == {}

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        lock = LocalKeyedLock()

        with pytest.raises(ValueError):
            async with lock.acquire("k"):
                raise ValueError("boom")

        async with lock.acquire("k"):
            pass


class TestRedisKeyedLock:

    @pytest.mark.asyncio
    async def test_acquire_and_release_with_token(self):
        redis = MagicMock()
        redis.set.return_value = True
        lock = RedisKeyedLock(redis, ttl_ms=5000)

        async with lock.acquire("1:1:2026-10-24"):
            pass

        key, token = redis.set.call_args[0]
        assert key == "booking_lock:1:1:2026-10-24"
        assert redis.set.call_args[1] == {"nx": True, "px": 5000}
        redis.eval.assert_called_once_with(COMPARE_AND_DELETE, 1, key, token)

    @pytest.mark.asyncio
    async def test_retries_until_free(self):
        redis = MagicMock()
        redis.set.side_effect = [None, None, True]
        lock = RedisKeyedLock(redis, retries=5)

        async with lock.acquire("k"):
            pass

        assert redis.set.call_count == 3
        redis.eval.assert_called_once()

    @pytest.mark.asyncio
    async def test_busy_lock_raises(self):
        redis = MagicMock()
        redis.set.return_value = None
        lock = RedisKeyedLock(redis, retries=2)

        with pytest.raises(LockBusyError):
            async with lock.acquire("k"):
                pass

        redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_release_failure_is_tolerated(self):
        redis = MagicMock()
        redis.set.return_value = True
        redis.eval.side_effect = ConnectionError("redis gone")
        lock = RedisKeyedLock(redis)

        async with lock.acquire("k"):
            pass

    def test_factory(self):
        assert isinstance(create_keyed_lock("local"), LocalKeyedLock)
        assert isinstance(create_keyed_lock("redis", MagicMock()), RedisKeyedLock)


class TestDeduplication:

    def test_local_claims_once_within_ttl(self):
        now = [1000.0]
        dedup = LocalMessageDeduplicator(ttl_seconds=300, clock=lambda: now[0])

        assert dedup.claim("ABC")
        assert not dedup.claim("ABC")
        assert dedup.claim("DEF")

        now[0] += 301
        assert dedup.claim("ABC")

    def test_redis_set_nx_ex(self):
        redis = MagicMock()
        redis.set.side_effect = [True, None]
        dedup = RedisMessageDeduplicator(redis, ttl_seconds=300)

        assert dedup.claim("ABC")
        assert not dedup.claim("ABC")
        redis.set.assert_called_with("webhook:msg:ABC", "1", nx=True, ex=300)

    def test_local_release_allows_redelivery(self):
        dedup = LocalMessageDeduplicator(ttl_seconds=300)

        assert dedup.claim("ABC")
        dedup.release("ABC")
        assert dedup.claim("ABC")
        dedup.release("never-claimed")

    def test_redis_release_deletes_key(self):
        redis = MagicMock()
        dedup = RedisMessageDeduplicator(redis, ttl_seconds=300)

        dedup.release("ABC")

        redis.delete.assert_called_once_with("webhook:msg:ABC")

    def test_redis_release_failure_is_tolerated(self):
        redis = MagicMock()
        redis.delete.side_effect = ConnectionError("redis gone")

        RedisMessageDeduplicator(redis).release("ABC")

    def test_redis_failure_accepts_message(self):
        redis = MagicMock()
        redis.set.side_effect = ConnectionError("redis gone")

        assert RedisMessageDeduplicator(redis).claim("ABC")

    def test_factory(self, monkeypatch):
        monkeypatch.setattr("booking_engine.config.REDIS_URL", "")
        assert isinstance(create_deduplicator(), LocalMessageDeduplicator)
        assert isinstance(create_deduplicator(MagicMock()), RedisMessageDeduplicator)
