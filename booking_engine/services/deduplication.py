"""Suppression of duplicate webhook deliveries by external message id."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .. import config

logger = logging.getLogger(__name__)


class MessageDeduplicator(ABC):

    @abstractmethod
    def claim(self, message_id: str) -> bool:
        """True for the first delivery of a message id inside the TTL"""
        pass

    @abstractmethod
    def release(self, message_id: str) -> None:
        """Forget a claim so a redelivery of the id is processed again"""
        pass


class RedisMessageDeduplicator(MessageDeduplicator):
    """SET NX EX on webhook:msg:{id}"""

    def __init__(self, redis_client, ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or config.WEBHOOK_DEDUP_TTL_SECONDS

    def claim(self, message_id: str) -> bool:
        key = f"webhook:msg:{message_id}"
        try:
            return bool(self.redis.set(key, "1", nx=True, ex=self.ttl_seconds))
        except Exception as e:
            # Commit idempotency still guards against a second appointment
            logger.warning(f"Redis dedupe unavailable, accepting message {message_id}: {e}")
            return True

    def release(self, message_id: str) -> None:
        try:
            self.redis.delete(f"webhook:msg:{message_id}")
        except Exception as e:
            logger.warning(f"Could not release dedupe key for message {message_id}: {e}")


class LocalMessageDeduplicator(MessageDeduplicator):
    """In-process TTL map for single-process deployments"""

    def __init__(self, ttl_seconds: Optional[int] = None, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds or config.WEBHOOK_DEDUP_TTL_SECONDS
        self.clock = clock
        self._seen: Dict[str, float] = {}

    def claim(self, message_id: str) -> bool:
        now = self.clock()
        self._seen = {key: expiry for key, expiry in self._seen.items() if expiry > now}
        if message_id in self._seen:
            return False
        self._seen[message_id] = now + self.ttl_seconds
        return True

    def release(self, message_id: str) -> None:
        self._seen.pop(message_id, None)


def create_deduplicator(redis_client=None) -> MessageDeduplicator:
    if redis_client is None and config.REDIS_URL:
        redis_client = config.get_redis_client()
    if redis_client is not None:
        return RedisMessageDeduplicator(redis_client)
    return LocalMessageDeduplicator()
