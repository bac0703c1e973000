from typing import Optional
import logging
import redis
from authgate.cache.store import KeyValueStore, MemoryStore
from authgate.core.config import settings

logger = logging.getLogger(__name__)


class RedisStore(KeyValueStore):
    """Shared store for multi-instance deployments."""

    def __init__(self, redis_url: Optional[str] = None, prefix: str = "authgate:"):
        self.redis_url = redis_url or settings.REDIS_URL
        self.prefix = prefix
        self.redis: Optional[redis.Redis] = None

    def connect(self) -> redis.Redis:
        if not self.redis:
            self.redis = redis.Redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Connected to Redis store.")
        return self.redis

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key):
        return self.connect().get(self._key(key))

    def set(self, key, value, ttl=None):
        self.connect().set(self._key(key), value, ex=ttl)

    def delete(self, key):
        self.connect().delete(self._key(key))

    def compare_and_set(self, key, expected, value, ttl=None):
        full_key = self._key(key)
        with self.connect().pipeline() as pipe:
            try:
                pipe.watch(full_key)
                if pipe.get(full_key) != expected:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(full_key, value, ex=ttl)
                pipe.execute()
                return True
            except redis.WatchError:
                logger.debug(f"Concurrent update on {full_key}, CAS lost")
                return False

    def pop(self, key):
        full_key = self._key(key)
        with self.connect().pipeline() as pipe:
            pipe.get(full_key)
            pipe.delete(full_key)
            value, _ = pipe.execute()
        return value

    def clear(self):
        client = self.connect()
        keys = client.keys(f"{self.prefix}*")
        if keys:
            client.delete(*keys)

    def close(self):
        if self.redis:
            self.redis.close()
            self.redis = None


def get_store() -> KeyValueStore:
    backend = settings.KV_BACKEND.lower()
    if backend == "redis":
        return RedisStore()
    if backend != "memory":
        logger.warning(f"Unknown KV_BACKEND {settings.KV_BACKEND!r}, using in-memory store")
    return MemoryStore()


# Singleton instance
kv_store = get_store()
