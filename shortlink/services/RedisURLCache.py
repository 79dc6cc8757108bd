import logging
from typing import Iterable, List, Optional

import redis
import redis.exceptions

from shortlink.core.errors import CacheError
from shortlink.services.interfaces import Cache

logger = logging.getLogger(__name__)
CACHE_TTL = 86400


def _decode(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return value.decode()
    return str(value)


class RedisURLCache(Cache):
    """Cache capability on top of a redis-py client.

    Every RedisError is re-raised as CacheError so callers can absorb cache
    outages without knowing about redis.
    """

    def __init__(self, client: redis.Redis, scan_count: int = 500):
        self.client = client
        self.scan_count = scan_count

    def set(self, key: str, value: str, ttl: int = CACHE_TTL) -> None:
        try:
            self.client.setex(key, ttl, value)
        except redis.exceptions.RedisError as e:
            raise CacheError(f"SET {key} failed: {e}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            return _decode(self.client.get(key))
        except redis.exceptions.RedisError as e:
            raise CacheError(f"GET {key} failed: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            return self.client.exists(key) > 0
        except redis.exceptions.RedisError as e:
            raise CacheError(f"EXISTS {key} failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.exceptions.RedisError as e:
            raise CacheError(f"DEL {key} failed: {e}") from e

    def incr(self, key: str, ttl: int) -> int:
        try:
            count = self.client.incr(key)
            # First write starts the counting window
            if count == 1:
                self.client.expire(key, ttl)
            return count
        except redis.exceptions.RedisError as e:
            raise CacheError(f"INCR {key} failed: {e}") from e

    def sadd(self, key: str, member: str, ttl: int) -> bool:
        try:
            pipe = self.client.pipeline()
            pipe.sadd(key, member)
            pipe.expire(key, ttl)
            added, _ = pipe.execute()
            return added > 0
        except redis.exceptions.RedisError as e:
            raise CacheError(f"SADD {key} failed: {e}") from e

    def scan_prefix(self, prefix: str) -> List[str]:
        try:
            return [_decode(k) for k in self.client.scan_iter(match=f"{prefix}*", count=self.scan_count)]
        except redis.exceptions.RedisError as e:
            raise CacheError(f"SCAN {prefix}* failed: {e}") from e

    def union_cardinality(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        try:
            return len(self.client.sunion(keys))
        except redis.exceptions.RedisError as e:
            raise CacheError(f"SUNION over {len(keys)} keys failed: {e}") from e
