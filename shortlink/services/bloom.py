"""
Approximate membership index over every issued short code.

Backed by the RedisBloom module when the server has it. Servers without the
module answer BF.* with a command error; the index then keeps one exact flag
key per code instead, which preserves the "no false negatives" contract and
only loses the space advantage. Connection failures are never turned into a
"does not exist" answer.
"""

import logging

import redis
import redis.exceptions

from shortlink.core.errors import MembershipIndexError
from shortlink.services.interfaces import MembershipIndex

logger = logging.getLogger(__name__)

BLOOM_FILTER_KEY = "shortlink:bloom"
FALLBACK_KEY_PREFIX = "shortlink:bloom:fb:"


class RedisBloomIndex(MembershipIndex):

    def __init__(self, client: redis.Redis, capacity: int, error_rate: float):
        self.client = client
        self._capacity = capacity
        self.error_rate = error_rate
        self._init_bloom_filter()

    @property
    def capacity(self) -> int:
        return self._capacity

    def _init_bloom_filter(self) -> None:
        try:
            if self.client.exists(BLOOM_FILTER_KEY):
                logger.info("Bloom filter already exists")
                return
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to check bloom filter existence: {e}")
            return

        try:
            self.client.execute_command("BF.RESERVE", BLOOM_FILTER_KEY, self.error_rate, self._capacity)
            logger.info(
                "Bloom filter created with capacity=%d, error_rate=%f", self._capacity, self.error_rate
            )
        except redis.exceptions.ResponseError as e:
            logger.warning(f"BF.RESERVE not available, membership index uses exact flags: {e}")
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to reserve bloom filter: {e}")

    @staticmethod
    def _fallback_key(short_code: str) -> str:
        return f"{FALLBACK_KEY_PREFIX}{short_code}"

    def add(self, short_code: str) -> None:
        try:
            self.client.execute_command("BF.ADD", BLOOM_FILTER_KEY, short_code)
            return
        except redis.exceptions.ResponseError as e:
            logger.debug(f"BF.ADD not available, using SET fallback: {e}")
        except redis.exceptions.RedisError as e:
            raise MembershipIndexError(f"BF.ADD {short_code} failed: {e}") from e

        try:
            self.client.set(self._fallback_key(short_code), 1)
        except redis.exceptions.RedisError as e:
            raise MembershipIndexError(f"fallback SET {short_code} failed: {e}") from e

    def exists(self, short_code: str) -> bool:
        try:
            return int(self.client.execute_command("BF.EXISTS", BLOOM_FILTER_KEY, short_code)) == 1
        except redis.exceptions.ResponseError as e:
            logger.debug(f"BF.EXISTS not available, using EXISTS fallback: {e}")
        except redis.exceptions.RedisError as e:
            raise MembershipIndexError(f"BF.EXISTS {short_code} failed: {e}") from e

        try:
            return self.client.exists(self._fallback_key(short_code)) > 0
        except redis.exceptions.RedisError as e:
            raise MembershipIndexError(f"fallback EXISTS {short_code} failed: {e}") from e

    def is_available(self) -> bool:
        try:
            self.client.execute_command("BF.INFO", BLOOM_FILTER_KEY)
            return True
        except redis.exceptions.RedisError:
            return False

    def reset(self) -> None:
        """Drop the filter and every fallback flag. Maintenance only."""
        try:
            self.client.delete(BLOOM_FILTER_KEY)
            fallback_keys = list(self.client.scan_iter(match=f"{FALLBACK_KEY_PREFIX}*", count=1000))
            if fallback_keys:
                self.client.delete(*fallback_keys)
        except redis.exceptions.RedisError as e:
            raise MembershipIndexError(f"reset failed: {e}") from e
        logger.warning("Membership index reset (%d fallback flags dropped)", len(fallback_keys))
        self._init_bloom_filter()
