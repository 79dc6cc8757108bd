"""
Link resolution engine: short-code generation and code -> URL resolution.

The service holds no state between calls. The durable store is the source of
truth, the cache and the membership index are only accelerators, so failures
talking to either of them are logged and absorbed, never reported.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from shortlink.core.errors import (
    CacheError,
    CapacityExhaustedError,
    DuplicateCodeError,
    InvalidExpiryError,
    InvalidURLError,
    MembershipIndexError,
    OperationCancelled,
    ShortLinkExpired,
    ShortLinkNotFound,
)
from shortlink.db.Models.models import ShortLink, STATUS_ACTIVE, utcnow
from shortlink.schemas.GenerateResponse import GenerateResponse
from shortlink.services.interfaces import Cache, MembershipIndex, ShortLinkStore
from shortlink.utils import encoding

logger = logging.getLogger(__name__)

# Cache layout: "sl:{code}" -> url, "sl:req:{composite key}" -> code
SHORT_LINK_KEY_PREFIX = "sl:"
REQUEST_KEY_PREFIX = "sl:req:"
SHORT_LINK_CACHE_TTL = 86400
MAX_URL_LENGTH = 2048
MAX_ATTEMPTS_PER_LENGTH = 1000
PERSIST_RETRIES = 3


def check_deadline(deadline: Optional[float], step: str) -> None:
    """Raise OperationCancelled once ``deadline`` (a time.monotonic() value) has passed."""
    if deadline is not None and time.monotonic() >= deadline:
        raise OperationCancelled(f"deadline exceeded before {step}")


def parse_expire_at(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an RFC 3339 / ISO 8601 expiry into naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidExpiryError(f"invalid expire_at format: {value!r}") from e
    if not isinstance(value, datetime):
        raise InvalidExpiryError(f"invalid expire_at type: {type(value).__name__}")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def build_cache_key(url: str, params: Optional[Mapping[str, str]]) -> str:
    """Composite key: the URL alone, or the URL plus its canonical template."""
    if not params:
        return url
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return f"{url}:{canonical}"


def merge_query(url: str, query_params: Optional[Mapping[str, str]]) -> str:
    """Merge ``query_params`` into ``url``'s query string; supplied keys win."""
    if not query_params:
        return url
    try:
        parts = urlsplit(url)
        existing = parse_qsl(parts.query, keep_blank_values=True)
    except ValueError:
        return url

    merged = [(k, v) for k, v in existing if k not in query_params]
    merged.extend((k, v) for k, v in query_params.items())
    return urlunsplit(parts._replace(query=urlencode(merged)))


class URLService:

    def __init__(
        self,
        store: ShortLinkStore,
        cache: Cache,
        index: MembershipIndex,
        domain: str,
        cache_ttl: int = SHORT_LINK_CACHE_TTL,
        max_attempts: int = MAX_ATTEMPTS_PER_LENGTH,
        persist_retries: int = PERSIST_RETRIES,
    ):
        self.store = store
        self.cache = cache
        self.index = index
        self.domain = domain.rstrip("/")
        self.cache_ttl = cache_ttl
        self.max_attempts = max_attempts
        self.persist_retries = persist_retries

    # -- cache helpers (non-authoritative, never fail the caller) --

    def _cache_get(self, key: str) -> Optional[str]:
        try:
            return self.cache.get(key)
        except CacheError as e:
            logger.warning(f"Cache read failed for {key[:50]}: {e}")
            return None

    def _cache_put(self, key: str, value: str) -> None:
        try:
            self.cache.set(key, value, self.cache_ttl)
        except CacheError as e:
            logger.warning(f"Failed to cache {key[:50]}, cache unavailable: {e}")

    def _cache_drop(self, key: str) -> None:
        try:
            self.cache.delete(key)
        except CacheError as e:
            logger.warning(f"Failed to evict {key[:50]} from cache: {e}")

    # -- generation --

    def generate(
        self,
        original_url: str,
        params: Optional[Dict[str, str]] = None,
        expire_at: Union[str, datetime, None] = None,
        deadline: Optional[float] = None,
    ) -> ShortLink:
        if not original_url or not original_url.strip():
            raise InvalidURLError("invalid URL: empty")
        if len(original_url) > MAX_URL_LENGTH:
            raise InvalidURLError(f"invalid URL: longer than {MAX_URL_LENGTH} characters")
        expires = parse_expire_at(expire_at)

        request_key = REQUEST_KEY_PREFIX + build_cache_key(original_url, params)

        # Idempotency: same URL + same template maps to the same code
        check_deadline(deadline, "cache lookup")
        cached_code = self._cache_get(request_key)
        if cached_code:
            check_deadline(deadline, "store lookup")
            existing = self.store.get_by_code(cached_code)
            if existing is not None and existing.is_active():
                logger.info("Generate cache HIT: %s -> %s", original_url[:50], cached_code)
                return existing

        # De-dup on the bare URL, whatever the template
        check_deadline(deadline, "store lookup")
        existing = self.store.get_by_url(original_url)
        if existing is not None and existing.is_active():
            logger.info("short URL already existed : '%s' for URL: %s", existing.short_code, original_url[:50])
            self._cache_put(request_key, existing.short_code)
            return existing

        link = self._persist_new(original_url, params, expires, deadline)

        # Cache + index are best effort from here on
        if deadline is None or time.monotonic() < deadline:
            self._cache_put(request_key, link.short_code)
            self._cache_put(SHORT_LINK_KEY_PREFIX + link.short_code, link.original_url)
            self._index_add(link.short_code)
        else:
            logger.info("Deadline passed after persisting %s; skipped cache and index update", link.short_code)

        logger.info("Shortened %s... to %s", original_url[:50], link.short_code)
        return link

    def _persist_new(
        self,
        original_url: str,
        params: Optional[Dict[str, str]],
        expires: Optional[datetime],
        deadline: Optional[float],
    ) -> ShortLink:
        candidates = self._free_codes(original_url, deadline)
        retries = 0
        while True:
            try:
                short_code, store_checked = next(candidates)
            except StopIteration:
                logger.error("Code space exhausted at every length for %s", original_url[:50])
                raise CapacityExhaustedError("maximum capacity reached")

            check_deadline(deadline, "persist")
            link = ShortLink(
                short_code=short_code,
                original_url=original_url,
                params=dict(params) if params else None,
                created_at=utcnow(),
                expire_at=expires,
                status=STATUS_ACTIVE,
            )
            try:
                return self.store.create(link)
            except DuplicateCodeError:
                if not store_checked:
                    # Index lost this code (flush, failed add); only store-checked codes count as races
                    logger.warning(f"Membership index is missing taken code {short_code}, re-adding it")
                    self._index_add(short_code)
                    continue
                # Another writer took the code between our check and our insert
                retries += 1
                if retries > self.persist_retries:
                    logger.error("Short code collision on persist, giving up after %d retries", retries - 1)
                    raise
                logger.info(f"Short code collision on persist for {short_code}, retry {retries}/{self.persist_retries}")

    def _index_add(self, short_code: str) -> None:
        try:
            self.index.add(short_code)
        except MembershipIndexError as e:
            logger.warning(f"Failed to add {short_code} to membership index: {e}")

    def _candidates(self, original_url: str) -> Iterator[Tuple[int, str]]:
        base = encoding.hash_string(original_url)
        for length in range(encoding.MIN_LENGTH, encoding.MAX_LENGTH + 1):
            for attempt in range(self.max_attempts):
                yield length, encoding.encode(base + attempt, length)

    def _free_codes(self, original_url: str, deadline: Optional[float]) -> Iterator[Tuple[str, bool]]:
        """Yield ``(code, store_checked)`` for candidates believed free, in generation order.

        "Definitely absent" from the index skips the store round trip;
        ``store_checked`` tells the caller which answer the code rests on.
        """
        for length, short_code in self._candidates(original_url):
            check_deadline(deadline, "collision check")
            try:
                if not self.index.exists(short_code):
                    yield short_code, False
                    continue
            except MembershipIndexError as e:
                logger.warning(f"Membership index unavailable, checking store for {short_code}: {e}")

            if not self.store.exists_by_code(short_code):
                yield short_code, True
            else:
                logger.debug("Collision on %s (length %d)", short_code, length)

    def build_response(self, link: ShortLink) -> GenerateResponse:
        return GenerateResponse(
            short_link=f"{self.domain}/{link.short_code}",
            short_code=link.short_code,
            original_url=link.original_url,
            expire_at=link.expire_at,
        )

    # -- resolution --

    def resolve(self, short_code: str, deadline: Optional[float] = None) -> ShortLink:
        short_code = encoding.normalize_short_code(short_code)

        check_deadline(deadline, "cache lookup")
        cached_url = self._cache_get(SHORT_LINK_KEY_PREFIX + short_code)
        if cached_url:
            logger.debug(f"Redirect cache HIT for {short_code} -> {cached_url[:50]}")
            return ShortLink(short_code=short_code, original_url=cached_url)

        check_deadline(deadline, "store lookup")
        link = self.store.get_by_code(short_code)
        if link is None:
            logger.warning(f"Short code not found: {short_code}")
            raise ShortLinkNotFound(f"short link {short_code} not found")
        if not link.is_active():
            raise ShortLinkExpired(f"short link {short_code} has expired or is disabled")

        self._cache_put(SHORT_LINK_KEY_PREFIX + short_code, link.original_url)
        return link

    def expand_url(
        self,
        short_code: str,
        query_params: Optional[Mapping[str, str]] = None,
        deadline: Optional[float] = None,
    ) -> str:
        link = self.resolve(short_code, deadline)
        return merge_query(link.original_url, query_params)

    def disable(self, short_code: str) -> None:
        short_code = encoding.normalize_short_code(short_code)
        if not self.store.disable(short_code):
            raise ShortLinkNotFound(f"short link {short_code} not found")
        self._cache_drop(SHORT_LINK_KEY_PREFIX + short_code)
        logger.info("Disabled short link %s", short_code)
