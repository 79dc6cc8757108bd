"""FastAPI dependencies: every core component is built here from settings."""

from functools import lru_cache
import time

from fastapi import Depends
from sqlalchemy.orm import Session

from shortlink.core.config import settings
from shortlink.db.Connection import database
from shortlink.db.repository import SQLShortLinkStore
from shortlink.services.Analytics import AnalyticsService
from shortlink.services.RedisURLCache import RedisURLCache
from shortlink.services.access_log import NullSink, RedisStreamSink
from shortlink.services.bloom import RedisBloomIndex
from shortlink.services.interfaces import AccessLogSink, Cache, MembershipIndex, ShortLinkStore
from shortlink.services.metrics import BackgroundDispatcher
from shortlink.services.shortener import URLService


@lru_cache
def get_cache() -> Cache:
    return RedisURLCache(database.redis_client)


@lru_cache
def get_membership_index() -> MembershipIndex:
    return RedisBloomIndex(database.redis_client, settings.BLOOM_CAPACITY, settings.BLOOM_ERROR_RATE)


@lru_cache
def get_access_log_sink() -> AccessLogSink:
    if not settings.ACCESS_LOG_ENABLED:
        return NullSink()
    return RedisStreamSink(database.redis_client, settings.ACCESS_LOG_STREAM, settings.ACCESS_LOG_MAXLEN)


@lru_cache
def get_dispatcher() -> BackgroundDispatcher:
    return BackgroundDispatcher(settings.WORKER_POOL_SIZE, settings.WORKER_QUEUE_SIZE)


def get_store(db: Session = Depends(database.get_db)) -> ShortLinkStore:
    return SQLShortLinkStore(db)


def get_url_service(
    store: ShortLinkStore = Depends(get_store),
    cache: Cache = Depends(get_cache),
    index: MembershipIndex = Depends(get_membership_index),
) -> URLService:
    return URLService(
        store,
        cache,
        index,
        domain=settings.BASE_URL,
        cache_ttl=settings.CACHE_TTL,
        max_attempts=settings.MAX_ATTEMPTS_PER_LENGTH,
        persist_retries=settings.PERSIST_RETRIES,
    )


def get_analytics_service(cache: Cache = Depends(get_cache)) -> AnalyticsService:
    return AnalyticsService(cache, stats_ttl=settings.STATS_TTL, top_n=settings.TOP_SOURCES_LIMIT)


def request_deadline() -> float:
    """Deadline handed to the link service for the current request."""
    return time.monotonic() + settings.REQUEST_TIMEOUT
