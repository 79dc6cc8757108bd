"""
Real-time visit analytics kept in the cache.

Key layout (all expire; none of it is authoritative):
    sl:pv:{code}                        page views, TTL starts on first hit
    sl:uv:{code}:{YYYY-MM-DD}           set of "{day}:{client_ip}" visitor ids
    sl:source:{code}:{source}:{day}     per-day hits for one traffic source
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from urllib.parse import urlsplit

from shortlink.core.errors import CacheError
from shortlink.schemas.AnalyticsResponse import AnalyticsResponse, SourceStat, Stats
from shortlink.services.interfaces import Cache

logger = logging.getLogger(__name__)

PV_KEY_PREFIX = "sl:pv:"
UV_KEY_PREFIX = "sl:uv:"
SOURCE_KEY_PREFIX = "sl:source:"
STATS_TTL = 604800
TOP_SOURCES_LIMIT = 10

# Ordered: first keyword contained in the host wins
KNOWN_SOURCES = [
    ("google", "google"),
    ("baidu", "baidu"),
    ("bing", "bing"),
    ("yahoo", "yahoo"),
    ("duckduckgo", "duckduckgo"),
    ("yandex", "yandex"),
    ("weibo", "weibo"),
    ("weixin", "wechat"),
    ("qq", "qq"),
    ("zhihu", "zhihu"),
    ("facebook", "facebook"),
    ("instagram", "instagram"),
    ("twitter", "twitter"),
    ("linkedin", "linkedin"),
    ("youtube", "youtube"),
    ("reddit", "reddit"),
    ("tiktok", "tiktok"),
    ("pinterest", "pinterest"),
    ("telegram", "telegram"),
    ("whatsapp", "whatsapp"),
]


def extract_source(referer: Optional[str]) -> str:
    """Classify a Referer header into a traffic source label.

    Returns ``""`` for a referer that parses but carries no host (no
    scheme, e.g. ``example.com/page``); no source is recorded for it.
    """
    if not referer:
        return "direct"

    referer = referer.strip()
    # Missing scheme name before ":"
    if referer.startswith(":"):
        return "unknown"
    try:
        parts = urlsplit(referer)
        host = parts.hostname
    except ValueError:
        return "unknown"
    if not host:
        return ""

    if host.startswith("www."):
        host = host[4:]

    for keyword, label in KNOWN_SOURCES:
        if keyword in host:
            return label

    labels = host.split(".")
    if len(labels) >= 2:
        return labels[-2]
    return host


def top_sources(sources: Dict[str, int], limit: int = TOP_SOURCES_LIMIT) -> List[SourceStat]:
    # Count descending; ties are ordered by label so results are stable
    ranked = sorted(sources.items(), key=lambda item: (-item[1], item[0]))
    return [SourceStat(source=source, count=count) for source, count in ranked[:limit]]


def _utc_today() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsService:

    def __init__(
        self,
        cache: Cache,
        stats_ttl: int = STATS_TTL,
        top_n: int = TOP_SOURCES_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.cache = cache
        self.stats_ttl = stats_ttl
        self.top_n = top_n
        self.clock = clock or _utc_today

    def _day(self) -> str:
        return self.clock().strftime("%Y-%m-%d")

    def record_access(self, short_code: str, client_ip: str, user_agent: str = "", referer: str = "") -> None:
        """Update PV, UV and source counters. Never raises; each update is independent."""
        day = self._day()

        try:
            self.cache.incr(f"{PV_KEY_PREFIX}{short_code}", self.stats_ttl)
        except CacheError as e:
            logger.error(f"Failed to increment PV for {short_code}: {e}")

        # Daily dedup: the same IP counts once per calendar day
        visitor_id = f"{day}:{client_ip}"
        try:
            self.cache.sadd(f"{UV_KEY_PREFIX}{short_code}:{day}", visitor_id, self.stats_ttl)
        except CacheError as e:
            logger.error(f"Failed to add UV for {short_code}: {e}")

        source = extract_source(referer)
        if source:
            try:
                self.cache.incr(f"{SOURCE_KEY_PREFIX}{short_code}:{source}:{day}", self.stats_ttl)
            except CacheError as e:
                logger.error(f"Failed to add source {source} for {short_code}: {e}")

    def get_stats(self, short_code: str) -> Stats:
        try:
            pv = int(self.cache.get(f"{PV_KEY_PREFIX}{short_code}") or 0)
        except (CacheError, ValueError) as e:
            logger.error(f"Failed to get PV for {short_code}: {e}")
            pv = 0

        try:
            uv_keys = self.cache.scan_prefix(f"{UV_KEY_PREFIX}{short_code}:")
            uv = self.cache.union_cardinality(uv_keys)
        except CacheError as e:
            logger.error(f"Failed to get UV for {short_code}: {e}")
            uv = 0

        return Stats(pv=pv, uv=uv)

    def get_sources(self, short_code: str) -> Dict[str, int]:
        """Per-source totals merged across days."""
        prefix = f"{SOURCE_KEY_PREFIX}{short_code}:"
        sources: Dict[str, int] = {}
        for key in self.cache.scan_prefix(prefix):
            # "{source}:{day}"; the day never contains a colon
            source, _, _day = key[len(prefix):].rpartition(":")
            if not source:
                continue
            try:
                count = int(self.cache.get(key) or 0)
            except (CacheError, ValueError):
                # Expired or unreadable between scan and read
                continue
            sources[source] = sources.get(source, 0) + count
        return sources

    def get_analytics(self, short_code: str) -> AnalyticsResponse:
        stats = self.get_stats(short_code)

        try:
            sources = self.get_sources(short_code)
        except CacheError as e:
            logger.error(f"Failed to get sources for {short_code}: {e}")
            sources = {}

        return AnalyticsResponse(
            short_code=short_code,
            pv=stats.pv,
            uv=stats.uv,
            top_sources=top_sources(sources, self.top_n),
        )
