"""
Narrow capability interfaces the link engine and analytics depend on.

Each has one production implementation (SQLAlchemy, Redis, RedisBloom, Redis
streams) and an in-memory double in the test suite.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from shortlink.db.Models.models import AccessLog, ShortLink
from shortlink.schemas.AccessLogMessage import AccessLogMessage


class ShortLinkStore(ABC):
    """Durable store: the source of truth for issued codes."""

    @abstractmethod
    def create(self, link: ShortLink) -> ShortLink:
        """Insert ``link``; raise DuplicateCodeError if its code is taken."""

    @abstractmethod
    def get_by_code(self, short_code: str) -> Optional[ShortLink]:
        """Return the row for ``short_code`` whatever its status."""

    @abstractmethod
    def get_by_url(self, original_url: str) -> Optional[ShortLink]:
        """Return the newest active-status row for ``original_url``."""

    @abstractmethod
    def exists_by_code(self, short_code: str) -> bool:
        ...

    @abstractmethod
    def disable(self, short_code: str) -> bool:
        ...

    @abstractmethod
    def save_access_log(self, access_log: AccessLog) -> AccessLog:
        ...

    @abstractmethod
    def list_access_logs(self, short_code: str, limit: int = 100) -> List[AccessLog]:
        ...

    @abstractmethod
    def count_links(self) -> int:
        ...

    @abstractmethod
    def list_expired(self, limit: int = 100, now: Optional[datetime] = None) -> List[ShortLink]:
        ...

    @abstractmethod
    def delete_expired(self, now: Optional[datetime] = None) -> int:
        ...


class Cache(ABC):
    """Fast key/value store. Not authoritative; every method may raise CacheError."""

    @abstractmethod
    def set(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def incr(self, key: str, ttl: int) -> int:
        """Atomically increment ``key``; the TTL is applied on the first write."""

    @abstractmethod
    def sadd(self, key: str, member: str, ttl: int) -> bool:
        """Add ``member`` to the set at ``key`` and refresh its TTL."""

    @abstractmethod
    def scan_prefix(self, prefix: str) -> List[str]:
        ...

    @abstractmethod
    def union_cardinality(self, keys: Iterable[str]) -> int:
        ...


class MembershipIndex(ABC):
    """Probabilistic "might this code exist" check over every issued code.

    ``exists`` returning False means definitely absent. Backend failures are
    raised as MembershipIndexError, never reported as absent.
    """

    @abstractmethod
    def add(self, short_code: str) -> None:
        ...

    @abstractmethod
    def exists(self, short_code: str) -> bool:
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """True when the probabilistic backend (not the exact fallback) is in use."""

    @abstractmethod
    def reset(self) -> None:
        ...

    @property
    @abstractmethod
    def capacity(self) -> int:
        ...


class AccessLogSink(ABC):
    """Fire-and-forget transport of raw visits to the durable trail."""

    @abstractmethod
    def send(self, message: AccessLogMessage) -> bool:
        """Ship ``message``; return False (never raise) when it could not be shipped."""

    def close(self) -> None:
        pass
