"""Typed exceptions for the short link core (no logic)."""


class ShortLinkError(Exception):
    """Base class for every condition the core reports to its callers."""


class InvalidInputError(ShortLinkError, ValueError):
    """Client error: malformed URL or expiry."""


class InvalidURLError(InvalidInputError):
    pass


class InvalidExpiryError(InvalidInputError):
    pass


class ShortLinkNotFound(ShortLinkError):
    """No short link was ever issued for the code."""


class ShortLinkExpired(ShortLinkError):
    """The code is known but disabled or past its expire_at."""


class CapacityExhaustedError(ShortLinkError):
    """Every candidate at every supported code length is taken."""


class PersistenceError(ShortLinkError):
    """Authoritative read/write against the durable store failed."""


class DuplicateCodeError(PersistenceError):
    """The store rejected a short code because another row already holds it."""


class OperationCancelled(ShortLinkError):
    """The caller's deadline passed before the operation completed."""


class MembershipIndexError(ShortLinkError):
    """The membership index backend could not be reached."""


class CacheError(ShortLinkError):
    """The cache backend failed. Callers absorb it; the cache is never authoritative."""
