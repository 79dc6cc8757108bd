from sqlalchemy import Column, String, Integer, BigInteger, DateTime, JSON, SmallInteger
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone

Base = declarative_base()

STATUS_ACTIVE = 1
STATUS_DISABLED = 0


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ShortLink(Base):
    __tablename__ = "short_links"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Uniqueness of short_code is enforced here; it is the final arbiter
    # between concurrent generators.
    short_code = Column(String(6), unique=True, index=True, nullable=False)
    original_url = Column(String(2048), index=True, nullable=False)

    # Parameter template supplied at generation time. Stored only.
    params = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expire_at = Column(DateTime, index=True, nullable=True)
    status = Column(SmallInteger, default=STATUS_ACTIVE, nullable=False, index=True)

    def is_active(self, now: datetime = None) -> bool:
        if self.status is not None and self.status != STATUS_ACTIVE:
            return False
        if self.expire_at is not None:
            now = now or utcnow()
            if now >= self.expire_at:
                return False
        return True

    def __repr__(self):
        return f"<ShortLink {self.short_code} -> {self.original_url[:50]}>"


class AccessLog(Base):
    __tablename__ = "access_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    short_code = Column(String(6), index=True, nullable=False)
    client_ip = Column(String(64), index=True)
    user_agent = Column(String(512))
    referer = Column(String(512))
    access_time = Column(DateTime, default=utcnow, index=True)
