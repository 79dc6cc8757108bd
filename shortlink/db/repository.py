from typing import List, Optional
from datetime import datetime
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shortlink.core.errors import DuplicateCodeError, PersistenceError
from shortlink.db.Models.models import AccessLog, ShortLink, STATUS_ACTIVE, STATUS_DISABLED, utcnow
from shortlink.services.interfaces import ShortLinkStore

logger = logging.getLogger(__name__)


def _is_short_code_violation(e: IntegrityError) -> bool:
    error_msg = str(e.orig).lower() if getattr(e, 'orig', None) is not None else str(e).lower()
    return "short_code" in error_msg or "unique" in error_msg


class SQLShortLinkStore(ShortLinkStore):
    """Durable store on a SQLAlchemy session (one per request)."""

    def __init__(self, db: Session):
        self.db = db

    def _commit_and_refresh(self, row):
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return row
        except IntegrityError as e:
            self.db.rollback()
            if isinstance(row, ShortLink) and _is_short_code_violation(e):
                logger.warning("IntegrityError creating ShortLink short_code=%s: %s", row.short_code, e)
                raise DuplicateCodeError(f"short code {row.short_code} already taken") from e
            raise PersistenceError(f"failed to save {type(row).__name__}: {e}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"failed to save {type(row).__name__}: {e}") from e

    def _run(self, stmt, what: str):
        try:
            return self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"{what} failed: {e}") from e

    def create(self, link: ShortLink) -> ShortLink:
        return self._commit_and_refresh(link)

    def get_by_code(self, short_code: str) -> Optional[ShortLink]:
        stmt = select(ShortLink).where(ShortLink.short_code == short_code)
        return self._run(stmt, "get_by_code").scalars().first()

    def get_by_url(self, original_url: str) -> Optional[ShortLink]:
        stmt = (
            select(ShortLink)
            .where(ShortLink.original_url == original_url, ShortLink.status == STATUS_ACTIVE)
            .order_by(ShortLink.id.desc())
        )
        return self._run(stmt, "get_by_url").scalars().first()

    def exists_by_code(self, short_code: str) -> bool:
        stmt = select(func.count()).select_from(ShortLink).where(ShortLink.short_code == short_code)
        return (self._run(stmt, "exists_by_code").scalar() or 0) > 0

    def disable(self, short_code: str) -> bool:
        stmt = (
            update(ShortLink)
            .where(ShortLink.short_code == short_code)
            .values(status=STATUS_DISABLED)
        )
        updated = self._run(stmt, "disable").rowcount
        self.db.commit()
        return updated > 0

    def save_access_log(self, access_log: AccessLog) -> AccessLog:
        return self._commit_and_refresh(access_log)

    def list_access_logs(self, short_code: str, limit: int = 100) -> List[AccessLog]:
        stmt = (
            select(AccessLog)
            .where(AccessLog.short_code == short_code)
            .order_by(AccessLog.access_time.desc(), AccessLog.id.desc())
        )
        if limit > 0:
            stmt = stmt.limit(limit)
        return list(self._run(stmt, "list_access_logs").scalars().all())

    def count_links(self) -> int:
        stmt = select(func.count()).select_from(ShortLink)
        return self._run(stmt, "count_links").scalar() or 0

    def list_expired(self, limit: int = 100, now: Optional[datetime] = None) -> List[ShortLink]:
        now = now or utcnow()
        stmt = (
            select(ShortLink)
            .where(ShortLink.expire_at.is_not(None), ShortLink.expire_at < now)
            .order_by(ShortLink.expire_at)
            .limit(limit)
        )
        return list(self._run(stmt, "list_expired").scalars().all())

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        stmt = delete(ShortLink).where(ShortLink.expire_at.is_not(None), ShortLink.expire_at < now)
        deleted = self._run(stmt, "delete_expired").rowcount
        self.db.commit()
        logger.info("Deleted %d expired short links", deleted)
        return deleted
