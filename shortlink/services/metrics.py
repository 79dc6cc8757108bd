from concurrent.futures import ThreadPoolExecutor
import logging
import threading

from shortlink.db.Connection import database
from shortlink.db.repository import SQLShortLinkStore
from shortlink.schemas.AccessLogMessage import AccessLogMessage
from shortlink.services.Analytics import AnalyticsService
from shortlink.services.access_log import persist_access_log
from shortlink.services.interfaces import AccessLogSink

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """Bounded fire-and-forget executor for work that rides along a redirect.

    ``submit`` never blocks the caller: once ``max_pending`` jobs are queued
    or running, new jobs are dropped with a warning.
    """

    def __init__(self, max_workers: int = 8, max_pending: int = 1000):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="shortlink-bg")
        self._slots = threading.BoundedSemaphore(max_pending)
        self._closed = False

    def submit(self, fn, *args, **kwargs) -> bool:
        if self._closed:
            logger.warning("Dispatcher closed, dropping %s", getattr(fn, "__name__", fn))
            return False
        if not self._slots.acquire(blocking=False):
            logger.warning("Background queue full, dropping %s", getattr(fn, "__name__", fn))
            return False
        try:
            self._executor.submit(self._run, fn, args, kwargs)
        except RuntimeError:
            # Executor shut down between the check and the submit
            self._slots.release()
            return False
        return True

    def _run(self, fn, args, kwargs):
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception("Background job %s failed", getattr(fn, "__name__", fn))
        finally:
            self._slots.release()

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)


def record_visit(analytics: AnalyticsService, sink: AccessLogSink, message: AccessLogMessage) -> None:
    """Redirect-path job: real-time counters first, then the durable trail."""
    analytics.record_access(message.short_code, message.client_ip or "", message.user_agent or "", message.referer or "")
    if not sink.send(message):
        logger.debug("Access log for %s not shipped", message.short_code)


def save_access_log(message: AccessLogMessage) -> None:
    """Stream consumer handler: one session per message."""
    db = database.SessionLocal()
    try:
        persist_access_log(SQLShortLinkStore(db))(message)
        logger.info("metrics.save_access_log: stored visit for %s", message.short_code)
    finally:
        db.close()
