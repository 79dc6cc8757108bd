"""
Access log shipping.

Every redirect produces an AccessLogMessage that is appended to a Redis
stream. A consumer group drains the stream into the access_logs table. The
sink never raises: when the stream is unreachable the visit is written to the
``shortlink.access_log`` logger instead, and a deployment without a stream
(NullSink) simply ships nothing.
"""

import logging
import threading
from typing import Callable, Optional

import redis
import redis.exceptions
from pydantic import ValidationError

from shortlink.core.logging_config import ACCESS_LOG_FALLBACK
from shortlink.db.Models.models import AccessLog
from shortlink.schemas.AccessLogMessage import AccessLogMessage
from shortlink.services.interfaces import AccessLogSink, ShortLinkStore

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger(ACCESS_LOG_FALLBACK)

ACCESS_LOG_STREAM = "shortlink:access_log"
ACCESS_LOG_GROUP = "shortlink_consumer_group"
ACCESS_LOG_TAG = "access_log"


class NullSink(AccessLogSink):
    """No transport configured: access logs are not shipped, redirects still work."""

    def send(self, message: AccessLogMessage) -> bool:
        return False


class RedisStreamSink(AccessLogSink):

    def __init__(self, client: redis.Redis, stream: str = ACCESS_LOG_STREAM, maxlen: Optional[int] = 1_000_000):
        self.client = client
        self.stream = stream
        self.maxlen = maxlen

    def send(self, message: AccessLogMessage) -> bool:
        fields = {
            # Partition / ordering hint for consumers
            "short_code": message.short_code,
            "tag": ACCESS_LOG_TAG,
            "body": message.model_dump_json(),
        }
        try:
            msg_id = self.client.xadd(self.stream, fields, maxlen=self.maxlen, approximate=True)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to ship access log for {message.short_code}: {e}")
            fallback_logger.warning("access_log %s", fields["body"])
            return False
        logger.debug("Access log %s sent for %s", msg_id, message.short_code)
        return True


def persist_access_log(store: ShortLinkStore) -> Callable[[AccessLogMessage], None]:
    """Consumer handler that writes each message to the access_logs table."""

    def handler(message: AccessLogMessage) -> None:
        store.save_access_log(
            AccessLog(
                short_code=message.short_code,
                client_ip=(message.client_ip or "")[:64],
                user_agent=(message.user_agent or "")[:512],
                referer=(message.referer or "")[:512],
                access_time=message.access_time,
            )
        )

    return handler


class AccessLogConsumer:
    """Reads the access log stream through a consumer group (at-least-once)."""

    def __init__(
        self,
        client: redis.Redis,
        handler: Callable[[AccessLogMessage], None],
        stream: str = ACCESS_LOG_STREAM,
        group: str = ACCESS_LOG_GROUP,
        consumer_name: str = "consumer-1",
    ):
        self.client = client
        self.handler = handler
        self.stream = stream
        self.group = group
        self.consumer_name = consumer_name
        self._subscribed = False

    def subscribe(self) -> None:
        if self._subscribed:
            return
        try:
            self.client.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info(f"Created consumer group {self.group} on {self.stream}")
        except redis.exceptions.ResponseError as e:
            # BUSYGROUP: the group already exists
            if "BUSYGROUP" not in str(e):
                raise
        self._subscribed = True

    def poll(self, count: int = 100, block_ms: Optional[int] = None) -> int:
        """Handle one batch; returns how many messages were acknowledged."""
        self.subscribe()
        response = self.client.xreadgroup(
            self.group, self.consumer_name, {self.stream: ">"}, count=count, block=block_ms
        )
        acked = 0
        for _stream, messages in response or []:
            for msg_id, fields in messages:
                if self._handle(msg_id, fields):
                    self.client.xack(self.stream, self.group, msg_id)
                    acked += 1
        return acked

    def _handle(self, msg_id, fields) -> bool:
        body = fields.get("body", fields.get(b"body"))
        if isinstance(body, (bytes, bytearray)):
            body = body.decode()

        try:
            message = AccessLogMessage.model_validate_json(body or "")
        except ValidationError as e:
            # Poison message; ack it so it is not redelivered forever
            logger.error(f"Dropping malformed access log {msg_id}: {e}")
            return True

        try:
            self.handler(message)
        except Exception:
            logger.exception("Access log handler failed for %s; leaving %s pending", message.short_code, msg_id)
            return False
        return True

    def run(self, stop: threading.Event, block_ms: int = 1000) -> None:
        """Poll until ``stop`` is set. Meant for a daemon thread."""
        logger.info(f"Access log consumer started on {self.stream}")
        while not stop.is_set():
            try:
                self.poll(block_ms=block_ms)
            except redis.exceptions.RedisError as e:
                logger.warning(f"Access log consumer poll failed: {e}")
                stop.wait(5)
        logger.info("Access log consumer stopped")
