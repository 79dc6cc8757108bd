from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AccessLogMessage(BaseModel):
    """One visit, as shipped to the access log stream."""

    short_code: str
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    access_time: datetime = Field(default_factory=_now)
