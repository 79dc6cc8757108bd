from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List


class AccessLogEntry(BaseModel):
    short_code: str
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    access_time: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AccessLogList(BaseModel):
    short_code: str
    limit: int
    logs: List[AccessLogEntry]
