from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Dict


class LinkInfoResponse(BaseModel):
    short_code: str
    short_link: str
    original_url: str
    params: Optional[Dict[str, str]] = None
    created_at: Optional[datetime] = None
    expire_at: Optional[datetime] = None
    is_active: bool = True
    pv: int = 0
    uv: int = 0

    model_config = {"from_attributes": True}
