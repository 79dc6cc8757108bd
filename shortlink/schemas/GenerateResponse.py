from pydantic import BaseModel
from datetime import datetime
from typing import Optional


# Response DTOs
class GenerateResponse(BaseModel):
    short_link: str
    short_code: str
    original_url: str
    expire_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
