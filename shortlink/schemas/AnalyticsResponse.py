from pydantic import BaseModel
from typing import List


class SourceStat(BaseModel):
    source: str
    count: int


class Stats(BaseModel):
    pv: int = 0
    uv: int = 0


class AnalyticsResponse(BaseModel):
    short_code: str
    pv: int = 0
    uv: int = 0
    top_sources: List[SourceStat] = []
