# re-export common schemas for simpler imports
from .GenerateRequest import GenerateRequest
from .GenerateResponse import GenerateResponse
from .AnalyticsResponse import AnalyticsResponse, SourceStat, Stats
from .AccessLogMessage import AccessLogMessage
from .AccessLogList import AccessLogEntry, AccessLogList
from .LinkInfoResponse import LinkInfoResponse

__all__ = [
    "GenerateRequest",
    "GenerateResponse",
    "AnalyticsResponse",
    "SourceStat",
    "Stats",
    "AccessLogMessage",
    "AccessLogEntry",
    "AccessLogList",
    "LinkInfoResponse",
]
