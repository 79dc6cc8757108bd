from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse
import logging

from shortlink.api import deps
from shortlink.schemas.AccessLogMessage import AccessLogMessage
from shortlink.schemas.AnalyticsResponse import AnalyticsResponse
from shortlink.schemas.GenerateRequest import GenerateRequest
from shortlink.schemas.GenerateResponse import GenerateResponse
from shortlink.services import metrics
from shortlink.services.Analytics import AnalyticsService
from shortlink.services.interfaces import AccessLogSink
from shortlink.services.shortener import URLService
from shortlink.utils.encoding import normalize_short_code

logger = logging.getLogger(__name__)

router = APIRouter()


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


@router.post(
    "/api/v1/shortlink/generate",
    response_model=GenerateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["shortlink"],
)
def generate_endpoint(
    body: GenerateRequest,
    service: URLService = Depends(deps.get_url_service),
    deadline: float = Depends(deps.request_deadline),
):
    link = service.generate(body.url, body.params, body.expire_at, deadline=deadline)
    logger.info(f"API success: Shortened {link.original_url[:50]}... to {link.short_code}")
    return service.build_response(link)


@router.get("/api/v1/analytics/{short_code}", response_model=AnalyticsResponse, tags=["analytics"])
def analytics_endpoint(
    short_code: str,
    service: URLService = Depends(deps.get_url_service),
    analytics: AnalyticsService = Depends(deps.get_analytics_service),
    deadline: float = Depends(deps.request_deadline),
):
    # 404 / 410 when the link does not resolve
    link = service.resolve(short_code, deadline=deadline)
    return analytics.get_analytics(link.short_code)


@router.get("/{short_code}", tags=["redirect"])
def redirect_endpoint(
    short_code: str,
    request: Request,
    service: URLService = Depends(deps.get_url_service),
    analytics: AnalyticsService = Depends(deps.get_analytics_service),
    sink: AccessLogSink = Depends(deps.get_access_log_sink),
    dispatcher: metrics.BackgroundDispatcher = Depends(deps.get_dispatcher),
    deadline: float = Depends(deps.request_deadline),
):
    # First value of each repeated query parameter
    query_params = {}
    for key, value in request.query_params.multi_items():
        query_params.setdefault(key, value)

    target = service.expand_url(short_code, query_params, deadline=deadline)

    message = AccessLogMessage(
        short_code=normalize_short_code(short_code),
        client_ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        referer=request.headers.get("referer", ""),
    )
    dispatcher.submit(metrics.record_visit, analytics, sink, message)
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
