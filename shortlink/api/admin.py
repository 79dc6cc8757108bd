from fastapi import APIRouter, Depends, Query
from typing import List
import logging

from shortlink.api import deps
from shortlink.core.errors import ShortLinkNotFound
from shortlink.core.config import settings
from shortlink.schemas.AccessLogList import AccessLogEntry, AccessLogList
from shortlink.schemas.LinkInfoResponse import LinkInfoResponse
from shortlink.services.Analytics import AnalyticsService
from shortlink.services.interfaces import MembershipIndex, ShortLinkStore
from shortlink.services.shortener import URLService
from shortlink.utils.encoding import normalize_short_code

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def _link_info(link, analytics: AnalyticsService) -> LinkInfoResponse:
    stats = analytics.get_stats(link.short_code)
    return LinkInfoResponse(
        short_code=link.short_code,
        short_link=f"{settings.BASE_URL.rstrip('/')}/{link.short_code}",
        original_url=link.original_url,
        params=link.params,
        created_at=link.created_at,
        expire_at=link.expire_at,
        is_active=link.is_active(),
        pv=stats.pv,
        uv=stats.uv,
    )


@router.get("/stats/{short_code}", response_model=LinkInfoResponse)
def link_stats_endpoint(
    short_code: str,
    store: ShortLinkStore = Depends(deps.get_store),
    analytics: AnalyticsService = Depends(deps.get_analytics_service),
):
    short_code = normalize_short_code(short_code)
    link = store.get_by_code(short_code)
    if link is None:
        logger.warning(f"Stats 404: Short code not found: {short_code}")
        raise ShortLinkNotFound(f"short link {short_code} not found")
    return _link_info(link, analytics)


@router.get("/access-logs/{short_code}", response_model=AccessLogList)
def access_logs_endpoint(
    short_code: str,
    limit: int = Query(100, ge=1, le=1000),
    store: ShortLinkStore = Depends(deps.get_store),
):
    short_code = normalize_short_code(short_code)
    logs = store.list_access_logs(short_code, limit)
    return AccessLogList(
        short_code=short_code,
        limit=limit,
        logs=[AccessLogEntry.model_validate(log) for log in logs],
    )


@router.get("/expired", response_model=List[LinkInfoResponse])
def expired_links_endpoint(
    limit: int = Query(100, ge=1, le=1000),
    store: ShortLinkStore = Depends(deps.get_store),
    analytics: AnalyticsService = Depends(deps.get_analytics_service),
):
    return [_link_info(link, analytics) for link in store.list_expired(limit)]


@router.post("/cleanup", response_model=dict)
def cleanup_expired_endpoint(store: ShortLinkStore = Depends(deps.get_store)):
    deleted = store.delete_expired()
    logger.info(f"Admin cleanup removed {deleted} expired links")
    return {"deleted": deleted}


@router.post("/disable/{short_code}", response_model=dict)
def disable_link_endpoint(short_code: str, service: URLService = Depends(deps.get_url_service)):
    service.disable(short_code)
    return {"short_code": normalize_short_code(short_code), "status": "disabled"}


@router.get("/count", response_model=dict)
def count_links_endpoint(store: ShortLinkStore = Depends(deps.get_store)):
    return {"total_links": store.count_links()}


@router.get("/bloom", response_model=dict)
def membership_index_endpoint(index: MembershipIndex = Depends(deps.get_membership_index)):
    return {"available": index.is_available(), "capacity": index.capacity}
