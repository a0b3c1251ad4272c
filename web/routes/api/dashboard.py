"""Dashboard headline stats endpoint."""
from fastapi import APIRouter, Request

from web.config import CURRENCY, DEFAULT_RATE_LIMIT
from web.schemas import DashboardStatsResponse
from ._deps import limiter, get_logger, sales_service

router = APIRouter(prefix="/dashboard", tags=["dashboard"])
logger = get_logger(__name__)


@router.get("/stats", response_model=DashboardStatsResponse)
@limiter.limit(DEFAULT_RATE_LIMIT)
async def get_dashboard_stats(request: Request):
    """Total, paid and provider orders plus provider revenue."""
    stats = await sales_service.get_stats_service().get_stats()
    return {**stats.to_dict(), "currency": CURRENCY}
