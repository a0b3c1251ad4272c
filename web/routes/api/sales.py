"""Sales chart and sales cache endpoints."""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from sales_engine.exceptions import CacheStoreError
from web.config import CURRENCY, DEFAULT_RATE_LIMIT
from web.schemas import CacheClearedResponse, CacheStatusResponse, SalesChartResponse
from ._deps import (
    limiter, get_logger, sales_service,
    validate_window, validate_selected_month,
    ValidationError,
)

router = APIRouter(prefix="/sales", tags=["sales"])
logger = get_logger(__name__)


@router.get("/chart", response_model=SalesChartResponse)
@limiter.limit(DEFAULT_RATE_LIMIT)
async def get_sales_chart(
    request: Request,
    window: str = Query("30d", description="7d, 30d, 90d, month or all"),
    month: Optional[str] = Query(None, description="YYYY-MM, for the month window"),
    stale: bool = Query(True, description="Serve a same-day cached series while refreshing"),
):
    """Revenue and paid-order chart for one window."""
    try:
        kind = validate_window(window)
        if month:
            validate_selected_month(month)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    engine = sales_service.get_engine()
    if stale:
        series, is_stale = await engine.get_chart_series_swr(kind, month)
    else:
        series, is_stale = await engine.get_chart_series(kind, month), False

    revenue = round(sum(point.revenue for point in series), 2)
    orders = sum(point.count for point in series)

    return {
        "window": kind.value,
        "month": month,
        "stale": is_stale,
        "currency": CURRENCY,
        "totalRevenue": revenue,
        "totalOrders": orders,
        "points": [point.to_dict() for point in series],
    }


@router.get("/cache", response_model=CacheStatusResponse)
@limiter.limit(DEFAULT_RATE_LIMIT)
async def get_sales_cache_status(request: Request):
    """Persisted cache status and read-cycle counters."""
    return sales_service.get_engine().status()


@router.delete("/cache", response_model=CacheClearedResponse)
@limiter.limit("5/minute")
async def clear_sales_cache(request: Request):
    """Drop the persisted cache; the next chart read starts cold."""
    engine = sales_service.get_engine()
    try:
        engine.clear_cache()
    except CacheStoreError as e:
        logger.error(f"Failed to clear sales cache: {e}")
        raise HTTPException(status_code=500, detail="Failed to clear sales cache")
    return {"cleared": True, "cache_key": engine.settings.cache_key}
