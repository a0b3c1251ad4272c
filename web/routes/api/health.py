"""Health check endpoint."""
import time

from fastapi import APIRouter, Request

from sales_engine.observability import get_cycle_id
from web.config import HEALTH_RATE_LIMIT, VERSION
from web.schemas import HealthResponse
from ._deps import limiter, get_logger, sales_service, START_TIME

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
@limiter.limit(HEALTH_RATE_LIMIT)
async def health_check(request: Request):
    """Health check endpoint for Docker/load balancer monitoring."""
    uptime_seconds = int(time.time() - START_TIME)

    source = sales_service.get_source()
    if source is None:
        source_status = {"status": "not_configured"}
    else:
        breaker = source.circuit_breaker.snapshot()
        source_status = {
            "status": "circuit_open" if breaker["state"] == "open" else "configured",
            "table": source.table,
            "circuit_state": breaker["state"],
            "failures": breaker["failures"],
            "retry_after": breaker["retry_after"],
        }

    cache_last_update = None
    if sales_service.is_configured():
        cache_last_update = sales_service.get_engine().load_cache().last_update_key

    degraded = source_status["status"] == "circuit_open" or not sales_service.is_configured()

    return {
        "status": "degraded" if degraded else "healthy",
        "version": VERSION,
        "uptime_seconds": uptime_seconds,
        "correlation_id": get_cycle_id(),
        "source": source_status,
        "cache_last_update": cache_last_update,
    }
