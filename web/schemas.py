"""
Pydantic response models for API endpoints.

Provides type-safe response models with automatic validation and documentation.
"""
from typing import Optional, List
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class SourceStatus(BaseModel):
    """Record source connectivity."""
    status: str = Field(description="configured, circuit_open or not_configured")
    table: Optional[str] = None
    circuit_state: Optional[str] = None
    failures: Optional[int] = Field(None, description="Consecutive failed requests")
    retry_after: Optional[float] = Field(None, description="Seconds until an open circuit admits a trial request")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Service status: healthy or degraded")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    source: SourceStatus
    cache_last_update: Optional[str] = Field(None, description="Business date of the last cache write")


# ═══════════════════════════════════════════════════════════════════════════════
# SALES CHART
# ═══════════════════════════════════════════════════════════════════════════════

class ChartPointResponse(BaseModel):
    """One chart point (a day, or a month for the all-time window)."""
    dateKey: str = Field(description="YYYY-MM-DD (first day of month for 'all')")
    date: str = Field(description="Axis label, e.g. 03/11 or Nov/2024")
    fullDate: str = Field(description="Tooltip label, e.g. 03 de nov")
    revenue: float = Field(description="Revenue in BRL")
    count: int = Field(description="Number of paid orders")


class SalesChartResponse(BaseModel):
    """Sales chart series for one window."""
    window: str
    month: Optional[str] = Field(None, description="Selected month (YYYY-MM) for the month window")
    stale: bool = Field(description="True when served from cache while a refresh runs")
    currency: str
    totalRevenue: float
    totalOrders: int
    points: List[ChartPointResponse]


class CycleStatsResponse(BaseModel):
    """Read-cycle counters since startup."""
    cycles: int
    historical_fetches: int
    today_fetches: int
    rows_scanned: int
    persist_failures: int
    last_reason: Optional[str] = None


class CacheStatusResponse(BaseModel):
    """Persisted sales cache status."""
    cache_key: str
    last_update: Optional[str] = None
    covered_from: Optional[str] = None
    buckets: int
    revenue: float
    orders: int
    stats: CycleStatsResponse


class CacheClearedResponse(BaseModel):
    """Result of clearing the sales cache."""
    cleared: bool
    cache_key: str


# ═══════════════════════════════════════════════════════════════════════════════
# DASHBOARD STATS
# ═══════════════════════════════════════════════════════════════════════════════

class DashboardStatsResponse(BaseModel):
    """Headline order and revenue counters."""
    totalOrders: int = Field(description="All orders, any status")
    paidOrders: int = Field(description="Orders with status 'paid'")
    providerOrders: int = Field(description="Paid orders from the payment provider")
    providerRevenue: float = Field(description="Revenue of provider orders in BRL")
    currency: str
