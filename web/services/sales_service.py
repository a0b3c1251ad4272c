"""
Process-wide sales engine and stats service used by the API routes.

Built once on startup from configuration; tests install their own
instances with configure().
"""
from typing import Optional

from sales_engine.business_time import BusinessCalendar
from sales_engine.cache_store import JsonFileCacheStore
from sales_engine.config import config
from sales_engine.dashboard_stats import DashboardStatsService
from sales_engine.engine import IncrementalSalesEngine
from sales_engine.fetcher import PaginatedFetcher
from sales_engine.models import OverrideTable
from sales_engine.observability import get_logger
from sales_engine.schema import SchemaProbe
from sales_engine.source import PostgrestRecordSource

logger = get_logger(__name__)

_source: Optional[PostgrestRecordSource] = None
_engine: Optional[IncrementalSalesEngine] = None
_stats_service: Optional[DashboardStatsService] = None


def load_overrides(path: Optional[str] = None) -> OverrideTable:
    """Manual date overrides from the configured JSON file (empty if unset)."""
    path = path or config.overrides.path
    if not path:
        return OverrideTable()
    try:
        table = OverrideTable.from_json_file(path)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load manual overrides from {path}: {e}")
        return OverrideTable()
    logger.info(f"Loaded {len(table)} manual order date overrides")
    return table


async def init_services() -> None:
    """Create the record source, engine and stats service from configuration."""
    global _source, _engine, _stats_service

    source = PostgrestRecordSource()
    await source.connect()

    calendar = BusinessCalendar()
    probe = SchemaProbe(source)
    fetcher = PaginatedFetcher(source)

    _source = source
    _engine = IncrementalSalesEngine(
        source,
        JsonFileCacheStore(),
        calendar=calendar,
        overrides=load_overrides(),
        probe=probe,
        fetcher=fetcher,
    )
    _stats_service = DashboardStatsService(source, fetcher=fetcher, probe=probe, calendar=calendar)
    logger.info(f"Sales engine ready (table={source.table}, tz={calendar.timezone_name})")


def configure(
    engine: IncrementalSalesEngine,
    stats_service: Optional[DashboardStatsService] = None,
) -> None:
    """Install pre-built services (used by tests and scripts)."""
    global _engine, _stats_service
    _engine = engine
    _stats_service = stats_service


def is_configured() -> bool:
    return _engine is not None


def get_engine() -> IncrementalSalesEngine:
    if _engine is None:
        raise RuntimeError("Sales engine not initialized")
    return _engine


def get_stats_service() -> DashboardStatsService:
    if _stats_service is None:
        raise RuntimeError("Dashboard stats service not initialized")
    return _stats_service


def get_source() -> Optional[PostgrestRecordSource]:
    return _source


async def close_services() -> None:
    """Wait for background refreshes and close the HTTP client."""
    global _source, _engine, _stats_service
    if _engine is not None:
        await _engine.wait_for_background()
    if _source is not None:
        await _source.close()
    _source = None
    _engine = None
    _stats_service = None
