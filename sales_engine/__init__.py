"""
Sales aggregation and incremental caching engine for the songsales dashboard.

This package contains the logic behind the admin revenue chart:
- config: Centralized configuration
- exceptions: Custom exception hierarchy
- source: Record source protocol and the PostgREST client
- schema: Optional-column capability negotiation
- fetcher: Sequential paginated fetching
- aggregator: Per-day revenue/count buckets
- engine: Persistent incremental cache and chart read cycle
- formatter: Chart series per window
"""

# Import in dependency order
from sales_engine.exceptions import (
    RecordSourceError,
    MissingColumnError,
    SourceUnavailableError,
    MissingRelationError,
    PermissionDeniedError,
    RecordSourceConnectionError,
    RecordSourceDataError,
    CacheStoreError,
    CacheQuotaExceededError,
    ValidationError,
)

from sales_engine.config import config

from sales_engine.models import (
    ChartPoint,
    DashboardStats,
    DateBucket,
    OrderRecord,
    OverrideTable,
    SalesCache,
    WindowKind,
)

from sales_engine.business_time import BusinessCalendar

from sales_engine.source import (
    OrderFilter,
    PostgrestRecordSource,
    RecordQuery,
    RecordSource,
)

from sales_engine.schema import SchemaCapabilities, SchemaProbe

from sales_engine.fetcher import FetchResult, PaginatedFetcher

from sales_engine.aggregator import aggregate

from sales_engine.formatter import format_chart_series

from sales_engine.cache_store import (
    CacheStore,
    InMemoryCacheStore,
    JsonFileCacheStore,
)

from sales_engine.engine import IncrementalSalesEngine

from sales_engine.dashboard_stats import DashboardStatsService

__all__ = [
    # Exceptions
    "RecordSourceError",
    "MissingColumnError",
    "SourceUnavailableError",
    "MissingRelationError",
    "PermissionDeniedError",
    "RecordSourceConnectionError",
    "RecordSourceDataError",
    "CacheStoreError",
    "CacheQuotaExceededError",
    "ValidationError",
    # Config
    "config",
    # Models
    "ChartPoint",
    "DashboardStats",
    "DateBucket",
    "OrderRecord",
    "OverrideTable",
    "SalesCache",
    "WindowKind",
    # Engine
    "BusinessCalendar",
    "OrderFilter",
    "PostgrestRecordSource",
    "RecordQuery",
    "RecordSource",
    "SchemaCapabilities",
    "SchemaProbe",
    "FetchResult",
    "PaginatedFetcher",
    "aggregate",
    "format_chart_series",
    "CacheStore",
    "InMemoryCacheStore",
    "JsonFileCacheStore",
    "IncrementalSalesEngine",
    "DashboardStatsService",
]
