"""
Headline dashboard counters and the paid-orders export.

Counts use the exact-count endpoint only when it is large enough to be
trusted; anything smaller, or anything needing a client-side provider
filter, is counted by paginating.
"""
from datetime import date
from typing import Optional

from sales_engine.aggregator import revenue_contribution
from sales_engine.business_time import BusinessCalendar
from sales_engine.fetcher import EXPORT_MAX_RECORDS, FetchResult, PaginatedFetcher
from sales_engine.models import PAID_STATUS, DashboardStats, OrderRecord
from sales_engine.observability import get_logger
from sales_engine.schema import (
    AMOUNT_COLUMN,
    MANDATORY_COLUMNS,
    PROVIDER_COLUMNS,
    SchemaCapabilities,
    SchemaProbe,
)
from sales_engine.source import OrderFilter, RecordSource

logger = get_logger(__name__)

DEFAULT_PROVIDER = "hotmart"

STATS_COLUMNS = MANDATORY_COLUMNS + PROVIDER_COLUMNS + (AMOUNT_COLUMN,)
EXPORT_COLUMNS = MANDATORY_COLUMNS + PROVIDER_COLUMNS + (AMOUNT_COLUMN, "plan", "paid_at")


def is_provider_order(record: OrderRecord, provider: str = DEFAULT_PROVIDER) -> bool:
    """
    Whether an order belongs to the payment provider.

    Orders with no provider information at all predate the provider
    columns and are attributed to the default provider.
    """
    if record.payment_provider == provider or record.provider == provider:
        return True
    return not record.payment_provider and not record.provider


class DashboardStatsService:
    """
    Order and revenue counters for the dashboard tiles.

    Usage:
        service = DashboardStatsService(source)
        stats = await service.get_stats()
    """

    def __init__(
        self,
        source: RecordSource,
        fetcher: Optional[PaginatedFetcher] = None,
        probe: Optional[SchemaProbe] = None,
        calendar: Optional[BusinessCalendar] = None,
    ):
        self.source = source
        self.fetcher = fetcher or PaginatedFetcher(source)
        self.probe = probe or SchemaProbe(source)
        self.calendar = calendar or BusinessCalendar()

    async def _capabilities(self, columns, order_filter: OrderFilter) -> SchemaCapabilities:
        return await self.probe.probe(columns, order_filter)

    async def count_orders(
        self,
        status: Optional[str] = None,
        plan: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> int:
        """
        Count orders, optionally by status, plan and provider.

        The provider filter is applied only when the provider columns exist;
        otherwise every order counts.
        """
        order_filter = OrderFilter(status=status, plan=plan)
        capabilities = await self._capabilities(STATS_COLUMNS, order_filter)
        if not capabilities.available:
            return 0

        predicate = None
        if provider and capabilities.has_provider:
            def predicate(record: OrderRecord) -> bool:
                return is_provider_order(record, provider)

        return await self.fetcher.count(
            order_filter,
            predicate=predicate,
            capabilities=capabilities,
        )

    async def total_revenue(
        self,
        plan: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> float:
        """Revenue of paid orders in currency units; 0 without an amount column."""
        order_filter = OrderFilter(status=PAID_STATUS, plan=plan)
        capabilities = await self._capabilities(STATS_COLUMNS, order_filter)
        if not capabilities.available or not capabilities.has_amount:
            return 0.0

        result = await self.fetcher.fetch(
            order_filter,
            capabilities=capabilities,
            max_records=EXPORT_MAX_RECORDS,
        )
        if not result.capabilities.has_amount:
            return 0.0

        filter_provider = provider and result.capabilities.has_provider
        revenue = 0.0
        for record in result.records:
            if filter_provider and not is_provider_order(record, provider):
                continue
            contribution = revenue_contribution(record)
            if contribution:
                revenue += contribution
        return round(revenue, 2)

    async def get_stats(self, provider: str = DEFAULT_PROVIDER) -> DashboardStats:
        """Total, paid and provider order counts plus provider revenue."""
        total_orders = await self.count_orders()
        paid_orders = await self.count_orders(status=PAID_STATUS)
        provider_orders = await self.count_orders(status=PAID_STATUS, provider=provider)
        provider_revenue = await self.total_revenue(provider=provider)

        logger.debug(
            "Dashboard stats computed",
            extra={"total": total_orders, "paid": paid_orders, "provider": provider_orders},
        )
        return DashboardStats(
            total_orders=total_orders,
            paid_orders=paid_orders,
            provider_orders=provider_orders,
            provider_revenue=provider_revenue,
        )

    async def export_paid_orders(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        max_records: int = EXPORT_MAX_RECORDS,
    ) -> FetchResult:
        """Paid orders created between two business dates (inclusive), for CSV export."""
        order_filter = OrderFilter(status=PAID_STATUS)
        capabilities = await self._capabilities(EXPORT_COLUMNS, order_filter)

        if end is not None:
            date_range = self.calendar.range_bounds(start, end)
        elif start is not None:
            date_range = (self.calendar.start_of_day(start), None)
        else:
            date_range = None

        result = await self.fetcher.fetch(
            order_filter,
            date_range,
            capabilities,
            max_records=max_records,
        )
        logger.info(
            f"Exporting {len(result.records)} paid orders",
            extra={"truncated": result.truncated, "partial": result.partial},
        )
        return result
