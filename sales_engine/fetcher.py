"""
Paginated record fetcher.

Retrieves every order matching a filter and a created_at range in strictly
sequential pages ordered by `created_at`. The exact-count endpoint is asked
first but only for information: hosted stores cap or estimate counts, so a
count below the trust threshold never short-circuits pagination.

Failure policy:
- MissingColumnError: drop the column and retry the same offset
- SourceUnavailableError: stop, return what was accumulated
- Connection/data errors (after transport retries): stop, return partial rows
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set, Tuple

from sales_engine.config import config
from sales_engine.exceptions import (
    MissingColumnError,
    RecordSourceError,
    SourceUnavailableError,
)
from sales_engine.models import OrderRecord
from sales_engine.observability import get_logger, Timer
from sales_engine.schema import SchemaCapabilities
from sales_engine.source import OrderFilter, RecordQuery, RecordSource

logger = get_logger(__name__)

CHART_MAX_RECORDS = config.fetch.chart_max_records
EXPORT_MAX_RECORDS = config.fetch.export_max_records

# PostgREST puts `id=in.(...)` in the URL; keep it well under proxy limits
ID_BATCH_SIZE = 100

DateRange = Tuple[Optional[datetime], Optional[datetime]]


@dataclass
class FetchResult:
    """Outcome of one paginated fetch."""
    records: List[OrderRecord] = field(default_factory=list)
    capabilities: SchemaCapabilities = field(default_factory=SchemaCapabilities)
    pages: int = 0
    exact_count: Optional[int] = None
    truncated: bool = False
    partial: bool = False
    source_unavailable: bool = False

    def __len__(self) -> int:
        return len(self.records)

    def extend(self, other: "FetchResult") -> None:
        """Fold another result into this one, skipping ids already present."""
        seen = {r.id for r in self.records}
        self.records.extend(r for r in other.records if r.id not in seen)
        self.pages += other.pages
        self.truncated = self.truncated or other.truncated
        self.partial = self.partial or other.partial
        self.source_unavailable = self.source_unavailable or other.source_unavailable
        self.capabilities = other.capabilities


class PaginatedFetcher:
    """
    Sequential range-paginated reader over a RecordSource.

    Usage:
        fetcher = PaginatedFetcher(source)
        result = await fetcher.fetch(OrderFilter(), (start_utc, end_utc), capabilities)
        for record in result.records:
            ...
    """

    def __init__(
        self,
        source: RecordSource,
        page_size: int = None,
        count_trust_threshold: int = None,
    ):
        """
        Args:
            source: Record source to read from
            page_size: Rows per page (defaults to 1000)
            count_trust_threshold: Exact counts below this are not trusted
        """
        self.source = source
        self.page_size = page_size or config.fetch.page_size
        self.count_trust_threshold = (
            count_trust_threshold
            if count_trust_threshold is not None
            else config.fetch.count_trust_threshold
        )

    def is_trusted(self, exact_count: Optional[int]) -> bool:
        """Whether an exact count is large enough to be believed on its own."""
        return bool(exact_count) and exact_count >= self.count_trust_threshold

    async def exact_count(self, query: RecordQuery) -> Optional[int]:
        """Ask the source for an exact count; any failure means "unknown"."""
        try:
            return await self.source.count(query)
        except RecordSourceError as e:
            logger.debug(f"Exact count unavailable: {e}")
            return None

    async def fetch(
        self,
        order_filter: Optional[OrderFilter] = None,
        date_range: Optional[DateRange] = None,
        capabilities: Optional[SchemaCapabilities] = None,
        max_records: int = CHART_MAX_RECORDS,
    ) -> FetchResult:
        """
        Fetch all matching records.

        Args:
            order_filter: Server-side equality filters (default: paid orders)
            date_range: UTC [from, before) bounds on created_at; either may be None
            capabilities: Negotiated column set to select
            max_records: Hard cap; reaching it marks the result truncated

        Returns:
            FetchResult; never raises for source failures
        """
        capabilities = capabilities or SchemaCapabilities()
        if not capabilities.available:
            return FetchResult(capabilities=capabilities, source_unavailable=True)

        query = self._build_query(order_filter, date_range, capabilities)
        with Timer("fetch_orders", logger, warn_threshold_ms=10_000):
            exact = await self.exact_count(query)
            result = await self._paginate(query, capabilities, max_records)
        result.exact_count = exact

        if exact is not None and not self.is_trusted(exact) and exact != len(result.records):
            logger.debug(
                f"Exact count {exact} differs from paginated total {len(result.records)}"
            )
        if result.truncated:
            logger.warning(
                f"Fetch truncated at {max_records} records",
                extra={"max_records": max_records, "pages": result.pages},
            )
        return result

    async def fetch_by_ids(
        self,
        ids: Iterable[str],
        capabilities: Optional[SchemaCapabilities] = None,
        order_filter: Optional[OrderFilter] = None,
    ) -> FetchResult:
        """Fetch specific orders by id, in batches."""
        capabilities = capabilities or SchemaCapabilities()
        ids = list(dict.fromkeys(str(i) for i in ids))
        result = FetchResult(capabilities=capabilities)
        if not ids:
            return result
        if not capabilities.available:
            result.source_unavailable = True
            return result

        for start in range(0, len(ids), ID_BATCH_SIZE):
            batch = tuple(ids[start:start + ID_BATCH_SIZE])
            query = RecordQuery(
                columns=result.capabilities.columns,
                filters=order_filter or OrderFilter(),
                ids=batch,
            )
            batch_result = await self._paginate(query, result.capabilities, len(batch))
            result.extend(batch_result)
            if batch_result.source_unavailable:
                break
        return result

    async def count(
        self,
        order_filter: Optional[OrderFilter] = None,
        date_range: Optional[DateRange] = None,
        predicate: Optional[Callable[[OrderRecord], bool]] = None,
        capabilities: Optional[SchemaCapabilities] = None,
        max_records: int = EXPORT_MAX_RECORDS,
    ) -> int:
        """
        Count matching records.

        A trusted exact count is returned directly when no client-side
        predicate is involved; otherwise rows are counted by pagination.
        """
        capabilities = capabilities or SchemaCapabilities()
        if not capabilities.available:
            return 0

        query = self._build_query(order_filter, date_range, capabilities)
        if predicate is None:
            exact = await self.exact_count(query)
            if self.is_trusted(exact):
                return exact

        result = await self._paginate(query, capabilities, max_records)
        if predicate is None:
            return len(result.records)
        return sum(1 for record in result.records if predicate(record))

    def _build_query(
        self,
        order_filter: Optional[OrderFilter],
        date_range: Optional[DateRange],
        capabilities: SchemaCapabilities,
    ) -> RecordQuery:
        created_from, created_before = date_range or (None, None)
        return RecordQuery(
            columns=capabilities.columns,
            filters=order_filter or OrderFilter(),
            created_from=created_from,
            created_before=created_before,
        )

    async def _paginate(
        self,
        query: RecordQuery,
        capabilities: SchemaCapabilities,
        max_records: int,
    ) -> FetchResult:
        result = FetchResult(capabilities=capabilities)
        seen: Set[str] = set()
        offset = 0

        while True:
            page_query = query.with_columns(result.capabilities.columns).page(offset, self.page_size)
            try:
                rows = await self.source.select(page_query)
            except MissingColumnError as e:
                column = result.capabilities.droppable_column(e.column)
                if column is None:
                    logger.warning("Mandatory order columns missing, stopping fetch")
                    result.partial = True
                    result.source_unavailable = True
                    break
                logger.debug(f"Column '{column}' disappeared at offset {offset}, retrying page")
                result.capabilities = result.capabilities.without(column)
                continue
            except SourceUnavailableError as e:
                logger.warning(f"Orders relation unavailable: {e}")
                result.partial = bool(result.records)
                result.source_unavailable = True
                break
            except RecordSourceError as e:
                logger.warning(
                    f"Fetch stopped at offset {offset}: {e}",
                    extra={"offset": offset, "pages": result.pages},
                )
                result.partial = True
                break

            result.pages += 1
            for row in rows:
                record = OrderRecord.from_row(row)
                if record.id:
                    if record.id in seen:
                        continue
                    seen.add(record.id)
                result.records.append(record)

            if len(result.records) >= max_records:
                result.truncated = (
                    len(result.records) > max_records or len(rows) >= self.page_size
                )
                del result.records[max_records:]
                break
            if len(rows) < self.page_size:
                break
            offset += self.page_size

        return result


__all__ = [
    "CHART_MAX_RECORDS",
    "EXPORT_MAX_RECORDS",
    "FetchResult",
    "PaginatedFetcher",
]
