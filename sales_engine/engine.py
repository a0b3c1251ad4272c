"""
Incremental sales engine.

Keeps a persisted per-day bucket map so that a dashboard read usually costs
one "today only" fetch instead of a scan of the whole chart window.

One read cycle:
    1. Load the blob. Buckets before today are historical; a stored bucket
       for today is kept only as a fallback for a failed today fetch.
    2. Decide what history to fetch:
         cold    - nothing is covered yet
         gap     - 30d window and no historical bucket on/after the epoch
         extend  - the window starts before the covered range
         catchup - days between the last update and yesterday are missing
       "extend" and "catchup" can both apply in one cycle. Windows that start
       before the retention horizon ("all", older months) extend again on
       every cycle, because only the horizon onwards is kept in the blob.
    3. Fetch and aggregate that range, merged additively.
    4. Fetch exactly today, replacing today's bucket.
    5. Format the chart from the combined map, then prune to the retention
       horizon and persist (full blob, then a 30-day subset, then nothing).

Every stored bucket key is >= coveredFrom, so a historical fetch
(always strictly below coveredFrom, or into an empty gap) never overlaps
buckets that are already stored.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Set, Tuple, Union

from sales_engine.aggregator import (
    Buckets,
    aggregate,
    merge_additive,
    prune_before,
    restrict_to_range,
    totals,
)
from sales_engine.business_time import BusinessCalendar, format_date_key, parse_date_key
from sales_engine.cache_store import CacheStore
from sales_engine.config import config
from sales_engine.exceptions import CacheStoreError
from sales_engine.fetcher import FetchResult, PaginatedFetcher
from sales_engine.formatter import format_chart_series, window_bounds
from sales_engine.models import ChartPoint, OverrideTable, SalesCache, WindowKind
from sales_engine.observability import cycle_context, generate_cycle_id, get_logger, Timer
from sales_engine.schema import DEFAULT_CHART_COLUMNS, SchemaCapabilities, SchemaProbe
from sales_engine.source import OrderFilter, RecordSource
from sales_engine.validators import validate_window

logger = get_logger(__name__)

REASON_COLD = "cold"
REASON_GAP = "gap"
REASON_EXTEND = "extend"
REASON_CATCHUP = "catchup"


@dataclass(frozen=True)
class EngineSettings:
    """Tunables of the incremental cache."""
    cache_key: str = config.cache.cache_key
    retention_days: int = config.cache.retention_days
    fallback_retention_days: int = config.cache.fallback_retention_days
    max_records: int = config.fetch.chart_max_records


@dataclass
class CycleStats:
    """Counters across read cycles, exposed on the cache status endpoint."""
    cycles: int = 0
    historical_fetches: int = 0
    today_fetches: int = 0
    rows_scanned: int = 0
    persist_failures: int = 0
    last_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "cycles": self.cycles,
            "historical_fetches": self.historical_fetches,
            "today_fetches": self.today_fetches,
            "rows_scanned": self.rows_scanned,
            "persist_failures": self.persist_failures,
            "last_reason": self.last_reason,
        }


@dataclass
class CycleResult:
    """Everything one read cycle produced."""
    series: List[ChartPoint]
    buckets: Buckets
    today_key: str
    cycle_id: str
    historical_reason: Optional[str] = None
    persisted: Optional[str] = None  # "full", "fallback" or None
    today_failed: bool = False
    source_unavailable: bool = False


@dataclass
class _Collected:
    buckets: Buckets = field(default_factory=dict)
    rows: int = 0
    complete: bool = True
    source_unavailable: bool = False


class IncrementalSalesEngine:
    """
    Chart data provider backed by the persisted incremental cache.

    Usage:
        engine = IncrementalSalesEngine(source, JsonFileCacheStore())
        series = await engine.get_chart_series("30d")
        series, stale = await engine.get_chart_series_swr("7d")
    """

    def __init__(
        self,
        source: RecordSource,
        store: CacheStore,
        calendar: Optional[BusinessCalendar] = None,
        overrides: Optional[OverrideTable] = None,
        probe: Optional[SchemaProbe] = None,
        fetcher: Optional[PaginatedFetcher] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.source = source
        self.store = store
        self.calendar = calendar or BusinessCalendar()
        self.overrides = overrides or OverrideTable()
        self.probe = probe or SchemaProbe(source)
        self.fetcher = fetcher or PaginatedFetcher(source)
        self.settings = settings or EngineSettings()
        self.stats = CycleStats()
        self._capabilities: Optional[SchemaCapabilities] = None
        self._background: Set[asyncio.Task] = set()

    # ─── Cache blob ──────────────────────────────────────────────────────────

    def load_cache(self) -> SalesCache:
        """Read and decode the persisted blob; unreadable blobs are empty."""
        try:
            text = self.store.get(self.settings.cache_key)
        except CacheStoreError as e:
            logger.warning(f"Sales cache unreadable: {e}")
            return SalesCache()
        return SalesCache.from_json(text)

    def clear_cache(self) -> None:
        """Drop the persisted blob; the next cycle starts cold."""
        self.store.clear(self.settings.cache_key)
        logger.info("Sales cache cleared")

    def retention_horizon(self, today: date, days: Optional[int] = None) -> date:
        """
        Oldest day kept in the persisted blob.

        The horizon never cuts into the fixed 30d window, which can reach
        back further than the retention period late in the year.
        """
        days = days or self.settings.retention_days
        return min(today - timedelta(days=days - 1), self.calendar.chart_epoch(today))

    # ─── Read cycle ──────────────────────────────────────────────────────────

    async def capabilities(self) -> SchemaCapabilities:
        """Column set negotiated once per session."""
        if self._capabilities is None or not self._capabilities.available:
            capabilities = await self.probe.probe(DEFAULT_CHART_COLUMNS)
            if not capabilities.available:
                return capabilities
            self._capabilities = capabilities
        return self._capabilities

    async def refresh(
        self,
        window: Union[WindowKind, str] = WindowKind.SINCE_EPOCH,
        selected_month: Optional[str] = None,
    ) -> CycleResult:
        """Run one read cycle and return the fresh chart series."""
        window = validate_window(window)
        today = self.calendar.today().as_date
        epoch = self.calendar.chart_epoch(today)
        window_start, _ = window_bounds(window, today, selected_month, epoch)

        with cycle_context() as cycle_id, Timer("sales_cycle", logger, warn_threshold_ms=5000):
            self.stats.cycles += 1
            today_key = format_date_key(today)
            yesterday = today - timedelta(days=1)

            cache = self.load_cache()
            historical = {
                key: bucket for key, bucket in cache.buckets.items() if key < today_key
            }
            fallback_today = (
                cache.buckets.get(today_key) if cache.last_update_key == today_key else None
            )
            covered_from = self._covered_from(cache, historical)

            capabilities = await self.capabilities()
            ranges = self._plan_historical(
                window, window_start, epoch, yesterday, cache, historical, covered_from
            )
            reason = ranges[0][0] if ranges else None
            if reason == REASON_COLD:
                historical, covered_from = {}, None
            self.stats.last_reason = reason
            historical_complete = True

            if ranges:
                for range_reason, fetch_start, fetch_end in ranges:
                    self.stats.historical_fetches += 1
                    logger.info(
                        f"Historical fetch ({range_reason}) {fetch_start}..{fetch_end}",
                        extra={"reason": range_reason, "window": window.value},
                    )
                    collected = await self._collect(fetch_start, fetch_end, capabilities)
                    historical = merge_additive(historical, collected.buckets)
                    historical_complete = historical_complete and collected.complete
                    if covered_from is None or fetch_start < parse_date_key(covered_from):
                        covered_from = format_date_key(fetch_start)
                if not historical_complete:
                    logger.warning(
                        "Historical fetch incomplete, cache will not be persisted",
                        extra={"reason": reason},
                    )

            self.stats.today_fetches += 1
            today_collected = await self._collect(today, today, capabilities)
            today_failed = not today_collected.complete
            today_bucket = today_collected.buckets.get(today_key)
            persist_today = True
            if today_failed:
                if fallback_today is not None:
                    logger.warning("Today fetch failed, keeping cached today bucket")
                    today_bucket = fallback_today
                else:
                    persist_today = False

            combined = dict(historical)
            if today_bucket is not None and not today_bucket.is_empty:
                combined[today_key] = today_bucket

            series = format_chart_series(combined, window, today, selected_month, epoch)

            persisted = None
            if historical_complete:
                to_persist = dict(historical)
                if persist_today and today_bucket is not None and not today_bucket.is_empty:
                    to_persist[today_key] = today_bucket
                persisted = self._persist(today, to_persist, covered_from)

            revenue, count = totals(combined)
            logger.info(
                "Sales cycle complete",
                extra={
                    "window": window.value,
                    "reason": reason,
                    "buckets": len(combined),
                    "revenue": revenue,
                    "orders": count,
                    "persisted": persisted,
                },
            )

            return CycleResult(
                series=series,
                buckets=combined,
                today_key=today_key,
                cycle_id=cycle_id,
                historical_reason=reason,
                persisted=persisted,
                today_failed=today_failed,
                source_unavailable=today_collected.source_unavailable or not capabilities.available,
            )

    def _covered_from(self, cache: SalesCache, historical: Buckets) -> Optional[str]:
        if cache.covered_from:
            return cache.covered_from
        # Blobs written before coveredFrom existed covered the whole retention
        # period of the day they were written
        if historical and cache.last_update_key:
            horizon = self.retention_horizon(parse_date_key(cache.last_update_key))
            return min(min(historical), format_date_key(horizon))
        return None

    def _plan_historical(
        self,
        window: WindowKind,
        window_start: date,
        epoch: date,
        yesterday: date,
        cache: SalesCache,
        historical: Buckets,
        covered_from: Optional[str],
    ) -> List[Tuple[str, date, date]]:
        """
        Decide the historical fetch of this cycle.

        Returns (reason, start, end) ranges; an "extend" and a "catchup" range
        can both be planned. Every range lies outside the stored buckets, so
        the fetched buckets can be merged additively.
        """
        if window_start > yesterday:
            return []
        if covered_from is None:
            return [(REASON_COLD, window_start, yesterday)]

        last_update = parse_date_key(cache.last_update_key)
        if last_update + timedelta(days=1) < window_start:
            # Too stale to be worth patching
            return [(REASON_COLD, window_start, yesterday)]

        if window == WindowKind.SINCE_EPOCH:
            epoch_key = format_date_key(epoch)
            if not any(key >= epoch_key for key in historical):
                return [(REASON_GAP, epoch, yesterday)]

        ranges: List[Tuple[str, date, date]] = []
        covered_start = parse_date_key(covered_from)
        if window_start < covered_start:
            ranges.append((REASON_EXTEND, window_start, min(yesterday, covered_start - timedelta(days=1))))
        if last_update < yesterday:
            ranges.append((REASON_CATCHUP, max(last_update + timedelta(days=1), covered_start), yesterday))
        return ranges

    async def _collect(
        self,
        start: date,
        end: date,
        capabilities: SchemaCapabilities,
    ) -> _Collected:
        """Fetch and aggregate the business days start..end inclusive."""
        collected = _Collected()
        if not capabilities.available:
            collected.source_unavailable = True
            collected.complete = False
            return collected

        result = await self.fetcher.fetch(
            OrderFilter(),
            self.calendar.range_bounds(start, end),
            capabilities,
            max_records=self.settings.max_records,
        )
        self._remember_capabilities(result)
        records = list(result.records)

        start_key, end_key = format_date_key(start), format_date_key(end)
        fetched_ids = {record.id for record in records}
        override_ids = [
            order_id for order_id in self.overrides.ids_dated_between(start_key, end_key)
            if order_id not in fetched_ids
        ]
        extra: Optional[FetchResult] = None
        if override_ids and not result.source_unavailable:
            extra = await self.fetcher.fetch_by_ids(override_ids, result.capabilities)
            records.extend(extra.records)

        collected.rows = len(records)
        self.stats.rows_scanned += collected.rows
        collected.source_unavailable = result.source_unavailable
        collected.complete = not result.partial and not (extra is not None and extra.partial)
        if result.source_unavailable and not result.records:
            # Unavailable means "zero results", but never overwrite good data with it
            collected.complete = False

        collected.buckets = restrict_to_range(
            aggregate(records, self.overrides, self.calendar), start_key, end_key
        )
        return collected

    def _remember_capabilities(self, result: FetchResult) -> None:
        if result.capabilities.available and self._capabilities is not None:
            if result.capabilities.columns != self._capabilities.columns:
                self._capabilities = result.capabilities

    def _persist(self, today: date, buckets: Buckets, covered_from: Optional[str]) -> Optional[str]:
        """Write the blob; fall back to a smaller subset, then give up quietly."""
        today_key = format_date_key(today)
        attempts = (
            ("full", self.retention_horizon(today)),
            ("fallback", today - timedelta(days=self.settings.fallback_retention_days - 1)),
        )
        for label, horizon in attempts:
            horizon_key = format_date_key(horizon)
            clamped_from = max(covered_from, horizon_key) if covered_from else None
            cache = SalesCache(
                last_update_key=today_key,
                buckets=prune_before(buckets, horizon_key),
                covered_from=clamped_from,
            )
            try:
                self.store.set(self.settings.cache_key, cache.to_json())
                return label
            except CacheStoreError as e:
                self.stats.persist_failures += 1
                logger.warning(f"Persisting sales cache ({label}) failed: {e}")

        logger.warning("Sales cache not persisted this cycle")
        return None

    # ─── Presentation contract ───────────────────────────────────────────────

    async def get_chart_series(
        self,
        window: Union[WindowKind, str] = WindowKind.SINCE_EPOCH,
        selected_month: Optional[str] = None,
    ) -> List[ChartPoint]:
        """
        Fresh chart series for a window.

        Never raises for data problems: the worst case is the cached (or
        an empty) series.
        """
        window = validate_window(window)
        try:
            result = await self.refresh(window, selected_month)
            return result.series
        except Exception as e:
            logger.error(f"Sales cycle failed: {e}", exc_info=True)
            return self._series_from_cache(window, selected_month, same_day_only=False)

    def get_cached_series(
        self,
        window: Union[WindowKind, str] = WindowKind.SINCE_EPOCH,
        selected_month: Optional[str] = None,
    ) -> Optional[List[ChartPoint]]:
        """Series from a same-day cache that covers the window, else None."""
        window = validate_window(window)
        return self._series_from_cache(window, selected_month, same_day_only=True)

    async def get_chart_series_swr(
        self,
        window: Union[WindowKind, str] = WindowKind.SINCE_EPOCH,
        selected_month: Optional[str] = None,
    ) -> Tuple[List[ChartPoint], bool]:
        """
        Stale-while-revalidate read.

        Returns (series, stale). With a usable same-day cache the cached
        series is returned at once and a refresh is scheduled in the
        background; otherwise a fresh cycle runs inline.
        """
        window = validate_window(window)
        cached = self.get_cached_series(window, selected_month)
        if cached is not None:
            self.schedule_refresh(window, selected_month)
            return cached, True
        return await self.get_chart_series(window, selected_month), False

    def schedule_refresh(
        self,
        window: Union[WindowKind, str] = WindowKind.SINCE_EPOCH,
        selected_month: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """Start a background cycle unless one is already running."""
        if any(not task.done() for task in self._background):
            return None
        task = asyncio.create_task(self._background_refresh(window, selected_month))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self) -> None:
        """Wait for scheduled refreshes (used on shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _background_refresh(self, window: Union[WindowKind, str], selected_month: Optional[str]) -> None:
        with cycle_context(generate_cycle_id()):
            try:
                await self.refresh(window, selected_month)
            except Exception as e:
                logger.error(f"Background sales refresh failed: {e}", exc_info=True)

    def _series_from_cache(
        self,
        window: WindowKind,
        selected_month: Optional[str],
        same_day_only: bool,
    ) -> Optional[List[ChartPoint]]:
        today = self.calendar.today().as_date
        today_key = format_date_key(today)
        epoch = self.calendar.chart_epoch(today)
        cache = self.load_cache()

        if same_day_only:
            if cache.last_update_key != today_key:
                return None
            window_start, _ = window_bounds(window, today, selected_month, epoch)
            covered_from = self._covered_from(cache, cache.buckets)
            if covered_from is None or window_start < parse_date_key(covered_from):
                return None
            buckets = cache.buckets
        else:
            buckets = {key: b for key, b in cache.buckets.items()
                       if key < today_key or cache.last_update_key == today_key}

        return format_chart_series(buckets, window, today, selected_month, epoch)

    def status(self) -> Dict[str, object]:
        """Snapshot of the persisted cache and cycle counters."""
        cache = self.load_cache()
        revenue, count = totals(cache.buckets)
        return {
            "cache_key": self.settings.cache_key,
            "last_update": cache.last_update_key,
            "covered_from": cache.covered_from,
            "buckets": len(cache.buckets),
            "revenue": revenue,
            "orders": count,
            "stats": self.stats.to_dict(),
        }
