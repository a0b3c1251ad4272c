"""
Bucket aggregation: folds order records into per-day revenue/count buckets.

Every function here is pure; the same records and override table always
produce the same buckets.
"""
from typing import Dict, Iterable, Mapping, Optional, Tuple

from sales_engine.business_time import BusinessCalendar
from sales_engine.models import DateBucket, OrderRecord, OverrideTable

Buckets = Dict[str, DateBucket]


def effective_date_key(
    record: OrderRecord,
    overrides: Optional[OverrideTable],
    calendar: BusinessCalendar,
) -> Optional[str]:
    """Bucket key of an order: its manual override, else its created_at day."""
    if overrides is not None:
        override = overrides.get(record.id)
        if override:
            return override
    if record.created_at is None:
        return None
    return calendar.to_bucket_key(record.created_at)


def revenue_contribution(record: OrderRecord) -> Optional[float]:
    """
    Revenue an order adds to its bucket, in currency units.

    Returns None when the order must not be counted at all (a numeric
    amount of zero or less). A missing amount column, a null or an
    unparseable amount counts the order with zero revenue.
    """
    if not record.has_amount_field:
        return 0.0
    value = record.amount_value
    if value is None:
        return 0.0
    if value <= 0:
        return None
    return value / 100


def aggregate(
    records: Iterable[OrderRecord],
    overrides: Optional[OverrideTable] = None,
    calendar: Optional[BusinessCalendar] = None,
) -> Buckets:
    """
    Group paid orders into day buckets.

    Args:
        records: Orders to fold
        overrides: Manual date corrections
        calendar: Business calendar used for created_at conversion

    Returns:
        Mapping of YYYY-MM-DD to DateBucket, with no empty buckets
    """
    calendar = calendar or BusinessCalendar()
    buckets: Buckets = {}

    for record in records:
        if not record.is_paid:
            continue
        key = effective_date_key(record, overrides, calendar)
        if key is None:
            continue
        revenue = revenue_contribution(record)
        if revenue is None:
            continue
        buckets.setdefault(key, DateBucket()).add(revenue)

    return buckets


def merge_additive(base: Mapping[str, DateBucket], incoming: Mapping[str, DateBucket]) -> Buckets:
    """Sum two bucket maps key by key; inputs are left untouched."""
    merged = {key: bucket.copy() for key, bucket in base.items()}
    for key, bucket in incoming.items():
        if key in merged:
            merged[key].merge(bucket)
        else:
            merged[key] = bucket.copy()
    return merged


def restrict_to_range(
    buckets: Mapping[str, DateBucket],
    start_key: Optional[str],
    end_key: str,
) -> Buckets:
    """Buckets whose key lies in [start_key, end_key]; None start is unbounded."""
    return {
        key: bucket for key, bucket in buckets.items()
        if (start_key is None or key >= start_key) and key <= end_key
    }


def prune_before(buckets: Mapping[str, DateBucket], horizon_key: str) -> Buckets:
    """Drop buckets older than the horizon."""
    return {key: bucket for key, bucket in buckets.items() if key >= horizon_key}


def totals(buckets: Mapping[str, DateBucket]) -> Tuple[float, int]:
    """Total (revenue, count) across buckets."""
    revenue = sum(bucket.revenue for bucket in buckets.values())
    count = sum(bucket.count for bucket in buckets.values())
    return round(revenue, 2), count
