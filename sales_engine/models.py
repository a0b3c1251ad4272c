"""
Domain models for the sales engine.

Provides type-safe dataclasses for order rows, manual date overrides,
daily buckets, the persisted cache blob and chart points.
"""
import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sales_engine.business_time import is_date_key, parse_timestamp
from sales_engine.observability import get_logger

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class WindowKind(str, Enum):
    """Chart windows supported by the dashboard."""
    LAST_7_DAYS = "7d"
    SINCE_EPOCH = "30d"
    LAST_90_DAYS = "90d"
    MONTH = "month"
    ALL_TIME = "all"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


PAID_STATUS = "paid"


# ═══════════════════════════════════════════════════════════════════════════════
# ORDERS
# ═══════════════════════════════════════════════════════════════════════════════

def _coerce_amount(raw: Any) -> Optional[float]:
    """Numeric value of an amount field, or None when it is null or malformed."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


@dataclass(frozen=True)
class OrderRecord:
    """One order row as returned by the record source."""
    id: str
    status: str
    created_at: Optional[datetime] = None
    amount_cents: Any = None
    has_amount_field: bool = False
    payment_provider: Optional[str] = None
    provider: Optional[str] = None
    plan: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OrderRecord":
        """Create OrderRecord from a raw row dict."""
        created_at = None
        if row.get("created_at"):
            try:
                created_at = parse_timestamp(row["created_at"])
            except (ValueError, TypeError):
                pass

        return cls(
            id=str(row.get("id", "")),
            status=str(row.get("status") or ""),
            created_at=created_at,
            amount_cents=row.get("amount_cents"),
            has_amount_field="amount_cents" in row,
            payment_provider=row.get("payment_provider"),
            provider=row.get("provider"),
            plan=row.get("plan"),
        )

    @property
    def is_paid(self) -> bool:
        return self.status == PAID_STATUS

    @property
    def amount_value(self) -> Optional[float]:
        """Amount in cents as a float; None if absent, null or malformed."""
        if not self.has_amount_field:
            return None
        return _coerce_amount(self.amount_cents)


# ═══════════════════════════════════════════════════════════════════════════════
# MANUAL OVERRIDES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ManualOverride:
    """Hand-curated business date for one order."""
    order_id: str
    business_date: str

    def __post_init__(self):
        if not is_date_key(self.business_date):
            raise ValueError(f"Invalid override date for {self.order_id}: {self.business_date!r}")


class OverrideTable:
    """
    Immutable table of manual date corrections, keyed by order id.

    Usage:
        overrides = OverrideTable.from_json_file("overrides.json")
        overrides.get("a1b2...")  # "2024-11-28" or None
    """

    def __init__(self, overrides: Iterable[ManualOverride] = ()):
        self._by_id: Dict[str, str] = {o.order_id: o.business_date for o in overrides}

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "OverrideTable":
        """Build from dicts shaped like {"id": ..., "date": "YYYY-MM-DD"}."""
        return cls(
            ManualOverride(order_id=str(record["id"]), business_date=str(record["date"]))
            for record in records
        )

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "OverrideTable":
        """
        Load a JSON list of {"id", "date"} records.

        Malformed entries are logged and skipped so one typo does not drop
        every other correction.
        """
        with open(path, encoding="utf-8") as handle:
            records = json.load(handle)
        if not isinstance(records, list):
            raise ValueError(f"Override file {path} must contain a JSON list")

        overrides = []
        for index, record in enumerate(records):
            try:
                overrides.append(
                    ManualOverride(order_id=str(record["id"]), business_date=str(record["date"]))
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping override entry {index} in {path}: {e!r}")
        return cls(overrides)

    def get(self, order_id: str) -> Optional[str]:
        return self._by_id.get(str(order_id))

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(sorted(self._by_id))

    def ids_dated_between(self, start_key: Optional[str], end_key: str) -> Tuple[str, ...]:
        """Order ids whose override date lies in [start_key, end_key]."""
        return tuple(sorted(
            order_id for order_id, key in self._by_id.items()
            if (start_key is None or key >= start_key) and key <= end_key
        ))

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, order_id: object) -> bool:
        return str(order_id) in self._by_id


# ═══════════════════════════════════════════════════════════════════════════════
# BUCKETS & CACHE BLOB
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class DateBucket:
    """Revenue and order count for one calendar day."""
    revenue: float = 0.0
    count: int = 0

    def add(self, revenue: float = 0.0) -> None:
        """Count one order contributing the given revenue."""
        self.revenue += revenue
        self.count += 1

    def merge(self, other: "DateBucket") -> None:
        self.revenue += other.revenue
        self.count += other.count

    def copy(self) -> "DateBucket":
        return DateBucket(self.revenue, self.count)

    @property
    def is_empty(self) -> bool:
        """A zero-count bucket means the same as no bucket."""
        return self.count <= 0

    def to_dict(self) -> Dict[str, Any]:
        return {"revenue": round(self.revenue, 2), "count": self.count}

    @classmethod
    def from_stored(cls, raw: Any) -> Optional["DateBucket"]:
        """
        Decode a stored bucket leniently.

        Missing fields count as 0; the legacy "hotmart" field is read as revenue.
        """
        if not isinstance(raw, dict):
            return None
        revenue = raw.get("revenue")
        if not isinstance(revenue, (int, float)) or isinstance(revenue, bool):
            revenue = raw.get("hotmart")
        if not isinstance(revenue, (int, float)) or isinstance(revenue, bool):
            revenue = 0.0
        count = raw.get("count")
        if not isinstance(count, (int, float)) or isinstance(count, bool):
            count = 0
        return cls(revenue=float(revenue), count=int(count))


@dataclass
class SalesCache:
    """
    Persisted sales cache.

    Blob layout:
        {"lastUpdate": "YYYY-MM-DD",
         "data": {"YYYY-MM-DD": {"revenue": float, "count": int}},
         "coveredFrom": "YYYY-MM-DD"}      # optional

    `coveredFrom` is the earliest day from which the buckets are complete.
    Blobs written without it are still accepted.
    """
    last_update_key: Optional[str] = None
    buckets: Dict[str, DateBucket] = field(default_factory=dict)
    covered_from: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.last_update_key is None and not self.buckets

    def to_json(self) -> str:
        blob: Dict[str, Any] = {
            "lastUpdate": self.last_update_key,
            "data": {
                key: bucket.to_dict()
                for key, bucket in sorted(self.buckets.items())
                if not bucket.is_empty
            },
        }
        if self.covered_from:
            blob["coveredFrom"] = self.covered_from
        return json.dumps(blob, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: Optional[str]) -> "SalesCache":
        """Decode a stored blob; anything unreadable yields an empty cache."""
        if not text:
            return cls()
        try:
            blob = json.loads(text)
        except (ValueError, TypeError):
            return cls()
        if not isinstance(blob, dict):
            return cls()

        last_update = blob.get("lastUpdate")
        if not is_date_key(last_update):
            return cls()

        buckets: Dict[str, DateBucket] = {}
        data = blob.get("data")
        if isinstance(data, dict):
            for key, raw in data.items():
                if not is_date_key(key):
                    continue
                bucket = DateBucket.from_stored(raw)
                if bucket is not None and not bucket.is_empty:
                    buckets[key] = bucket

        covered_from = blob.get("coveredFrom")
        if not is_date_key(covered_from):
            covered_from = None

        return cls(last_update_key=last_update, buckets=buckets, covered_from=covered_from)


# ═══════════════════════════════════════════════════════════════════════════════
# PRESENTATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ChartPoint:
    """One chart row: a day, or a month for the all-time view."""
    date_key: str
    display_label: str
    full_label: str
    revenue: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dateKey": self.date_key,
            "date": self.display_label,
            "fullDate": self.full_label,
            "revenue": self.revenue,
            "count": self.count,
        }


@dataclass(frozen=True)
class DashboardStats:
    """Headline order and revenue counters."""
    total_orders: int = 0
    paid_orders: int = 0
    provider_orders: int = 0
    provider_revenue: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalOrders": self.total_orders,
            "paidOrders": self.paid_orders,
            "providerOrders": self.provider_orders,
            "providerRevenue": round(self.provider_revenue, 2),
        }
