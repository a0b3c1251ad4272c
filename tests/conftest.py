"""
Pytest configuration and shared fixtures.
"""
import pytest
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from sales_engine.business_time import BusinessCalendar, parse_timestamp
from sales_engine.cache_store import InMemoryCacheStore
from sales_engine.exceptions import (
    MissingColumnError,
    MissingRelationError,
    RecordSourceConnectionError,
)
from sales_engine.source import RecordQuery

# 2024-11-05 12:00 in Sao Paulo (UTC-3)
FIXED_NOW = datetime(2024, 11, 5, 15, 0, tzinfo=timezone.utc)


class FakeRecordSource:
    """
    In-memory RecordSource with PostgREST-like semantics.

    Records every select/count so tests can assert on what was fetched.
    """

    def __init__(
        self,
        rows: List[Dict[str, Any]],
        missing_columns: Optional[Set[str]] = None,
        exact_count: Optional[int] = None,
        unavailable: bool = False,
    ):
        self.rows = rows
        self.missing_columns = set(missing_columns or ())
        self.exact_count = exact_count
        self.unavailable = unavailable
        self.fail_on_select: Optional[Callable[[RecordQuery], bool]] = None
        self.selects: List[RecordQuery] = []
        self.counts: List[RecordQuery] = []

    def _matching(self, query: RecordQuery) -> List[Dict[str, Any]]:
        matched = []
        for row in self.rows:
            if query.filters.status and row.get("status") != query.filters.status:
                continue
            if query.filters.plan and row.get("plan") != query.filters.plan:
                continue
            if query.ids is not None and str(row.get("id")) not in query.ids:
                continue
            created = parse_timestamp(row["created_at"]) if row.get("created_at") else None
            if query.created_from is not None and (created is None or created < query.created_from):
                continue
            if query.created_before is not None and (created is None or created >= query.created_before):
                continue
            matched.append(row)
        matched.sort(key=lambda r: r.get("created_at") or "", reverse=not query.ascending)
        return matched

    async def select(self, query: RecordQuery) -> List[Dict[str, Any]]:
        self.selects.append(query)
        if self.unavailable:
            raise MissingRelationError('relation "public.orders" does not exist', code="42P01")
        for column in query.columns:
            if column in self.missing_columns:
                raise MissingColumnError(
                    f"column orders.{column} does not exist", code="42703", column=column
                )
        if self.fail_on_select and self.fail_on_select(query):
            raise RecordSourceConnectionError("connection reset")

        matched = self._matching(query)
        end = None if query.limit is None else query.offset + query.limit
        page = matched[query.offset:end]
        return [{c: row.get(c) for c in query.columns if c in row} for row in page]

    async def count(self, query: RecordQuery) -> Optional[int]:
        self.counts.append(query)
        if self.unavailable:
            raise MissingRelationError("relation does not exist", code="42P01")
        return self.exact_count

    def paged_selects(self) -> List[RecordQuery]:
        """Selects issued by pagination (probe queries use limit 1)."""
        return [q for q in self.selects if q.limit != 1]


def make_order(
    order_id: str,
    created_at: str,
    amount_cents: Any = 1000,
    status: str = "paid",
    **extra: Any,
) -> Dict[str, Any]:
    row = {
        "id": order_id,
        "status": status,
        "created_at": created_at,
        "amount_cents": amount_cents,
        "payment_provider": "hotmart",
        "provider": None,
        "paid_at": created_at,
    }
    row.update(extra)
    return row


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock frozen at 2024-11-05 12:00 Sao Paulo time."""
    return lambda: FIXED_NOW


@pytest.fixture
def calendar(fixed_clock) -> BusinessCalendar:
    """Sao Paulo business calendar with a frozen clock."""
    return BusinessCalendar("America/Sao_Paulo", clock=fixed_clock)


@pytest.fixture
def order_factory() -> Callable[..., Dict[str, Any]]:
    """Factory for raw order rows."""
    return make_order


@pytest.fixture
def sample_rows() -> List[Dict[str, Any]]:
    """Orders spread over 2024-11-03..2024-11-05 (Sao Paulo days)."""
    return [
        # 2024-11-03
        make_order("o1", "2024-11-03T13:00:00Z", 5000),
        make_order("o2", "2024-11-03T20:00:00Z", 5000),
        # 2024-11-04 02:30Z is still 2024-11-03 in Sao Paulo
        make_order("o3", "2024-11-04T02:30:00Z", 2500),
        # 2024-11-04
        make_order("o4", "2024-11-04T12:00:00Z", 10000),
        make_order("o5", "2024-11-04T13:00:00Z", 700, status="pending"),
        # 2024-11-05 (today)
        make_order("o6", "2024-11-05T11:00:00Z", 3000),
    ]


@pytest.fixture
def make_source() -> Callable[..., FakeRecordSource]:
    """Factory for FakeRecordSource instances."""
    return FakeRecordSource


@pytest.fixture
def fake_source(sample_rows) -> FakeRecordSource:
    """Fake source preloaded with sample_rows."""
    return FakeRecordSource(sample_rows)


@pytest.fixture
def memory_store() -> InMemoryCacheStore:
    """Empty in-memory cache store."""
    return InMemoryCacheStore()
