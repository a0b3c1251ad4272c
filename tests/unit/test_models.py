"""
Tests for sales_engine.models module.
"""
import json
import pytest
from datetime import datetime, timezone

from sales_engine.models import (
    ChartPoint,
    DashboardStats,
    DateBucket,
    ManualOverride,
    OrderRecord,
    OverrideTable,
    SalesCache,
    WindowKind,
)


class TestOrderRecord:
    """Tests for OrderRecord dataclass."""

    def test_from_row(self):
        """Should parse a full row."""
        record = OrderRecord.from_row({
            "id": 42,
            "status": "paid",
            "created_at": "2024-11-04T02:30:00Z",
            "amount_cents": 2500,
            "payment_provider": "hotmart",
        })
        assert record.id == "42"
        assert record.is_paid
        assert record.created_at == datetime(2024, 11, 4, 2, 30, tzinfo=timezone.utc)
        assert record.amount_value == 2500.0
        assert record.payment_provider == "hotmart"
        assert record.provider is None

    def test_naive_timestamp_is_utc(self):
        """Timestamps without offset are read as UTC."""
        record = OrderRecord.from_row({"id": "a", "status": "paid", "created_at": "2024-11-04T02:30:00"})
        assert record.created_at.tzinfo is not None
        assert record.created_at.utcoffset().total_seconds() == 0

    def test_bad_timestamp(self):
        """Unparseable created_at becomes None."""
        record = OrderRecord.from_row({"id": "a", "status": "paid", "created_at": "yesterday"})
        assert record.created_at is None

    def test_amount_absent_column(self):
        """Absent amount column yields None and no amount field."""
        record = OrderRecord.from_row({"id": "a", "status": "paid"})
        assert not record.has_amount_field
        assert record.amount_value is None

    @pytest.mark.parametrize("raw,expected", [
        ("1500", 1500.0),
        (" 99.5 ", 99.5),
        (None, None),
        ("abc", None),
        (True, None),
        (float("nan"), None),
        ([], None),
    ])
    def test_amount_coercion(self, raw, expected):
        """Strings parse, null and malformed values yield None."""
        record = OrderRecord.from_row({"id": "a", "status": "paid", "amount_cents": raw})
        assert record.has_amount_field
        assert record.amount_value == expected


class TestOverrideTable:
    """Tests for ManualOverride and OverrideTable."""

    def test_invalid_override_date(self):
        """Override dates must be YYYY-MM-DD."""
        with pytest.raises(ValueError):
            ManualOverride(order_id="a", business_date="28/11/2024")

    def test_lookup(self):
        """Lookup by id, string-normalized."""
        table = OverrideTable.from_records([{"id": 7, "date": "2024-11-28"}])
        assert table.get("7") == "2024-11-28"
        assert table.get(7) == "2024-11-28"
        assert table.get("8") is None
        assert 7 in table
        assert len(table) == 1

    def test_ids_dated_between(self):
        """Filters ids by override date, inclusive, open start allowed."""
        table = OverrideTable.from_records([
            {"id": "a", "date": "2024-11-01"},
            {"id": "b", "date": "2024-11-15"},
            {"id": "c", "date": "2024-12-01"},
        ])
        assert table.ids_dated_between("2024-11-01", "2024-11-15") == ("a", "b")
        assert table.ids_dated_between(None, "2024-11-30") == ("a", "b")
        assert table.ids == ("a", "b", "c")

    def test_from_json_file(self, tmp_path):
        """Loads a JSON list from disk."""
        path = tmp_path / "overrides.json"
        path.write_text(json.dumps([{"id": "x", "date": "2024-11-28"}]), encoding="utf-8")
        assert OverrideTable.from_json_file(path).get("x") == "2024-11-28"

    def test_from_json_file_skips_bad_entries(self, tmp_path, caplog):
        """Malformed entries are skipped one by one; valid ones still load."""
        path = tmp_path / "overrides.json"
        path.write_text(json.dumps([
            {"id": "a", "date": "2024-11-28"},
            {"id": "b", "date": "28/11/2024"},
            {"date": "2024-11-29"},
            "c",
            {"id": "d", "date": "2024-11-30"},
        ]), encoding="utf-8")

        with caplog.at_level("WARNING", logger="sales_engine.models"):
            table = OverrideTable.from_json_file(path)

        assert table.ids == ("a", "d")
        assert len([r for r in caplog.records if "Skipping override entry" in r.getMessage()]) == 3

    def test_from_json_file_not_list(self, tmp_path):
        """A JSON object is rejected."""
        path = tmp_path / "overrides.json"
        path.write_text('{"x": "2024-11-28"}', encoding="utf-8")
        with pytest.raises(ValueError):
            OverrideTable.from_json_file(path)


class TestDateBucket:
    """Tests for DateBucket."""

    def test_add_and_merge(self):
        """add counts one order; merge sums both fields."""
        bucket = DateBucket()
        bucket.add(50.0)
        bucket.add(0.0)
        other = DateBucket(revenue=25.0, count=1)
        bucket.merge(other)
        assert bucket.revenue == 75.0
        assert bucket.count == 3

    def test_is_empty(self):
        """Zero count means empty even with revenue."""
        assert DateBucket(revenue=10.0, count=0).is_empty
        assert not DateBucket(count=1).is_empty

    def test_from_stored_legacy_field(self):
        """Legacy "hotmart" field is read as revenue."""
        bucket = DateBucket.from_stored({"hotmart": 120.5, "count": 2})
        assert bucket.revenue == 120.5
        assert bucket.count == 2

    def test_from_stored_missing_fields(self):
        """Missing fields count as zero."""
        bucket = DateBucket.from_stored({})
        assert bucket.revenue == 0.0
        assert bucket.count == 0
        assert DateBucket.from_stored("bad") is None


class TestSalesCache:
    """Tests for SalesCache blob encoding."""

    def test_round_trip(self):
        """Encoded blob decodes to the same cache."""
        cache = SalesCache(
            last_update_key="2024-11-05",
            buckets={"2024-11-03": DateBucket(125.0, 3)},
            covered_from="2024-08-08",
        )
        decoded = SalesCache.from_json(cache.to_json())
        assert decoded.last_update_key == "2024-11-05"
        assert decoded.buckets["2024-11-03"] == DateBucket(125.0, 3)
        assert decoded.covered_from == "2024-08-08"

    def test_blob_layout(self):
        """Blob uses lastUpdate/data/coveredFrom and drops empty buckets."""
        cache = SalesCache(
            last_update_key="2024-11-05",
            buckets={"2024-11-03": DateBucket(125.0, 3), "2024-11-04": DateBucket()},
        )
        blob = json.loads(cache.to_json())
        assert blob == {
            "lastUpdate": "2024-11-05",
            "data": {"2024-11-03": {"revenue": 125.0, "count": 3}},
        }

    def test_legacy_blob(self):
        """Blob without coveredFrom and with "hotmart" revenue is accepted."""
        text = json.dumps({
            "lastUpdate": "2024-11-04",
            "data": {"2024-11-03": {"hotmart": 100, "count": 2}},
        })
        cache = SalesCache.from_json(text)
        assert cache.covered_from is None
        assert cache.buckets["2024-11-03"].revenue == 100.0

    @pytest.mark.parametrize("text", [
        None,
        "",
        "not json",
        "[]",
        '{"data": {}}',
        '{"lastUpdate": "05/11/2024", "data": {}}',
    ])
    def test_corrupt_blob(self, text):
        """Unreadable blobs yield an empty cache."""
        assert SalesCache.from_json(text).is_empty

    def test_bad_keys_skipped(self):
        """Invalid date keys and empty buckets are dropped."""
        text = json.dumps({
            "lastUpdate": "2024-11-05",
            "data": {"nope": {"revenue": 1, "count": 1}, "2024-11-04": {"revenue": 0, "count": 0}},
            "coveredFrom": "bad",
        })
        cache = SalesCache.from_json(text)
        assert cache.buckets == {}
        assert cache.covered_from is None
        assert not cache.is_empty


class TestPresentation:
    """Tests for ChartPoint, DashboardStats and WindowKind."""

    def test_chart_point_dict(self):
        """Chart points serialize with camelCase keys."""
        point = ChartPoint("2024-11-03", "03/11", "03 de nov", 125.0, 3)
        assert point.to_dict() == {
            "dateKey": "2024-11-03",
            "date": "03/11",
            "fullDate": "03 de nov",
            "revenue": 125.0,
            "count": 3,
        }

    def test_dashboard_stats_rounding(self):
        """Provider revenue is rounded to cents."""
        stats = DashboardStats(total_orders=5, paid_orders=4, provider_orders=3, provider_revenue=10.005001)
        assert stats.to_dict()["providerRevenue"] == 10.01

    def test_window_values(self):
        """All five windows are listed."""
        assert WindowKind.values() == ["7d", "30d", "90d", "month", "all"]
