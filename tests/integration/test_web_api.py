"""
Integration tests for the dashboard HTTP API.

Runs the FastAPI app with TestClient against pre-configured services
backed by the in-memory record source.
"""
import csv
import io
import pytest
from fastapi.testclient import TestClient

from sales_engine.cache_store import InMemoryCacheStore
from sales_engine.dashboard_stats import DashboardStatsService
from sales_engine.engine import EngineSettings, IncrementalSalesEngine
from sales_engine.exceptions import CacheStoreError
from sales_engine.fetcher import PaginatedFetcher
from web.main import app
from web.routes.api._deps import limiter
from web.services import sales_service


class BrokenClearStore(InMemoryCacheStore):
    """Store whose clear always fails."""

    def clear(self, key: str) -> None:
        raise CacheStoreError("read-only filesystem")


@pytest.fixture
def make_services(calendar, monkeypatch):
    """Install engine and stats service for the app; restored after the test."""
    monkeypatch.setattr(sales_service, "_engine", None)
    monkeypatch.setattr(sales_service, "_stats_service", None)
    monkeypatch.setattr(sales_service, "_source", None)
    monkeypatch.setattr(limiter, "enabled", False)

    def _make(source, store=None):
        fetcher = PaginatedFetcher(source, page_size=100, count_trust_threshold=50)
        engine = IncrementalSalesEngine(
            source,
            store if store is not None else InMemoryCacheStore(),
            calendar=calendar,
            fetcher=fetcher,
            settings=EngineSettings(cache_key="test_cache"),
        )
        stats = DashboardStatsService(source, fetcher=fetcher, calendar=calendar)
        sales_service.configure(engine, stats)
        return engine
    return _make


@pytest.fixture
def client(make_services, fake_source):
    make_services(fake_source)
    return TestClient(app)


class TestHealth:
    """Tests for GET /api/health."""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["source"]["status"] == "not_configured"
        assert data["cache_last_update"] is None

    def test_request_id_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-1"})
        assert response.headers["X-Request-ID"] == "req-1"
        assert response.headers["X-Response-Time"].endswith("ms")


class TestSalesChart:
    """Tests for GET /api/sales/chart."""

    def test_fresh_chart(self, client):
        response = client.get("/api/sales/chart", params={"window": "30d", "stale": "false"})
        assert response.status_code == 200
        data = response.json()
        assert data["window"] == "30d"
        assert data["stale"] is False
        assert data["currency"] == "BRL"
        assert data["totalRevenue"] == 255.0
        assert data["totalOrders"] == 5
        assert [p["dateKey"] for p in data["points"]] == ["2024-11-03", "2024-11-04", "2024-11-05"]
        assert data["points"][0] == {
            "dateKey": "2024-11-03",
            "date": "03/11",
            "fullDate": "03 de nov",
            "revenue": 125.0,
            "count": 3,
        }

    def test_all_time_chart(self, client):
        response = client.get("/api/sales/chart", params={"window": "all", "stale": "false"})
        assert response.status_code == 200
        points = response.json()["points"]
        assert [p["date"] for p in points] == ["Nov/2024"]

    def test_month_chart(self, client):
        response = client.get(
            "/api/sales/chart", params={"window": "month", "month": "2024-11", "stale": "false"}
        )
        assert response.status_code == 200
        assert response.json()["month"] == "2024-11"
        assert len(response.json()["points"]) == 3

    def test_invalid_window(self, client):
        response = client.get("/api/sales/chart", params={"window": "14d"})
        assert response.status_code == 400
        assert "window" in response.json()["detail"]

    def test_invalid_month(self, client):
        response = client.get("/api/sales/chart", params={"window": "month", "month": "2024-13"})
        assert response.status_code == 400

    def test_stale_while_revalidate(self, make_services, fake_source):
        """Second read is served from cache and refreshed in the background."""
        engine = make_services(fake_source)
        with TestClient(app) as client:
            first = client.get("/api/sales/chart", params={"window": "30d"})
            second = client.get("/api/sales/chart", params={"window": "30d"})

        assert first.json()["stale"] is False
        assert second.json()["stale"] is True
        assert second.json()["points"] == first.json()["points"]
        assert engine.stats.cycles == 2


class TestSalesCache:
    """Tests for the sales cache endpoints."""

    def test_status_and_clear(self, client):
        client.get("/api/sales/chart", params={"window": "30d", "stale": "false"})

        status = client.get("/api/sales/cache").json()
        assert status["cache_key"] == "test_cache"
        assert status["last_update"] == "2024-11-05"
        assert status["covered_from"] == "2024-11-03"
        assert status["stats"]["cycles"] == 1

        cleared = client.delete("/api/sales/cache")
        assert cleared.status_code == 200
        assert cleared.json() == {"cleared": True, "cache_key": "test_cache"}
        assert client.get("/api/sales/cache").json()["last_update"] is None

    def test_clear_failure(self, make_services, fake_source):
        make_services(fake_source, BrokenClearStore())
        response = TestClient(app).delete("/api/sales/cache")
        assert response.status_code == 500


class TestDashboardStats:
    """Tests for GET /api/dashboard/stats."""

    def test_stats(self, client):
        response = client.get("/api/dashboard/stats")
        assert response.status_code == 200
        assert response.json() == {
            "totalOrders": 6,
            "paidOrders": 5,
            "providerOrders": 5,
            "providerRevenue": 255.0,
            "currency": "BRL",
        }


class TestOrdersExport:
    """Tests for GET /api/orders/export/csv."""

    def test_export_range(self, client):
        response = client.get(
            "/api/orders/export/csv",
            params={"start_date": "2024-11-03", "end_date": "2024-11-04"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["X-Total-Count"] == "4"
        assert "X-Truncated" not in response.headers

        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == [
            "id", "created_at", "business_date", "status",
            "amount", "payment_provider", "provider", "plan",
        ]
        assert len(rows) == 5
        o3 = next(row for row in rows if row[0] == "o3")
        assert o3[1] == "2024-11-03T23:30:00-03:00"
        assert o3[2] == "2024-11-03"
        assert o3[4] == "25.00"
        assert o3[5] == "hotmart"

    def test_export_all(self, client):
        response = client.get("/api/orders/export/csv")
        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "5"
        assert "paid_orders_all_now.csv" in response.headers["content-disposition"]

    def test_reversed_range(self, client):
        response = client.get(
            "/api/orders/export/csv",
            params={"start_date": "2024-11-04", "end_date": "2024-11-03"},
        )
        assert response.status_code == 400

    def test_bad_date(self, client):
        response = client.get("/api/orders/export/csv", params={"start_date": "04/11/2024"})
        assert response.status_code == 400


class TestRateLimit:
    """Tests for the shared rate limiter."""

    def test_cache_clear_limited(self, client, monkeypatch):
        monkeypatch.setattr(limiter, "enabled", True)
        limiter.reset()
        try:
            statuses = [client.delete("/api/sales/cache").status_code for _ in range(6)]
        finally:
            limiter.reset()
        assert statuses[:5] == [200] * 5
        assert statuses[5] == 429
