"""
Integration tests for sales_engine/source.py

Drives PostgrestRecordSource through httpx.MockTransport.
"""
import httpx
import pytest
from datetime import datetime, timezone

from sales_engine.exceptions import (
    MissingColumnError,
    MissingRelationError,
    PermissionDeniedError,
    RecordSourceConnectionError,
    RecordSourceDataError,
)
from sales_engine.observability import cycle_context
from sales_engine.resilience import CircuitBreaker, CircuitBreakerConfig, RetryConfig
from sales_engine.source import (
    OrderFilter,
    PostgrestRecordSource,
    RecordQuery,
    build_params,
    parse_content_range,
)

BASE_URL = "https://project.supabase.co"
NO_DELAY = RetryConfig(max_attempts=3, base_delay=0, jitter=0)
COLUMNS = ("id", "status", "created_at", "amount_cents")


def _source(handler, **kwargs):
    kwargs.setdefault("retry_config", NO_DELAY)
    return PostgrestRecordSource(
        base_url=BASE_URL,
        api_key="service-key",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestBuildParams:
    """Tests for query-string translation."""

    def test_full_query(self):
        query = RecordQuery(
            columns=COLUMNS,
            filters=OrderFilter(status="paid", plan="pro"),
            created_from=datetime(2024, 11, 3, 3, tzinfo=timezone.utc),
            created_before=datetime(2024, 11, 5, 3, tzinfo=timezone.utc),
            offset=1000,
            limit=1000,
        )
        assert build_params(query) == [
            ("select", "id,status,created_at,amount_cents"),
            ("status", "eq.paid"),
            ("plan", "eq.pro"),
            ("created_at", "gte.2024-11-03T03:00:00+00:00"),
            ("created_at", "lt.2024-11-05T03:00:00+00:00"),
            ("order", "created_at.asc"),
            ("offset", "1000"),
            ("limit", "1000"),
        ]

    def test_ids_quoted(self):
        """Ids with reserved characters are quoted."""
        query = RecordQuery(columns=("id",), filters=OrderFilter(status=None), ids=("a1", "b,2"))
        params = dict(build_params(query, include_paging=False))
        assert params["id"] == 'in.(a1,"b,2")'
        assert "order" not in params
        assert "status" not in params

    def test_naive_datetime_is_utc(self):
        query = RecordQuery(columns=("id",), created_from=datetime(2024, 11, 3, 3))
        assert ("created_at", "gte.2024-11-03T03:00:00+00:00") in build_params(query)


class TestParseContentRange:
    """Tests for Content-Range parsing."""

    @pytest.mark.parametrize("header,expected", [
        ("0-24/3573", 3573),
        ("*/0", 0),
        ("0-24/*", None),
        (None, None),
        ("garbage", None),
    ])
    def test_parse(self, header, expected):
        assert parse_content_range(header) == expected


class TestPostgrestRecordSource:
    """Tests for PostgrestRecordSource requests."""

    @pytest.mark.asyncio
    async def test_select(self):
        """Select sends auth headers and PostgREST params."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"id": "o1", "status": "paid"}])

        async with _source(handler) as source:
            rows = await source.select(RecordQuery(columns=COLUMNS, limit=1))

        assert rows == [{"id": "o1", "status": "paid"}]
        request = seen[0]
        assert request.url.path == "/rest/v1/orders"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["authorization"] == "Bearer service-key"
        assert request.url.params["status"] == "eq.paid"
        assert request.url.params["limit"] == "1"

    @pytest.mark.asyncio
    async def test_count(self):
        """Count uses HEAD with Prefer: count=exact."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, headers={"Content-Range": "0-0/30000"})

        async with _source(handler) as source:
            total = await source.count(RecordQuery(columns=("id",)))

        assert total == 30000
        assert seen[0].method == "HEAD"
        assert seen[0].headers["prefer"] == "count=exact"
        assert "order" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_cycle_id_forwarded(self):
        """The current cycle ID is sent as X-Request-ID."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        async with _source(handler) as source:
            with cycle_context("cycle-1"):
                await source.select(RecordQuery(columns=("id",)))

        assert seen[0].headers["x-request-id"] == "cycle-1"

    @pytest.mark.asyncio
    async def test_missing_column(self):
        """42703 maps to MissingColumnError with the column name."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={
                "code": "42703",
                "message": "column orders.amount_cents does not exist",
            })

        async with _source(handler) as source:
            with pytest.raises(MissingColumnError) as exc_info:
                await source.select(RecordQuery(columns=COLUMNS))
        assert exc_info.value.column == "amount_cents"

    @pytest.mark.asyncio
    async def test_missing_relation(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"code": "42P01", "message": 'relation "orders" does not exist'})

        async with _source(handler) as source:
            with pytest.raises(MissingRelationError):
                await source.select(RecordQuery(columns=COLUMNS))

    @pytest.mark.asyncio
    async def test_permission_denied(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Invalid API key"})

        async with _source(handler) as source:
            with pytest.raises(PermissionDeniedError):
                await source.select(RecordQuery(columns=COLUMNS))

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        """Classified 4xx errors are raised at once."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"code": "42703", "message": "column x does not exist"})

        async with _source(handler) as source:
            with pytest.raises(MissingColumnError):
                await source.select(RecordQuery(columns=("x",)))
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        """5xx responses are retried and can recover."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, json={"message": "upstream unavailable"})
            return httpx.Response(200, json=[{"id": "o1"}])

        async with _source(handler) as source:
            rows = await source.select(RecordQuery(columns=("id",)))
        assert rows == [{"id": "o1"}]
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_timeout_exhausts_retries(self):
        """Timeouts surface as RecordSourceConnectionError after retries."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectTimeout("timed out", request=request)

        async with _source(handler) as source:
            with pytest.raises(RecordSourceConnectionError):
                await source.select(RecordQuery(columns=("id",)))
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_circuit_opens(self):
        """After the breaker opens, requests fail without reaching the network."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502, text="bad gateway")

        breaker = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=60))
        async with _source(handler, circuit_breaker=breaker) as source:
            with pytest.raises(RecordSourceConnectionError):
                await source.select(RecordQuery(columns=("id",)))
            with pytest.raises(RecordSourceConnectionError) as exc_info:
                await source.select(RecordQuery(columns=("id",)))

        assert "circuit is open" in str(exc_info.value)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_non_list_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"rows": []})

        async with _source(handler) as source:
            with pytest.raises(RecordSourceDataError) as exc_info:
                await source.select(RecordQuery(columns=("id",)))
        assert exc_info.value.got == "dict"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        async with _source(handler) as source:
            with pytest.raises(RecordSourceDataError):
                await source.select(RecordQuery(columns=("id",)))
