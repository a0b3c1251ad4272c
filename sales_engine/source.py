"""
Record source: the hosted relational store holding the orders relation.

The engine only depends on the `RecordSource` protocol: a filtered,
range-paginated select and an optional exact count. `PostgrestRecordSource`
implements it over the PostgREST HTTP API exposed by Supabase.

Features:
- Connection pooling with httpx
- Exponential backoff retry on network errors (3 attempts)
- Circuit breaker (opens after 5 consecutive failures)
- Error classification into missing column / relation / permission
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from sales_engine.config import config
from sales_engine.exceptions import (
    RecordSourceConnectionError,
    RecordSourceDataError,
    RecordSourceError,
    classify_source_error,
)
from sales_engine.observability import get_cycle_id, get_logger, Timer
from sales_engine.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    RetryConfig,
    retry_with_backoff,
)

logger = get_logger(__name__)

RETRY_CONFIG = RetryConfig(max_attempts=3, base_delay=0.5, max_delay=10.0)
CIRCUIT_BREAKER_CONFIG = CircuitBreakerConfig(failure_threshold=5, recovery_timeout=60.0)


@dataclass(frozen=True)
class OrderFilter:
    """Equality filters applied server-side."""
    status: Optional[str] = "paid"
    plan: Optional[str] = None

    def as_pairs(self) -> List[Tuple[str, str]]:
        pairs = []
        if self.status:
            pairs.append(("status", f"eq.{self.status}"))
        if self.plan:
            pairs.append(("plan", f"eq.{self.plan}"))
        return pairs


@dataclass(frozen=True)
class RecordQuery:
    """One select against the orders relation."""
    columns: Tuple[str, ...]
    filters: OrderFilter = field(default_factory=OrderFilter)
    created_from: Optional[datetime] = None
    created_before: Optional[datetime] = None
    ids: Optional[Tuple[str, ...]] = None
    ascending: bool = True
    offset: int = 0
    limit: Optional[int] = None

    def page(self, offset: int, limit: int) -> "RecordQuery":
        return replace(self, offset=offset, limit=limit)

    def with_columns(self, columns: Sequence[str]) -> "RecordQuery":
        return replace(self, columns=tuple(columns))


class RecordSource(Protocol):
    """Capabilities the engine consumes from the relational store."""

    async def select(self, query: RecordQuery) -> List[Dict[str, Any]]:
        """Return the rows of one page. Raises RecordSourceError subclasses."""
        ...

    async def count(self, query: RecordQuery) -> Optional[int]:
        """Exact row count for the query's filters; None when unknown."""
        ...


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _quote_id(value: str) -> str:
    text = str(value)
    if any(ch in text for ch in ',()" '):
        return '"' + text.replace('"', '\\"') + '"'
    return text


def build_params(query: RecordQuery, include_paging: bool = True) -> List[Tuple[str, str]]:
    """Translate a RecordQuery into PostgREST query-string pairs."""
    params: List[Tuple[str, str]] = [("select", ",".join(query.columns))]
    params.extend(query.filters.as_pairs())

    if query.created_from is not None:
        params.append(("created_at", f"gte.{_iso(query.created_from)}"))
    if query.created_before is not None:
        params.append(("created_at", f"lt.{_iso(query.created_before)}"))
    if query.ids is not None:
        params.append(("id", f"in.({','.join(_quote_id(i) for i in query.ids)})"))

    if include_paging:
        params.append(("order", f"created_at.{'asc' if query.ascending else 'desc'}"))
        if query.offset:
            params.append(("offset", str(query.offset)))
        if query.limit is not None:
            params.append(("limit", str(query.limit)))
    return params


def parse_content_range(header: Optional[str]) -> Optional[int]:
    """Total from a Content-Range header like "0-24/3573" or "*/3573"."""
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


class PostgrestRecordSource:
    """
    Async PostgREST client for the orders relation.

    Usage:
        async with PostgrestRecordSource() as source:
            rows = await source.select(RecordQuery(columns=("id", "status", "created_at")))
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        table: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: RetryConfig = RETRY_CONFIG,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Args:
            base_url: Project URL (defaults to SUPABASE_URL)
            api_key: Service key (defaults to SUPABASE_SERVICE_KEY)
            table: Relation name (defaults to "orders")
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or config.source.url).rstrip("/")
        self.api_key = api_key or config.source.api_key
        self.table = table or config.source.table
        self.timeout = timeout or config.source.request_timeout
        self.retry_config = retry_config
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            config=CIRCUIT_BREAKER_CONFIG, name=self.table
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.base_url:
            raise ValueError("SUPABASE_URL is required")
        if not self.api_key:
            raise ValueError("SUPABASE_SERVICE_KEY is required")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    @property
    def headers(self) -> Dict[str, str]:
        """Request headers with auth."""
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PostgrestRecordSource":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def select(self, query: RecordQuery) -> List[Dict[str, Any]]:
        """Fetch one page of rows."""
        response = await self._request("GET", build_params(query))
        try:
            rows = response.json()
        except ValueError as e:
            raise RecordSourceDataError("Response is not JSON", str(e)) from e

        if not isinstance(rows, list):
            raise RecordSourceDataError(
                "Response body is not a list",
                expected="list",
                got=type(rows).__name__,
            )
        return rows

    async def count(self, query: RecordQuery) -> Optional[int]:
        """Exact count via HEAD + Prefer: count=exact."""
        response = await self._request(
            "HEAD",
            build_params(query, include_paging=False),
            extra_headers={"Prefer": "count=exact", "Range-Unit": "items"},
        )
        return parse_content_range(response.headers.get("content-range"))

    async def _request(
        self,
        method: str,
        params: List[Tuple[str, str]],
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Make a request with retry and circuit breaker.

        Raises:
            RecordSourceConnectionError: Network/timeout errors, or circuit open
            RecordSourceError subclasses: Classified error responses
        """
        if not await self.circuit_breaker.can_execute():
            raise RecordSourceConnectionError(
                "Record source circuit is open",
                details=self.endpoint,
            )

        try:
            response = await retry_with_backoff(
                self._do_request,
                method, params, extra_headers,
                config=self.retry_config,
                retryable_exceptions=(RecordSourceConnectionError,),
                operation=f"{method} {self.table}",
            )
        except RecordSourceConnectionError:
            await self.circuit_breaker.record_failure()
            raise

        await self.circuit_breaker.record_success()
        return response

    async def _do_request(
        self,
        method: str,
        params: List[Tuple[str, str]],
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Execute a single HTTP request (called by retry wrapper)."""
        if not self._client:
            await self.connect()

        headers = dict(extra_headers or {})
        cycle_id = get_cycle_id()
        if cycle_id:
            headers["X-Request-ID"] = cycle_id

        try:
            with Timer(f"orders_{method.lower()}", logger):
                response = await self._client.request(
                    method, self.endpoint, params=params, headers=headers or None,
                )
        except httpx.TimeoutException as e:
            raise RecordSourceConnectionError(
                f"Request timeout after {self.timeout}s", retry_after=5
            ) from e
        except httpx.RequestError as e:
            raise RecordSourceConnectionError(str(e)) from e

        if response.status_code >= 400:
            payload = None
            if method != "HEAD":
                try:
                    payload = response.json()
                except ValueError:
                    payload = {"message": response.text[:500]}
            error = classify_source_error(response.status_code, payload)
            logger.debug(
                f"Record source error {response.status_code}: {error}",
                extra={"status_code": response.status_code, "code": error.code},
            )
            raise error

        return response


__all__ = [
    "OrderFilter",
    "RecordQuery",
    "RecordSource",
    "RecordSourceError",
    "PostgrestRecordSource",
    "build_params",
    "parse_content_range",
]
