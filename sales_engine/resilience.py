"""
Backoff and circuit breaking for record source requests.

A read cycle issues many sequential page requests. Transient network
failures are retried a few times per page; a source that keeps failing
trips the breaker so later pages (and later cycles) fail fast instead of
waiting out every timeout.
"""
import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from sales_engine.exceptions import RecordSourceConnectionError
from sales_engine.observability import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    """Per-request retry policy."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        raw = self.base_delay * (self.exponential_base ** (attempt - 1))
        capped = min(raw, self.max_delay)
        return capped * (1 + self.jitter * random.random())


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_requests: int = 1


@dataclass
class CircuitBreaker:
    """
    Tracks consecutive failed requests to one record source.

    closed -> open after `failure_threshold` failures in a row.
    open -> half_open once `recovery_timeout` seconds have passed; a
    limited number of trial requests go through. A trial success closes
    the circuit, a trial failure opens it again.
    """
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    name: str = "source"
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0
    half_open_attempts: int = 0

    def __post_init__(self):
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def retry_after(self) -> float:
        """Seconds until an open circuit admits a trial request (0 otherwise)."""
        if not self.is_open:
            return 0.0
        elapsed = time.time() - self.last_failure_time
        return max(0.0, self.config.recovery_timeout - elapsed)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failure_count,
            "retry_after": round(self.retry_after, 1),
        }

    async def can_execute(self) -> bool:
        async with self._lock:
            if self.state == CircuitState.OPEN:
                if self.retry_after > 0:
                    return False
                logger.info(f"Circuit for {self.name} half-open, allowing a trial request")
                self.state = CircuitState.HALF_OPEN
                self.half_open_attempts = 0

            if self.state == CircuitState.CLOSED:
                return True

            if self.half_open_attempts >= self.config.half_open_requests:
                return False
            self.half_open_attempts += 1
            return True

    async def record_success(self) -> None:
        async with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                logger.info(f"Circuit for {self.name} closed, source recovered")
            self.state = CircuitState.CLOSED
            self.failure_count = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()

            if self.state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit for {self.name} re-opened, trial request failed")
                self.state = CircuitState.OPEN
            elif self.failure_count >= self.config.failure_threshold and not self.is_open:
                logger.warning(
                    f"Circuit for {self.name} opened after {self.failure_count} failures"
                )
                self.state = CircuitState.OPEN


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Tuple[Type[BaseException], ...] = (RecordSourceConnectionError,),
    operation: str = "request",
    **kwargs
) -> Any:
    """
    Await `func(*args, **kwargs)`, retrying retryable errors with backoff.

    Classified source errors (missing column, permission denied, ...) are
    not in the default retryable set and propagate on the first attempt.

    Raises:
        The last retryable error once `config.max_attempts` is exhausted.
    """
    config = config or RetryConfig()
    attempt = 1

    while True:
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt >= config.max_attempts:
                logger.error(
                    f"{operation} failed after {attempt} attempts",
                    extra={"attempt": attempt, "error": str(e)}
                )
                raise

            delay = config.delay_for(attempt)
            logger.warning(
                f"{operation} attempt {attempt} failed, retrying in {delay:.2f}s",
                extra={"attempt": attempt, "delay": delay, "error": str(e)}
            )
            await asyncio.sleep(delay)
            attempt += 1
