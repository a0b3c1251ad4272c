"""
Logging setup, read-cycle correlation and timing helpers.

Usage:
    from sales_engine.observability import setup_logging, get_logger, cycle_context

    # In app startup:
    setup_logging()

    # In modules:
    logger = get_logger(__name__)

    # Around one cache read cycle:
    with cycle_context() as cycle_id:
        logger.info("Refreshing sales cache", extra={"window": "30d"})
"""
import logging
import json
import time
import uuid
from contextvars import ContextVar
from typing import Optional
from datetime import datetime, timezone

# Identifier of the read cycle (or HTTP request) currently running
_cycle_id: ContextVar[Optional[str]] = ContextVar("cycle_id", default=None)

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "asctime", "taskName",
}


def get_cycle_id() -> Optional[str]:
    """Get the current cycle ID from context."""
    return _cycle_id.get()


def set_cycle_id(cycle_id: str) -> None:
    """Set cycle ID in context."""
    _cycle_id.set(cycle_id)


def generate_cycle_id() -> str:
    """Generate a new short cycle ID."""
    return uuid.uuid4().hex[:8]


class cycle_context:
    """Context manager binding a cycle ID for the duration of a block."""

    def __init__(self, cycle_id: Optional[str] = None):
        self.cycle_id = cycle_id or get_cycle_id() or generate_cycle_id()
        self.token = None

    def __enter__(self) -> str:
        self.token = _cycle_id.set(self.cycle_id)
        return self.cycle_id

    def __exit__(self, *args):
        _cycle_id.reset(self.token)


def _extras(record: logging.LogRecord) -> dict:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """JSON log formatter: one object per line with cycle_id and extras."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cycle_id = get_cycle_id()
        if cycle_id:
            log_entry["cycle_id"] = cycle_id

        log_entry.update(_extras(record))

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable log formatter.

    Format: TIMESTAMP - LEVEL - LOGGER [CYCLE_ID] - MESSAGE | extras
    """

    def format(self, record: logging.LogRecord) -> str:
        cycle_id = get_cycle_id()
        cycle_str = f" [{cycle_id}]" if cycle_id else ""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        base_msg = f"{timestamp} - {record.levelname:8} - {record.name}{cycle_str} - {record.getMessage()}"

        extras = _extras(record)
        if extras:
            base_msg += f" | {extras}"

        if record.exc_info:
            base_msg += f"\n{self.formatException(record.exc_info)}"

        return base_msg


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_libs: bool = False
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON logs; otherwise human-readable
        include_libs: If True, also log from third-party libraries
    """
    formatter = StructuredFormatter() if json_format else HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not include_libs:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class Timer:
    """
    Context manager for timing operations.

    Usage:
        with Timer("fetch_page", logger) as t:
            rows = await source.select(query)
        print(f"Page took {t.elapsed_ms}ms")
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None,
                 warn_threshold_ms: float = 1000):
        self.name = name
        self.logger = logger
        self.warn_threshold_ms = warn_threshold_ms
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000

        if self.logger:
            level = logging.WARNING if self.elapsed_ms > self.warn_threshold_ms else logging.DEBUG
            self.logger.log(
                level,
                f"{self.name} completed",
                extra={"duration_ms": round(self.elapsed_ms, 2)}
            )
