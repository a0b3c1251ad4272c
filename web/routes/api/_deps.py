"""Shared dependencies for API route modules."""
import time

from slowapi import Limiter
from slowapi.util import get_remote_address

from sales_engine.observability import get_logger
from sales_engine.validators import (
    validate_window,
    validate_selected_month,
    validate_date_range,
)
from sales_engine.exceptions import ValidationError
from web.services import sales_service

# Shared limiter instance
limiter = Limiter(key_func=get_remote_address)

# Track startup time for uptime calculation
START_TIME = time.time()

__all__ = [
    "limiter",
    "get_logger",
    "sales_service",
    "validate_window",
    "validate_selected_month",
    "validate_date_range",
    "ValidationError",
    "START_TIME",
]
