"""
Web dashboard configuration.
"""
from sales_engine.config import config, VERSION

# Web server settings
WEB_HOST = config.web.host
WEB_PORT = config.web.port

# Rate limits
DEFAULT_RATE_LIMIT = f"{config.web.rate_limit_per_minute}/minute"
EXPORT_RATE_LIMIT = "10/minute"
HEALTH_RATE_LIMIT = "60/minute"

CURRENCY = config.currency

__all__ = [
    "VERSION",
    "WEB_HOST",
    "WEB_PORT",
    "DEFAULT_RATE_LIMIT",
    "EXPORT_RATE_LIMIT",
    "HEALTH_RATE_LIMIT",
    "CURRENCY",
]
