"""
FastAPI web application for the sales dashboard.
"""
import os
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse, JSONResponse
from starlette.middleware.gzip import GZipMiddleware

from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from web.config import VERSION, WEB_HOST, WEB_PORT
from web.routes import api
from web.routes.api._deps import limiter
from web.middleware import RequestLoggingMiddleware, RequestTimeoutMiddleware
from web.services import sales_service
from sales_engine.config import validate_config, ConfigurationError
from sales_engine.exceptions import ValidationError
from sales_engine.observability import setup_logging, get_logger

# Configure structured logging
# Use JSON format in production (LOG_FORMAT=json), human-readable otherwise
log_format = os.getenv("LOG_FORMAT", "text")
log_level = os.getenv("LOG_LEVEL", "INFO")
setup_logging(level=log_level, json_format=(log_format == "json"))
logger = get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Songsales Dashboard",
    description="Sales chart and order stats for the admin dashboard",
    version=VERSION,
    default_response_class=ORJSONResponse
)

# Add rate limiter to app state
app.state.limiter = limiter


# Custom rate limit exceeded handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": "Too many requests. Please try again later.",
            "retry_after": exc.detail
        }
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "field": exc.field, "detail": str(exc)}
    )


# Correlation IDs and access log
app.add_middleware(RequestLoggingMiddleware)

# Added after logging, so it wraps it and also bounds the logged request
app.add_middleware(RequestTimeoutMiddleware)

# Add Gzip compression (min 500 bytes to compress)
app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(api.router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    logger.info("Songsales dashboard starting...")

    if sales_service.is_configured():
        logger.info("Sales services pre-configured, skipping source setup")
        return

    # Validate configuration early - fail fast with clear errors
    try:
        validate_config(require_source=True)
        logger.info("Configuration validated")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise SystemExit(1)

    await sales_service.init_services()
    logger.info("Dashboard ready")


@app.on_event("shutdown")
async def shutdown_event():
    try:
        await sales_service.close_services()
    except Exception as e:
        logger.warning(f"Error closing sales services: {e}")
    logger.info("Songsales dashboard stopped")


def run() -> None:
    """Serve the dashboard API with uvicorn."""
    import uvicorn
    uvicorn.run("web.main:app", host=WEB_HOST, port=WEB_PORT)


if __name__ == "__main__":
    run()
