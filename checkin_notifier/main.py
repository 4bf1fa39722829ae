"""
FastAPI application: admin dead-letter endpoints, cron trigger and health.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from checkin_notifier.config import settings
from checkin_notifier.db.pool import db_pool
from checkin_notifier.features.email_delivery import email_failures_router
from checkin_notifier.features.reminders import cron_router
from checkin_notifier.infrastructure.observability.logging import (
    get_logger,
    log_request,
    setup_logging,
)
from checkin_notifier.middleware.request_context import RequestContextMiddleware
from checkin_notifier.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup and close it on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize database pool", error=str(e))
        raise

    logger.info("All services initialized successfully", email_provider=settings.EMAIL_PROVIDER)

    yield

    logger.info("Application shutting down")
    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Check-in Notifier",
    description="Check-in reminder delivery with retry and dead-letter recovery",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(cron_router)
app.include_router(email_failures_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
        request_id=getattr(request.state, "request_id", None),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
