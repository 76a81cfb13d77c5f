# app/main.py
"""
Account deletion service: FastAPI app with database pool lifecycle and
classification registry validation at startup.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import cron, health
from app.services.data_management.classification_registry import (
    verify_registry_against_database,
)

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the pool, refuse to start if the registry does not match the schema."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        await db_pool.initialize()
        await verify_registry_against_database()
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        await db_pool.close()
        raise

    yield

    logger.info("Application shutting down")
    await db_pool.close()


app = FastAPI(
    title="Account Deletion Service",
    description="Scheduled erasure of users whose deletion grace period has expired",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(cron.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
