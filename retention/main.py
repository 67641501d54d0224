"""
FastAPI application with database pool lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from retention.config import settings
from retention.db.pool import db_pool
from retention.features.interventions.api.router import router as interventions_router
from retention.infrastructure.observability.logging import get_logger, setup_logging
from retention.routes import health

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

    logger.info("All services initialized successfully", services=["database_pool"])

    yield

    logger.info("Application shutting down")
    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Retention Intervention Engine",
    description="Churn scoring, guardrailed outreach and approval workflow for member retention",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(interventions_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
