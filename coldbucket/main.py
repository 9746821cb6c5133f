"""Main FastAPI application module."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from coldbucket.api.content import router as content_router
from coldbucket.api.health import router as health_router
from coldbucket.core.config import settings
from coldbucket.core.events import create_start_app_handler, create_stop_app_handler
from coldbucket.core.logging import configure_logging
from coldbucket.middleware.correlation import CorrelationMiddleware
from coldbucket.middleware.errors import (
    ErrorHandlingMiddleware,
    register_error_handlers,
)
from coldbucket.middleware.metrics import MetricsMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(level=settings.LOG_LEVEL.lower(), json_logs=settings.JSON_LOGS)
    await create_start_app_handler(app)()
    try:
        yield
    finally:
        await create_stop_app_handler(app)()


app = FastAPI(
    title=settings.app_name,
    description="Cache-first access to files staged in archival buckets",
    version=settings.version,
    default_response_class=JSONResponse,
    lifespan=lifespan,
)

# Add middleware in order (inside -> out):
# 1. Correlation (adds request ID)
# 2. Metrics (tracks all requests)
# 3. Error handling (outermost, renders anything that escapes)
app.add_middleware(CorrelationMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
register_error_handlers(app)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(health_router)
app.include_router(content_router)
