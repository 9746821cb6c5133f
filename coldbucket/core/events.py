"""Application startup and shutdown events."""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import redis
from prometheus_client import Counter

from coldbucket.catalog.base import Catalog
from coldbucket.catalog.config import get_catalog
from coldbucket.clients.archive import ArchiveService, HttpArchiveService
from coldbucket.clients.content_store import ContentStore, IpfsContentStore
from coldbucket.core.config import settings
from coldbucket.core.logging import get_logger
from coldbucket.retrieval.coalescer import RetrievalCoalescer
from coldbucket.retrieval.inflight import Inflight, InflightSet, RedisInflightSet

# Prometheus metrics
REQUESTS_TOTAL = Counter(
    "coldbucket_http_requests_total",
    "Total number of HTTP requests",
    labelnames=["method", "path"],
)

RESPONSES_TOTAL = Counter(
    "coldbucket_http_responses_total",
    "Total number of HTTP responses",
    labelnames=["status_code"],
)

logger = get_logger(__name__)


def create_content_store() -> IpfsContentStore:
    """Create the content store client from settings."""
    return IpfsContentStore(
        settings.CONTENT_STORE_API_URL, timeout=settings.HTTP_TIMEOUT
    )


def create_archive_service() -> HttpArchiveService:
    """Create the archive service client from settings."""
    return HttpArchiveService(
        settings.ARCHIVE_SERVICE_URL,
        token=settings.ARCHIVE_SERVICE_TOKEN,
        timeout=settings.HTTP_TIMEOUT,
    )


def create_inflight_set() -> Inflight:
    """Create the in-flight set selected by ``INFLIGHT_BACKEND``.

    The in-process set only coalesces fetches within one server process;
    the Redis set coalesces across every process sharing ``REDIS_URL``.
    """
    if settings.INFLIGHT_BACKEND == "redis":
        client = redis.from_url(settings.REDIS_URL)
        logger.info("inflight_backend_redis", redis_url=settings.REDIS_URL)
        return RedisInflightSet(client, ttl=settings.INFLIGHT_TTL_SECONDS)
    return InflightSet()


class AppState:
    """Long-lived objects shared by request handlers."""

    def __init__(
        self,
        content_store: ContentStore,
        archive: ArchiveService,
        catalog: Catalog,
        coalescer: RetrievalCoalescer,
    ) -> None:
        self.content_store = content_store
        self.archive = archive
        self.catalog = catalog
        self.coalescer = coalescer

    async def health_check(self) -> dict[str, Any]:
        """Check health of all components.

        Returns:
            Dict containing health status of all components
        """
        health_status: dict[str, Any] = {
            "status": "healthy",
            "components": {
                "content_store": await self.content_store.ping(),
                "catalog": self.catalog.ping(),
            },
            "details": {
                "pending_fetches": self.coalescer.pending_fetches,
            },
        }

        if not all(health_status["components"].values()):
            health_status["status"] = "degraded"
            logger.warning("health_check_degraded", **health_status["components"])

        return health_status


def create_start_app_handler(app: Any) -> Callable[[], Awaitable[None]]:
    """Create startup event handler.

    Args:
        app: FastAPI application instance

    Returns:
        Startup handler function
    """

    async def start_app() -> None:
        content_store = create_content_store()
        archive = create_archive_service()
        catalog = get_catalog()
        coalescer = RetrievalCoalescer(
            content_store,
            catalog,
            archive,
            inflight=create_inflight_set(),
            scratch_dir=Path(settings.SCRATCH_DIR) if settings.SCRATCH_DIR else None,
        )

        app.state.services = AppState(content_store, archive, catalog, coalescer)

        logger.info(
            "application_started",
            content_store=settings.CONTENT_STORE_API_URL,
            archive_service=settings.ARCHIVE_SERVICE_URL,
            catalog=settings.CATALOG_PATH,
            inflight_backend=settings.INFLIGHT_BACKEND,
        )

    return start_app


def create_stop_app_handler(app: Any) -> Callable[[], Awaitable[None]]:
    """Create shutdown event handler.

    Outstanding bucket fetches are cancelled, which releases their in-flight
    claims, before the HTTP clients are closed.

    Args:
        app: FastAPI application instance

    Returns:
        Shutdown handler function
    """

    async def stop_app() -> None:
        state: AppState | None = getattr(app.state, "services", None)
        if state is None:
            return

        await state.coalescer.aclose()
        await state.content_store.aclose()
        await state.archive.aclose()
        logger.info("application_stopped")

    return stop_app
