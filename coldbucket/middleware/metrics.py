"""Request metrics middleware for Prometheus monitoring."""

import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from coldbucket.core.events import REQUESTS_TOTAL, RESPONSES_TOTAL
from coldbucket.core.logging import get_logger

logger = get_logger(__name__)


def _route_path(request: Request) -> str:
    """Route template of the request, so content paths share one label."""
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template:
        return str(template)
    return str(request.url.path).rstrip("/") or "/"


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect request/response metrics.

    Records:
    - Total requests by method and route
    - Total responses by status code
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """
        Process the request/response cycle and record metrics.

        Args:
        ----
            request: The incoming request
            call_next: The next handler in the middleware chain

        Returns:
        -------
            The response from downstream handlers
        """
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            REQUESTS_TOTAL.labels(method=request.method, path=_route_path(request)).inc()
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
            )
            raise
        duration = time.time() - start_time

        REQUESTS_TOTAL.labels(method=request.method, path=_route_path(request)).inc()
        RESPONSES_TOTAL.labels(status_code=str(response.status_code)).inc()

        logger.info(
            "request_processed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=duration,
        )
        return response
