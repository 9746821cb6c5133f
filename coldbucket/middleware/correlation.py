"""Request correlation ids for log tracing."""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from structlog.contextvars import bind_contextvars, clear_contextvars

CORRELATION_HEADER = "X-Request-ID"


def correlation_id_from(header_value: str | None) -> str:
    """Reuse a client supplied id when it is a UUID or a ``test-`` id."""
    if header_value:
        if header_value.startswith("test-"):
            return header_value
        try:
            return str(uuid.UUID(header_value))
        except ValueError:
            pass
    return str(uuid.uuid4())


class CorrelationMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with a correlation id.

    The id and the requested path are bound to the structlog context before
    the endpoint runs. Bucket fetches started by the request are created
    inside that context, so their log lines carry the id of the request
    that triggered them.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        clear_contextvars()

        correlation_id = correlation_id_from(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id
        bind_contextvars(correlation_id=correlation_id, request_path=request.url.path)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
