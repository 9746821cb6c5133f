"""Error handling middleware."""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.status import (
    HTTP_404_NOT_FOUND,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from coldbucket.core.config import settings
from coldbucket.core.errors import (
    BackendUnavailableError,
    ColdbucketError,
    DataIntegrityError,
    TreeNotFoundError,
)
from coldbucket.core.logging import get_logger
from coldbucket.middleware.correlation import CORRELATION_HEADER

logger = get_logger(__name__)

HTTP_422 = 422

# Checked in order, the first matching base class wins
ERROR_STATUS_CODES: list[tuple[type[Exception], int]] = [
    (TreeNotFoundError, HTTP_404_NOT_FOUND),
    (BackendUnavailableError, HTTP_503_SERVICE_UNAVAILABLE),
    (DataIntegrityError, HTTP_500_INTERNAL_SERVER_ERROR),
    (RequestValidationError, HTTP_422),
]


def status_code_for(exc: Exception) -> int:
    """Map an exception to the HTTP status reported to the client."""
    if isinstance(exc, StarletteHTTPException):
        return exc.status_code
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return HTTP_500_INTERNAL_SERVER_ERROR


def _error_detail(exc: Exception) -> str:
    if isinstance(exc, StarletteHTTPException):
        return str(exc.detail)
    if isinstance(exc, RequestValidationError):
        return str(exc.errors())
    return str(exc.args[0] if exc.args else exc)


def error_response(request: Request, exc: Exception) -> JSONResponse:
    """
    Render an exception as the JSON error body shared by every endpoint.

    Args:
    ----
        request: The request that caused the exception
        exc: The exception to render

    Returns:
    -------
        A JSON response with error details
    """
    error_type = exc.__class__.__name__
    status_code = status_code_for(exc)
    detail = _error_detail(exc)
    correlation_id = getattr(request.state, "correlation_id", None)

    log_fields = {
        "error_type": error_type,
        "error_message": detail,
        "status_code": status_code,
        "path": request.url.path,
        "method": request.method,
        "correlation_id": correlation_id,
    }
    if isinstance(exc, BackendUnavailableError):
        log_fields["backend"] = exc.backend

    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("request_error", **log_fields)
    else:
        logger.info("request_rejected", **log_fields)

    response = JSONResponse(
        status_code=status_code,
        content={
            "error": error_type,
            "message": detail,
            "status_code": status_code,
            "correlation_id": correlation_id if correlation_id else "unknown",
        },
    )
    if correlation_id:
        response.headers[CORRELATION_HEADER] = correlation_id
    if status_code == HTTP_503_SERVICE_UNAVAILABLE:
        response.headers["Retry-After"] = str(settings.RETRY_AFTER_SECONDS)
    return response


async def handle_exception(request: Request, exc: Exception) -> JSONResponse:
    """Exception handler registered on the FastAPI application."""
    return error_response(request, exc)


def register_error_handlers(app: FastAPI) -> None:
    """Render HTTP, validation and coldbucket errors in the shared format."""
    app.add_exception_handler(StarletteHTTPException, handle_exception)
    app.add_exception_handler(RequestValidationError, handle_exception)
    app.add_exception_handler(ColdbucketError, handle_exception)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns exceptions that escape every handler into JSON error responses."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """
        Process the request/response cycle and handle errors.

        Args:
        ----
            request: The incoming request
            call_next: The next handler in the middleware chain

        Returns:
        -------
            The response from downstream handlers or error response
        """
        try:
            return await call_next(request)
        except Exception as exc:
            return error_response(request, exc)
