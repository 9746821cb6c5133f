"""Health check endpoint."""

from typing import Any

from fastapi import APIRouter, Depends, Request

from coldbucket.api.content import get_services
from coldbucket.core.config import settings
from coldbucket.core.events import AppState

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    request: Request, services: AppState = Depends(get_services)
) -> dict[str, Any]:
    """
    Health check endpoint.

    Returns
    -------
        Dict containing health status information
    """
    health = await services.health_check()
    health["version"] = settings.version
    health["correlation_id"] = getattr(request.state, "correlation_id", None)
    return health
