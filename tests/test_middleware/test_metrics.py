"""Tests for metrics middleware."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from coldbucket.middleware.metrics import MetricsMiddleware


def _requests(path: str) -> float:
    return (
        REGISTRY.get_sample_value(
            "coldbucket_http_requests_total", {"method": "GET", "path": path}
        )
        or 0.0
    )


def _responses(status_code: str) -> float:
    return (
        REGISTRY.get_sample_value(
            "coldbucket_http_responses_total", {"status_code": status_code}
        )
        or 0.0
    )


@pytest.fixture
def metrics_app() -> FastAPI:
    app = FastAPI()

    @app.get("/items/{path:path}")
    async def _items(path: str) -> dict[str, str]:
        return {"path": path}

    app.add_middleware(MetricsMiddleware)
    return app


@pytest_asyncio.fixture
async def metrics_client(metrics_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=metrics_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_requests_are_labelled_by_route(metrics_client: AsyncClient) -> None:
    """Test every content path shares the route template label."""
    before = _requests("/items/{path:path}")

    await metrics_client.get("/items/root/a.txt")
    await metrics_client.get("/items/root/b.txt")

    assert _requests("/items/{path:path}") == before + 2
    assert _requests("/items/root/a.txt") == 0.0


@pytest.mark.asyncio
async def test_responses_are_counted_by_status(metrics_client: AsyncClient) -> None:
    """Test responses are counted per status code."""
    ok_before = _responses("200")
    missing_before = _responses("404")

    await metrics_client.get("/items/x")
    await metrics_client.get("/unknown")

    assert _responses("200") == ok_before + 1
    assert _responses("404") == missing_before + 1
