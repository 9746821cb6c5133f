"""Content and health endpoint tests."""

import asyncio

import pytest
import pytest_asyncio
from fastapi import status
from httpx import AsyncClient

from coldbucket.core.config import settings
from coldbucket.core.errors import CatalogError
from coldbucket.staging import StagingPipeline


@pytest_asyncio.fixture
async def root_cid(content_store, archive, catalog, sample_tree) -> str:
    pipeline = StagingPipeline(content_store, archive, catalog, max_bucket_size=1000)
    tree = await pipeline.stage_directory(sample_tree)
    return tree.root_cid


@pytest.mark.asyncio
async def test_cached_content_is_served(
    api_client: AsyncClient, root_cid: str
) -> None:
    """Test content held by the content store is returned directly."""
    response = await api_client.get(f"/content/{root_cid}/docs/c.txt")

    assert response.status_code == status.HTTP_200_OK
    assert response.content == b"c" * 50
    assert response.headers["content-type"].startswith("text/plain")
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_binary_content_type(api_client: AsyncClient, root_cid: str) -> None:
    """Test unknown extensions are served as octet streams."""
    response = await api_client.get(f"/content/{root_cid}/docs/b.bin")

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"] == "application/octet-stream"


@pytest.mark.asyncio
async def test_evicted_content_is_accepted_and_fetched_once(
    api_client: AsyncClient, root_cid: str, content_store, archive, services
) -> None:
    """Test concurrent misses get 202 and share a single bucket fetch."""
    content_store.evict_files()
    archive.fetch_gate = asyncio.Event()

    responses = await asyncio.gather(
        *(api_client.get(f"/content/{root_cid}/a.txt") for _ in range(5))
    )

    for response in responses:
        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.headers["Retry-After"] == str(settings.RETRY_AFTER_SECONDS)
        assert response.json()["status"] == "fetching"
        assert response.json()["bucket_id"] == "bucket-1"

    await asyncio.sleep(0)
    archive.fetch_gate.set()
    await services.coalescer.wait_idle()
    assert archive.fetch_calls == ["bucket-1"]

    response = await api_client.get(f"/content/{root_cid}/a.txt")
    assert response.status_code == status.HTTP_200_OK
    assert response.content == b"a" * 300


@pytest.mark.asyncio
async def test_directory_is_listed(
    api_client: AsyncClient, root_cid: str, content_store, archive
) -> None:
    """Test cached directories return their children on every request."""
    content_store.evict_files()

    for _ in range(2):
        response = await api_client.get(f"/content/{root_cid}/docs/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "path": f"{root_cid}/docs",
            "entries": ["b.bin", "c.txt"],
        }

    assert archive.fetch_calls == []


@pytest.mark.asyncio
async def test_ipfs_alias(api_client: AsyncClient, root_cid: str) -> None:
    """Test gateway-style paths are served like content paths."""
    response = await api_client.get(f"/ipfs/{root_cid}/a.txt")

    assert response.status_code == status.HTTP_200_OK
    assert response.content == b"a" * 300


@pytest.mark.asyncio
async def test_unknown_path_is_not_found(api_client: AsyncClient) -> None:
    """Test unknown paths return the shared error format."""
    response = await api_client.get(
        "/content/unknown-root/missing.txt",
        headers={"X-Request-ID": "test-missing"},
    )

    assert response.status_code == status.HTTP_404_NOT_FOUND
    data = response.json()
    assert data["error"] == "HTTPException"
    assert data["message"] == "Unknown path: unknown-root/missing.txt"
    assert data["status_code"] == status.HTTP_404_NOT_FOUND
    assert data["correlation_id"] == "test-missing"
    assert response.headers["X-Request-ID"] == "test-missing"


@pytest.mark.asyncio
async def test_backend_failure_is_unavailable(
    api_client: AsyncClient, catalog, mocker
) -> None:
    """Test backend errors map to 503 with a retry hint."""
    mocker.patch.object(catalog, "find_entry", side_effect=CatalogError("locked"))

    response = await api_client.get("/content/root/a.txt")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["error"] == "CatalogError"
    assert response.headers["Retry-After"] == str(settings.RETRY_AFTER_SECONDS)


@pytest.mark.asyncio
async def test_health_check(api_client: AsyncClient) -> None:
    """Test health reports every component."""
    response = await api_client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert data["components"] == {"content_store": True, "catalog": True}
    assert data["details"]["pending_fetches"] == 0
    assert data["version"] == settings.version
    assert data["correlation_id"]


@pytest.mark.asyncio
async def test_health_check_degraded(
    api_client: AsyncClient, content_store, mocker
) -> None:
    """Test an unreachable content store degrades health."""
    mocker.patch.object(content_store, "ping", return_value=False)

    response = await api_client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_metrics_endpoint(api_client: AsyncClient) -> None:
    """Test Prometheus metrics are exposed."""
    await api_client.get("/health")

    response = await api_client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    assert "coldbucket_http_requests_total" in response.text
    assert 'path="/health"' in response.text
