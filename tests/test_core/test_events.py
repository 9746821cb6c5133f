"""Tests for application startup and shutdown events."""

import asyncio

import pytest
from fastapi import FastAPI

from coldbucket.clients.archive import HttpArchiveService
from coldbucket.clients.content_store import IpfsContentStore
from coldbucket.core import events
from coldbucket.core.events import (
    AppState,
    create_archive_service,
    create_content_store,
    create_inflight_set,
    create_start_app_handler,
    create_stop_app_handler,
)
from coldbucket.retrieval import InflightSet, RedisInflightSet, RetrievalCoalescer


@pytest.mark.asyncio
async def test_clients_are_built_from_settings(monkeypatch) -> None:
    """Test backend clients use the configured endpoints."""
    monkeypatch.setattr(events.settings, "CONTENT_STORE_API_URL", "http://ipfs:5001/")
    monkeypatch.setattr(events.settings, "ARCHIVE_SERVICE_URL", "http://archive:6002")
    monkeypatch.setattr(events.settings, "HTTP_TIMEOUT", 3.0)

    content_store = create_content_store()
    archive = create_archive_service()

    assert isinstance(content_store, IpfsContentStore)
    assert content_store.api_url == "http://ipfs:5001"
    assert isinstance(archive, HttpArchiveService)
    assert archive.base_url == "http://archive:6002"
    assert archive.timeout == 3.0

    await content_store.aclose()
    await archive.aclose()


def test_inflight_set_defaults_to_memory(monkeypatch) -> None:
    """Test the in-process set is used unless Redis is selected."""
    monkeypatch.setattr(events.settings, "INFLIGHT_BACKEND", "memory")

    assert isinstance(create_inflight_set(), InflightSet)


def test_inflight_set_uses_redis(monkeypatch, mocker) -> None:
    """Test the Redis set connects to the configured server."""
    monkeypatch.setattr(events.settings, "INFLIGHT_BACKEND", "redis")
    monkeypatch.setattr(events.settings, "REDIS_URL", "redis://cache:6379/2")
    monkeypatch.setattr(events.settings, "INFLIGHT_TTL_SECONDS", 120)
    from_url = mocker.patch("coldbucket.core.events.redis.from_url")

    inflight = create_inflight_set()

    assert isinstance(inflight, RedisInflightSet)
    assert inflight.ttl == 120
    from_url.assert_called_once_with("redis://cache:6379/2")


@pytest.mark.asyncio
async def test_health_check_reports_components(content_store, archive, catalog) -> None:
    """Test health combines content store and catalog checks."""
    coalescer = RetrievalCoalescer(content_store, catalog, archive)
    state = AppState(content_store, archive, catalog, coalescer)

    health = await state.health_check()

    assert health == {
        "status": "healthy",
        "components": {"content_store": True, "catalog": True},
        "details": {"pending_fetches": 0},
    }


@pytest.mark.asyncio
async def test_start_and_stop_handlers(content_store, archive, mocker) -> None:
    """Test startup installs services and shutdown closes them."""
    mocker.patch("coldbucket.core.events.create_content_store", return_value=content_store)
    mocker.patch("coldbucket.core.events.create_archive_service", return_value=archive)
    app = FastAPI()

    await create_start_app_handler(app)()

    services = app.state.services
    assert isinstance(services, AppState)
    assert services.content_store is content_store
    assert isinstance(services.coalescer.inflight, InflightSet)

    archive.fetch_gate = asyncio.Event()
    services.coalescer.ensure_fetch("bucket-0")
    await asyncio.sleep(0)

    await create_stop_app_handler(app)()

    assert services.coalescer.pending_fetches == 0
    assert "bucket-0" not in services.coalescer.inflight
    assert archive.closed


@pytest.mark.asyncio
async def test_stop_handler_without_startup() -> None:
    """Test shutdown is a no-op when startup never ran."""
    await create_stop_app_handler(FastAPI())()
