"""Test configuration."""

import os
from collections.abc import Generator
from pathlib import Path

import pytest
from pytest import Config

from coldbucket.core.logging import configure_logging

fixture = pytest.fixture

pytest_plugins: list[str] = [
    "tests.fixtures.api",
    "tests.fixtures.backends",
]


@fixture(scope="session")
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@fixture(autouse=True)
def isolated_catalog(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Point the catalog singleton at a per-test database file."""
    from coldbucket.catalog.config import reset_catalog
    from coldbucket.core.config import settings

    db_path = tmp_path / "singleton-catalog.db"
    monkeypatch.setattr(settings, "CATALOG_PATH", str(db_path))
    reset_catalog()

    yield db_path

    reset_catalog()


def pytest_configure(config: Config) -> None:
    """Configure pytest.

    Args:
        config: Pytest configuration object
    """
    os.environ["TESTING"] = "true"

    # Configure logging for test environment
    configure_logging(testing=True)
