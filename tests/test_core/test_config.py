"""Tests for application configuration settings."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from coldbucket.core.config import Settings


class TestSettingsDefaults:
    """Test default values."""

    def test_should_have_staging_defaults(self):
        """Buckets default to one gigabyte and the system temp dir."""
        settings = Settings(_env_file=None)

        assert settings.MAX_BUCKET_SIZE == 1_000_000_000
        assert settings.SCRATCH_DIR is None

    def test_should_default_to_in_process_inflight_set(self):
        """Fetch coalescing is per process unless Redis is selected."""
        settings = Settings(_env_file=None)

        assert settings.INFLIGHT_BACKEND == "memory"
        assert settings.INFLIGHT_TTL_SECONDS == 3600
        assert settings.RETRY_AFTER_SECONDS == 30


class TestSettingsEnvironment:
    """Test overrides and validation from the environment."""

    def test_should_override_backend_urls(self):
        """Backend endpoints are read from the environment."""
        env = {
            "CONTENT_STORE_API_URL": "http://ipfs:5001",
            "ARCHIVE_SERVICE_URL": "http://archive:6002",
            "ARCHIVE_SERVICE_TOKEN": "secret",
        }
        with patch.dict(os.environ, env):
            settings = Settings(_env_file=None)

        assert settings.CONTENT_STORE_API_URL == "http://ipfs:5001"
        assert settings.ARCHIVE_SERVICE_URL == "http://archive:6002"
        assert settings.ARCHIVE_SERVICE_TOKEN == "secret"

    def test_should_override_bucket_size(self):
        """The bucket bound can be tuned per deployment."""
        with patch.dict(os.environ, {"MAX_BUCKET_SIZE": "4096"}):
            settings = Settings(_env_file=None)

        assert settings.MAX_BUCKET_SIZE == 4096

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("MAX_BUCKET_SIZE", "0"),
            ("MAX_BUCKET_SIZE", "large"),
            ("HTTP_TIMEOUT", "-1"),
            ("RETRY_AFTER_SECONDS", "-5"),
            ("INFLIGHT_BACKEND", "memcached"),
        ],
    )
    def test_should_reject_invalid_values(self, name, value):
        """Invalid settings fail at startup."""
        with patch.dict(os.environ, {name: value}):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_should_use_test_catalog_when_testing(self, tmp_path):
        """Tests can point the catalog at a throwaway database."""
        test_path = str(tmp_path / "test.db")
        with patch.dict(
            os.environ, {"TESTING": "true", "TEST_CATALOG_PATH": test_path}
        ):
            settings = Settings(_env_file=None)

        assert settings.CATALOG_PATH == test_path
