"""Application configuration."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings.

    Environment variables will be loaded and validated using Pydantic.
    """

    app_name: str = "coldbucket"
    version: str = "0.1.0"

    # Content store (IPFS HTTP API)
    CONTENT_STORE_API_URL: str = "http://127.0.0.1:5001"

    # Archive service
    ARCHIVE_SERVICE_URL: str = "http://127.0.0.1:5002"
    ARCHIVE_SERVICE_TOKEN: str | None = None

    # Catalog Settings
    CATALOG_PATH: str = "catalog.db"

    # Staging Settings
    MAX_BUCKET_SIZE: int = Field(default=1_000_000_000, gt=0)  # 1 GB
    SCRATCH_DIR: str | None = None  # None uses the system temp dir

    # Backend timeouts in seconds
    HTTP_TIMEOUT: float = Field(default=30.0, gt=0)

    # Retrieval Settings
    HOST: str = "0.0.0.0"  # nosec B104
    PORT: int = 8000
    RETRY_AFTER_SECONDS: int = Field(default=30, ge=0)
    INFLIGHT_BACKEND: Literal["memory", "redis"] = "memory"
    INFLIGHT_TTL_SECONDS: int = Field(default=3600, gt=0)

    # Redis Settings (only used by the redis in-flight backend)
    REDIS_URL: str = "redis://localhost:6379"

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",  # Allow extra fields in environment
    )

    @model_validator(mode="after")
    def use_test_configs_for_testing(self) -> "Settings":
        """Use a separate catalog for tests to ensure isolation."""
        import os

        if os.getenv("TESTING") == "true":
            test_catalog_path = os.getenv("TEST_CATALOG_PATH")
            if test_catalog_path:
                self.CATALOG_PATH = test_catalog_path
        return self


# Create settings instance
settings = Settings()
