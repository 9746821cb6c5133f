"""Exception types shared across coldbucket."""


class ColdbucketError(Exception):
    """Base class for all coldbucket errors."""


class BackendUnavailableError(ColdbucketError):
    """Raised when a backend cannot be reached or rejects a request."""

    backend = "backend"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize error.

        Args:
            message: Human readable description
            status_code: HTTP status returned by the backend, if any
        """
        super().__init__(message)
        self.backend_status_code = status_code


class ContentStoreError(BackendUnavailableError):
    """Raised when a content store operation fails."""

    backend = "content_store"


class ArchiveServiceError(BackendUnavailableError):
    """Raised when an archive service operation fails."""

    backend = "archive_service"


class WatchStreamClosedError(ArchiveServiceError):
    """Raised when the job watch stream ends while jobs are still pending."""


class CatalogError(BackendUnavailableError):
    """Raised when the catalog cannot be opened or queried."""

    backend = "catalog"


class DataIntegrityError(ColdbucketError):
    """Raised when stored or enumerated data is inconsistent."""


class TreeNotFoundError(ColdbucketError):
    """Raised when no tree is recorded for a root content id."""

    def __init__(self, root_cid: str) -> None:
        super().__init__(f"No tree recorded for root {root_cid}")
        self.root_cid = root_cid


class InflightStoreError(BackendUnavailableError):
    """Raised when the shared in-flight set cannot be reached."""

    backend = "inflight_store"
