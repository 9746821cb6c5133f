"""Configuration for the catalog."""

from pathlib import Path
from typing import Optional

from coldbucket.catalog.store import SqliteCatalog
from coldbucket.core.config import settings

# Global instance
_catalog_instance: Optional[SqliteCatalog] = None


def get_catalog() -> SqliteCatalog:
    """Get the configured catalog instance.

    The database location comes from the ``CATALOG_PATH`` setting (or
    ``TEST_CATALOG_PATH`` when ``TESTING=true``). The catalog is created on
    first use.

    Returns:
        SqliteCatalog instance
    """
    global _catalog_instance

    if _catalog_instance is None:
        _catalog_instance = SqliteCatalog(db_path=Path(settings.CATALOG_PATH))

    return _catalog_instance


def reset_catalog() -> None:
    """Reset catalog singleton. Used for testing."""
    global _catalog_instance
    _catalog_instance = None
