"""Catalog of staged entries, trees and archival jobs."""

from coldbucket.catalog.base import Catalog
from coldbucket.catalog.store import SqliteCatalog

__all__ = ["Catalog", "SqliteCatalog"]
