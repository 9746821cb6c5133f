"""Clients for the content store and archive service."""

from coldbucket.clients.archive import ArchiveService, HttpArchiveService
from coldbucket.clients.content_store import (
    ContentStore,
    IpfsContentStore,
    Link,
    ObjectNode,
)

__all__ = [
    "ArchiveService",
    "ContentStore",
    "HttpArchiveService",
    "IpfsContentStore",
    "Link",
    "ObjectNode",
]
