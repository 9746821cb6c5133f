"""Cache-first retrieval with one background fetch per missing bucket."""

import asyncio
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from coldbucket.catalog.base import Catalog
from coldbucket.clients.archive import ArchiveService
from coldbucket.clients.content_store import ContentStore
from coldbucket.core.errors import (
    ContentStoreError,
    DataIntegrityError,
    InflightStoreError,
)
from coldbucket.core.logging import get_logger
from coldbucket.retrieval.inflight import Inflight, InflightSet
from coldbucket.retrieval.metrics import (
    BUCKET_FETCHES,
    INFLIGHT_FETCHES,
    RETRIEVAL_REQUESTS,
)

logger = get_logger(__name__)


class RetrievalStatus(str, Enum):
    """Outcome of a content request."""

    FOUND = "found"
    DIRECTORY = "directory"
    PENDING = "pending"
    NOT_FOUND = "not_found"


@dataclass
class RetrievalResult:
    """Result of looking up one logical path."""

    status: RetrievalStatus
    content: bytes | None = None
    children: list[str] | None = None
    bucket_id: str | None = None
    fetch_started: bool = False


class RetrievalCoalescer:
    """Serves content from the content store and refetches evicted buckets.

    A request that misses the content store never waits for the archive
    service. It triggers a background fetch of the owning bucket, unless one
    is already running, and reports the content as pending.
    """

    def __init__(
        self,
        content_store: ContentStore,
        catalog: Catalog,
        archive: ArchiveService,
        inflight: Inflight | None = None,
        scratch_dir: Path | None = None,
    ) -> None:
        """Initialize coalescer.

        Args:
            content_store: Store serving cached content
            catalog: Catalog mapping paths to buckets
            archive: Archive service holding the buckets
            inflight: Set of bucket ids being fetched (in-process set if None)
            scratch_dir: Parent directory for download areas (system temp if None)
        """
        self.content_store = content_store
        self.catalog = catalog
        self.archive = archive
        self.inflight = inflight if inflight is not None else InflightSet()
        self.scratch_dir = scratch_dir
        self._tasks: set[asyncio.Task[None]] = set()

    async def retrieve(self, path: str) -> RetrievalResult:
        """Look up a logical path.

        Args:
            path: Logical path, ``"<root cid>/<relative path>"``

        Returns:
            ``found`` with the bytes on a cache hit, ``directory`` with the
            child names for a locally resolvable directory, ``pending`` when
            the owning bucket is being fetched, ``not_found`` for unknown paths
        """
        path = path.strip("/")
        if not path:
            RETRIEVAL_REQUESTS.labels(result=RetrievalStatus.NOT_FOUND.value).inc()
            return RetrievalResult(status=RetrievalStatus.NOT_FOUND)

        try:
            content = await self.content_store.cat(path)
        except ContentStoreError as e:
            logger.debug("content_store_miss", path=path, error=str(e))
        else:
            RETRIEVAL_REQUESTS.labels(result=RetrievalStatus.FOUND.value).inc()
            return RetrievalResult(status=RetrievalStatus.FOUND, content=content)

        entry = self.catalog.find_entry(path)
        if entry is None or not entry.bucket_id:
            logger.info("content_not_found", path=path)
            RETRIEVAL_REQUESTS.labels(result=RetrievalStatus.NOT_FOUND.value).inc()
            return RetrievalResult(status=RetrievalStatus.NOT_FOUND)

        if entry.is_directory:
            try:
                links = await self.content_store.list_directory(path)
            except ContentStoreError as e:
                logger.debug("directory_miss", path=path, error=str(e))
            else:
                RETRIEVAL_REQUESTS.labels(
                    result=RetrievalStatus.DIRECTORY.value
                ).inc()
                return RetrievalResult(
                    status=RetrievalStatus.DIRECTORY,
                    children=[link.name for link in links],
                )

        started = self.ensure_fetch(entry.bucket_id)
        RETRIEVAL_REQUESTS.labels(result=RetrievalStatus.PENDING.value).inc()
        return RetrievalResult(
            status=RetrievalStatus.PENDING,
            bucket_id=entry.bucket_id,
            fetch_started=started,
        )

    def ensure_fetch(self, bucket_id: str) -> bool:
        """Start a background fetch unless one is already in flight.

        Returns:
            True if this call started the fetch
        """
        if not self.inflight.try_add(bucket_id):
            logger.debug("bucket_fetch_in_flight", bucket_id=bucket_id)
            return False

        task = asyncio.create_task(
            self._fetch_bucket(bucket_id), name=f"fetch-{bucket_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("bucket_fetch_started", bucket_id=bucket_id)
        return True

    async def _fetch_bucket(self, bucket_id: str) -> None:
        """Download a bucket and put its entries back into the content store."""
        INFLIGHT_FETCHES.inc()
        try:
            with tempfile.TemporaryDirectory(
                prefix="coldbucket-fetch-", dir=self.scratch_dir
            ) as scratch:
                scratch_path = Path(scratch)
                await self.archive.fetch_bucket(bucket_id, scratch_path)
                restored = await self._repopulate(bucket_id, scratch_path)

            BUCKET_FETCHES.labels(status="success").inc()
            logger.info("bucket_fetch_finished", bucket_id=bucket_id, restored=restored)
        except Exception:
            BUCKET_FETCHES.labels(status="failure").inc()
            logger.exception("bucket_fetch_failed", bucket_id=bucket_id)
        finally:
            INFLIGHT_FETCHES.dec()
            try:
                self.inflight.discard(bucket_id)
            except InflightStoreError:
                logger.exception("bucket_release_failed", bucket_id=bucket_id)

    async def _repopulate(self, bucket_id: str, scratch: Path) -> int:
        """Add every entry of a downloaded bucket to the content store.

        Returns:
            Number of distinct content ids restored

        Raises:
            DataIntegrityError: If the bucket lacks a file the catalog expects
        """
        entries = self.catalog.find_entries_by_bucket(bucket_id)
        if not entries:
            raise DataIntegrityError(f"No catalog entries for bucket {bucket_id}")

        loop = asyncio.get_running_loop()
        restored: set[str] = set()
        for entry in entries:
            if entry.content_id in restored:
                continue

            source = scratch / entry.content_id
            if not await loop.run_in_executor(None, source.is_file):
                raise DataIntegrityError(
                    f"Bucket {bucket_id} has no file for {entry.logical_path}"
                )

            if entry.is_directory:
                cid = await self.content_store.put_block(
                    await loop.run_in_executor(None, source.read_bytes)
                )
            else:
                cid = await self.content_store.add_file(source)

            if cid != entry.content_id:
                logger.warning(
                    "restored_content_id_mismatch",
                    path=entry.logical_path,
                    expected=entry.content_id,
                    actual=cid,
                )
            restored.add(entry.content_id)

        return len(restored)

    @property
    def pending_fetches(self) -> int:
        """Number of fetch tasks started by this coalescer that are still running."""
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every background fetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background fetches and wait for them to release their buckets."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("bucket_fetches_cancelled", count=len(tasks))
