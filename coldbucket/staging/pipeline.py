"""Staging pipeline: materialize buckets, submit them and record the results."""

import shutil
import tempfile
from pathlib import Path

from coldbucket.catalog.base import Catalog
from coldbucket.clients.archive import ArchiveService
from coldbucket.clients.content_store import ContentStore
from coldbucket.core.logging import get_logger
from coldbucket.models import Tree, TreeEntry
from coldbucket.staging.enumerator import TreeEnumerator
from coldbucket.staging.metrics import STAGED_BUCKETS, STAGED_BYTES, STAGED_ENTRIES
from coldbucket.staging.packer import Bucket, BucketPacker

logger = get_logger(__name__)


class StagingPipeline:
    """Stages a directory tree into archive buckets.

    Each bucket is materialized into its own scratch directory, with one file
    per entry named by the entry's content id, and submitted to the archive
    service. Staging is not transactional across buckets: when a later bucket
    fails, buckets sealed before it stay recorded in the catalog. With
    ``resume`` enabled those buckets are recognised and not resubmitted on
    the next run.
    """

    def __init__(
        self,
        content_store: ContentStore,
        archive: ArchiveService,
        catalog: Catalog,
        max_bucket_size: int,
        scratch_dir: Path | None = None,
        resume: bool = True,
    ) -> None:
        """Initialize pipeline.

        Args:
            content_store: Store the tree is added to and read from
            archive: Archive service receiving the buckets
            catalog: Catalog recording entries and the tree
            max_bucket_size: Maximum total file bytes per bucket
            scratch_dir: Parent directory for scratch areas (system temp if None)
            resume: Skip buckets already recorded by an earlier run
        """
        self.content_store = content_store
        self.archive = archive
        self.catalog = catalog
        self.packer = BucketPacker(max_bucket_size)
        self.enumerator = TreeEnumerator(content_store)
        self.scratch_dir = scratch_dir
        self.resume = resume

    async def stage_directory(self, local_root: Path) -> Tree:
        """Add a local directory to the content store and stage all of it.

        Args:
            local_root: Directory to stage

        Returns:
            The recorded tree with its ordered bucket ids
        """
        local_root = Path(local_root)
        root_cid = await self.content_store.add_directory(local_root)
        entries = await self.enumerator.enumerate(root_cid, local_root)
        buckets = self.packer.pack(entries)

        logger.info(
            "tree_packed",
            root_cid=root_cid,
            buckets=len(buckets),
            max_bucket_size=self.packer.max_bucket_size,
        )
        return await self.stage_buckets(root_cid, local_root, buckets)

    async def stage_buckets(
        self, root_cid: str, local_root: Path, buckets: list[Bucket]
    ) -> Tree:
        """Submit packed buckets and record the tree.

        Args:
            root_cid: Content id of the tree's root
            local_root: Local mirror of the tree
            buckets: Buckets as produced by the packer

        Returns:
            The recorded tree
        """
        previous = self.catalog.find_tree(root_cid) if self.resume else None

        bucket_ids: list[str] = []
        for bucket in buckets:
            bucket_id = self._previously_sealed(bucket) if self.resume else None
            if bucket_id:
                logger.info(
                    "bucket_already_staged",
                    root_cid=root_cid,
                    bucket_index=bucket.index,
                    bucket_id=bucket_id,
                )
                STAGED_BUCKETS.labels(outcome="resumed").inc()
            else:
                bucket_id = await self._submit_bucket(bucket, Path(local_root))
                STAGED_BUCKETS.labels(outcome="submitted").inc()
                STAGED_BYTES.inc(bucket.file_bytes)

            bucket.seal(bucket_id)
            self.catalog.upsert_entries(bucket.entries)
            for entry in bucket.entries:
                STAGED_ENTRIES.labels(
                    kind="directory" if entry.is_directory else "file"
                ).inc()
            bucket_ids.append(bucket_id)

        jobs = {}
        if previous is not None:
            # Jobs for buckets that are still part of the tree stay valid
            jobs = {
                job_id: job
                for job_id, job in previous.jobs.items()
                if job.bucket_cid in bucket_ids
            }

        tree = Tree(root_cid=root_cid, bucket_ids=bucket_ids, jobs=jobs)
        self.catalog.upsert_tree(tree)

        logger.info("tree_staged", root_cid=root_cid, buckets=bucket_ids)
        return tree

    def _previously_sealed(self, bucket: Bucket) -> str | None:
        """Return the bucket id an earlier run recorded for exactly these entries."""
        bucket_ids = set()
        for entry in bucket.entries:
            recorded = self.catalog.find_entry(entry.logical_path)
            if recorded is None or recorded.content_id != entry.content_id:
                return None
            bucket_ids.add(recorded.bucket_id)

        if len(bucket_ids) != 1:
            return None
        bucket_id = bucket_ids.pop()
        return bucket_id or None

    async def _submit_bucket(self, bucket: Bucket, local_root: Path) -> str:
        """Materialize a bucket in a scratch directory and stage it."""
        with tempfile.TemporaryDirectory(
            prefix=f"coldbucket-bucket{bucket.index}-", dir=self.scratch_dir
        ) as scratch:
            scratch_path = Path(scratch)
            for entry in bucket.entries:
                await self._materialize(entry, local_root, scratch_path)

            bucket_id = await self.archive.stage_folder(scratch_path)

        logger.info(
            "bucket_staged",
            bucket_index=bucket.index,
            bucket_id=bucket_id,
            entries=len(bucket.entries),
            file_bytes=bucket.file_bytes,
        )
        return bucket_id

    async def _materialize(
        self, entry: TreeEntry, local_root: Path, scratch: Path
    ) -> None:
        """Write one entry into the scratch directory under its content id.

        Directories are written as their raw content store block; files are
        copied from the local mirror.
        """
        target = scratch / entry.content_id
        if target.exists():
            # Same content at another path
            return

        if entry.is_directory:
            target.write_bytes(await self.content_store.get_block(entry.content_id))
        else:
            source = local_root.joinpath(*entry.relative_path.split("/"))
            shutil.copyfile(source, target)
