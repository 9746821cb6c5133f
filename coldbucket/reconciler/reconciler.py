"""Submit staged buckets for storage and track their jobs to completion."""

import asyncio
from contextlib import suppress
from typing import Any

from coldbucket.catalog.base import Catalog
from coldbucket.clients.archive import ArchiveService
from coldbucket.core.errors import (
    DataIntegrityError,
    TreeNotFoundError,
    WatchStreamClosedError,
)
from coldbucket.core.logging import get_logger
from coldbucket.models import JobEvent, JobStatus, Tree
from coldbucket.reconciler.metrics import (
    RECONCILER_JOB_EVENTS,
    RECONCILER_PENDING_JOBS,
    RECONCILER_SUBMISSIONS,
)

logger = get_logger(__name__)

# Pushed by the stream pump when the archive service closes the stream
_STREAM_CLOSED = object()


class JobReconciler:
    """Coordinates storage jobs for every bucket of a staged tree.

    Every state change is written to the catalog before the next event is
    read, so the catalog's tree record is always a valid point to resume
    from after a crash or shutdown.
    """

    def __init__(
        self,
        catalog: Catalog,
        archive: ArchiveService,
        stop_when_complete: bool = True,
    ) -> None:
        """Initialize reconciler.

        Args:
            catalog: Catalog holding the tree and its jobs
            archive: Archive service running the storage jobs
            stop_when_complete: Leave the event loop once all jobs are terminal
        """
        self.catalog = catalog
        self.archive = archive
        self.stop_when_complete = stop_when_complete

    async def reconcile(
        self, root_cid: str, cancel: asyncio.Event | None = None
    ) -> Tree:
        """Submit any unsubmitted buckets, then watch jobs until done or cancelled."""
        tree = await self.submit(root_cid)
        return await self.watch(tree, cancel or asyncio.Event())

    async def submit(self, root_cid: str) -> Tree:
        """Push every bucket of a tree that does not have a job yet.

        Each job id is persisted as soon as it is known.

        Args:
            root_cid: Content id of the staged tree

        Returns:
            The tree with a job for every bucket

        Raises:
            TreeNotFoundError: If the tree was never staged
            DataIntegrityError: If the tree has no buckets
        """
        tree = self.catalog.find_tree(root_cid)
        if tree is None:
            raise TreeNotFoundError(root_cid)
        if not tree.bucket_ids:
            raise DataIntegrityError(f"No buckets recorded for tree {root_cid}")

        submitted = tree.submitted_buckets
        for bucket_id in tree.bucket_ids:
            if bucket_id in submitted:
                continue

            job_id = await self.archive.push_storage_config(bucket_id)
            status = JobStatus(job_id=job_id, bucket_cid=bucket_id)
            tree.jobs[job_id] = status
            self.catalog.update_job(root_cid, status)
            RECONCILER_SUBMISSIONS.inc()

            logger.info(
                "storage_job_submitted",
                root_cid=root_cid,
                bucket_id=bucket_id,
                job_id=job_id,
            )

        return tree

    async def watch(self, tree: Tree, cancel: asyncio.Event) -> Tree:
        """Apply job events until cancelled or, optionally, all jobs are terminal.

        The archive stream is consumed by its own task and handed over
        through a queue, so the loop can wait on the next event and the
        cancellation signal at the same time.

        Args:
            tree: Tree whose jobs to watch
            cancel: Set to stop the loop

        Returns:
            The tree with the latest known job states

        Raises:
            WatchStreamClosedError: If the stream ends while jobs are pending
            ArchiveServiceError: If the stream fails
        """
        pending = tree.pending_job_ids
        RECONCILER_PENDING_JOBS.set(len(pending))
        if not pending:
            logger.info("no_pending_jobs", root_cid=tree.root_cid)
            return tree

        queue: asyncio.Queue[Any] = asyncio.Queue()
        pump = asyncio.create_task(self._pump(pending, queue))
        cancelled = asyncio.create_task(cancel.wait())
        try:
            while True:
                if self.stop_when_complete and tree.is_complete:
                    logger.info("all_jobs_terminal", root_cid=tree.root_cid)
                    break

                next_item = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait(
                    {next_item, cancelled}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_item not in done:
                    next_item.cancel()
                    with suppress(asyncio.CancelledError):
                        await next_item
                    logger.info("reconcile_cancelled", root_cid=tree.root_cid)
                    break

                item = next_item.result()
                if item is _STREAM_CLOSED:
                    if cancelled in done or not tree.pending_job_ids:
                        break
                    raise WatchStreamClosedError(
                        f"Job stream closed with {len(tree.pending_job_ids)} "
                        f"jobs pending for tree {tree.root_cid}"
                    )
                if isinstance(item, BaseException):
                    raise item

                self.apply_event(tree, item)
                if cancelled in done:
                    logger.info("reconcile_cancelled", root_cid=tree.root_cid)
                    break
        finally:
            cancelled.cancel()
            pump.cancel()
            with suppress(asyncio.CancelledError):
                await pump
            with suppress(asyncio.CancelledError):
                await cancelled

        return tree

    async def _pump(self, job_ids: list[str], queue: asyncio.Queue[Any]) -> None:
        """Forward watch-stream events, then an end marker or the error."""
        try:
            async for event in self.archive.watch_jobs(job_ids):
                await queue.put(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await queue.put(e)
            return
        await queue.put(_STREAM_CLOSED)

    def apply_event(self, tree: Tree, event: JobEvent) -> bool:
        """Record a job event if it moves the job forward.

        A repeated or older state, or any event for a job that already
        reached a terminal state, leaves the stored status unchanged.

        Args:
            tree: Tree owning the job
            event: Event received from the archive service

        Returns:
            True if the status changed and was persisted

        Raises:
            DataIntegrityError: If the job is not part of the tree
        """
        current = tree.jobs.get(event.job_id)
        if current is None:
            raise DataIntegrityError(
                f"Job {event.job_id} is not recorded for tree {tree.root_cid}"
            )

        updated = current.advance(event)
        if updated is None:
            RECONCILER_JOB_EVENTS.labels(state=event.state.value, applied="false").inc()
            logger.debug(
                "job_event_ignored",
                job_id=event.job_id,
                current_state=current.state.value,
                event_state=event.state.value,
            )
            return False

        self.catalog.update_job(tree.root_cid, updated)
        tree.jobs[event.job_id] = updated
        RECONCILER_JOB_EVENTS.labels(state=event.state.value, applied="true").inc()
        RECONCILER_PENDING_JOBS.set(len(tree.pending_job_ids))

        if updated.state.is_failure:
            logger.error(
                "storage_job_failed",
                root_cid=tree.root_cid,
                job_id=updated.job_id,
                bucket_id=updated.bucket_cid,
            )
        else:
            logger.info(
                "storage_job_updated",
                root_cid=tree.root_cid,
                job_id=updated.job_id,
                bucket_id=updated.bucket_cid,
                state=updated.state.value,
            )
        return True
