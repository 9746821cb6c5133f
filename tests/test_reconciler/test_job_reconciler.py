"""Tests for storage job submission and reconciliation."""

import asyncio
from datetime import datetime, timezone

import pytest
from prometheus_client import REGISTRY

from coldbucket.core.errors import (
    ArchiveServiceError,
    DataIntegrityError,
    TreeNotFoundError,
    WatchStreamClosedError,
)
from coldbucket.models import JobEvent, JobState, JobStatus, Tree
from coldbucket.reconciler import JobReconciler

ROOT = "root-cid"


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def staged(catalog, archive):
    """A tree of two staged buckets without jobs."""
    archive.buckets = {"bucket-0": {}, "bucket-1": {}}
    catalog.upsert_tree(Tree(root_cid=ROOT, bucket_ids=["bucket-0", "bucket-1"]))
    return catalog


@pytest.fixture
def reconciler(staged, archive):
    return JobReconciler(staged, archive)


class TestSubmit:
    """Test pushing buckets for storage."""

    @pytest.mark.asyncio
    async def test_should_submit_every_bucket_once(self, reconciler, archive, catalog):
        """Each bucket gets one job, persisted as it is created."""
        tree = await reconciler.submit(ROOT)

        assert archive.pushed == ["bucket-0", "bucket-1"]
        assert {job.bucket_cid for job in tree.jobs.values()} == {
            "bucket-0",
            "bucket-1",
        }
        assert catalog.find_tree(ROOT).jobs == tree.jobs

        await reconciler.submit(ROOT)
        assert archive.pushed == ["bucket-0", "bucket-1"]

    @pytest.mark.asyncio
    async def test_submit_resumes_after_partial_submission(
        self, reconciler, archive, catalog
    ):
        """Buckets that already have a job are not pushed again."""
        catalog.update_job(ROOT, JobStatus("old-job", "bucket-0", JobState.EXECUTING))

        tree = await reconciler.submit(ROOT)

        assert archive.pushed == ["bucket-1"]
        assert set(tree.jobs) == {"old-job", "job-0"}

    @pytest.mark.asyncio
    async def test_unknown_tree(self, catalog, archive):
        """A tree that was never staged cannot be stored."""
        with pytest.raises(TreeNotFoundError) as exc_info:
            await JobReconciler(catalog, archive).submit("missing")
        assert exc_info.value.root_cid == "missing"

    @pytest.mark.asyncio
    async def test_tree_without_buckets(self, catalog, archive):
        """A tree record without buckets is inconsistent."""
        catalog.upsert_tree(Tree(root_cid=ROOT))
        with pytest.raises(DataIntegrityError):
            await JobReconciler(catalog, archive).submit(ROOT)


class TestWatch:
    """Test the job event loop."""

    @pytest.mark.asyncio
    async def test_should_run_until_all_jobs_terminal(
        self, reconciler, archive, catalog
    ):
        """Events are applied in order until every job finished."""
        archive.emit("job-0", JobState.QUEUED)
        archive.emit("job-0", JobState.SUCCEEDED)
        archive.emit("job-1", JobState.EXECUTING)
        archive.emit("job-1", JobState.SUCCEEDED)

        tree = await asyncio.wait_for(reconciler.reconcile(ROOT), timeout=5)

        assert tree.is_complete
        stored = catalog.find_tree(ROOT)
        assert {job.state for job in stored.jobs.values()} == {JobState.SUCCEEDED}
        assert archive.watched == [["job-0", "job-1"]]

    @pytest.mark.asyncio
    async def test_stale_and_repeated_events_are_ignored(
        self, reconciler, archive, catalog
    ):
        """Terminal states are final and older states never regress."""
        archive.emit("job-0", JobState.SUCCEEDED)
        archive.emit("job-0", JobState.QUEUED)
        archive.emit("job-1", JobState.EXECUTING)
        archive.emit("job-1", JobState.EXECUTING)
        archive.emit("job-1", JobState.QUEUED)
        archive.emit("job-1", JobState.FAILED)

        tree = await asyncio.wait_for(reconciler.reconcile(ROOT), timeout=5)

        assert tree.jobs["job-0"].state is JobState.SUCCEEDED
        assert tree.jobs["job-1"].state is JobState.FAILED
        assert catalog.find_tree(ROOT).jobs == tree.jobs

    @pytest.mark.asyncio
    async def test_failed_jobs_are_surfaced(self, reconciler, archive):
        """Failures complete the tree and are reported, never retried."""
        failed_before = _sample(
            "coldbucket_reconciler_job_events_total", state="failed", applied="true"
        )
        archive.emit("job-0", JobState.FAILED)
        archive.emit("job-1", JobState.SUCCEEDED)

        tree = await asyncio.wait_for(reconciler.reconcile(ROOT), timeout=5)

        assert [job.bucket_cid for job in tree.failed_jobs] == ["bucket-0"]
        assert archive.pushed == ["bucket-0", "bucket-1"]
        assert (
            _sample(
                "coldbucket_reconciler_job_events_total",
                state="failed",
                applied="true",
            )
            == failed_before + 1
        )

    @pytest.mark.asyncio
    async def test_cancel_stops_waiting_loop(self, reconciler, archive, catalog):
        """Setting the cancel event ends the loop without further events."""
        cancel = asyncio.Event()
        archive.emit("job-0", JobState.EXECUTING)

        task = asyncio.create_task(reconciler.reconcile(ROOT, cancel))
        await asyncio.sleep(0.05)
        cancel.set()
        tree = await asyncio.wait_for(task, timeout=2)

        assert not tree.is_complete
        assert tree.jobs["job-0"].state is JobState.EXECUTING
        assert catalog.find_tree(ROOT).jobs["job-0"].state is JobState.EXECUTING

    @pytest.mark.asyncio
    async def test_stream_closed_with_pending_jobs(self, reconciler, archive):
        """An early end of the job stream is an error."""
        archive.emit("job-0", JobState.SUCCEEDED)
        archive.close_stream()

        with pytest.raises(WatchStreamClosedError):
            await asyncio.wait_for(reconciler.reconcile(ROOT), timeout=5)

    @pytest.mark.asyncio
    async def test_stream_failure_propagates(self, reconciler, archive, catalog):
        """Stream errors surface after earlier events were persisted."""
        archive.emit("job-0", JobState.QUEUED)
        archive.fail_stream(ArchiveServiceError("stream reset"))

        with pytest.raises(ArchiveServiceError, match="stream reset"):
            await asyncio.wait_for(reconciler.reconcile(ROOT), timeout=5)

        assert catalog.find_tree(ROOT).jobs["job-0"].state is JobState.QUEUED

    @pytest.mark.asyncio
    async def test_watch_forever_ends_with_stream(self, staged, archive):
        """Without stop-when-complete the loop runs until the stream closes."""
        reconciler = JobReconciler(staged, archive, stop_when_complete=False)
        archive.emit("job-0", JobState.SUCCEEDED)
        archive.emit("job-1", JobState.SUCCEEDED)
        archive.close_stream()

        tree = await asyncio.wait_for(reconciler.reconcile(ROOT), timeout=5)

        assert tree.is_complete

    @pytest.mark.asyncio
    async def test_only_pending_jobs_are_watched(self, reconciler, archive, catalog):
        """Jobs that finished before a restart are not watched again."""
        catalog.update_job(ROOT, JobStatus("old-job", "bucket-0", JobState.SUCCEEDED))
        archive.emit("job-0", JobState.SUCCEEDED)

        tree = await asyncio.wait_for(reconciler.reconcile(ROOT), timeout=5)

        assert archive.watched == [["job-0"]]
        assert tree.is_complete

    @pytest.mark.asyncio
    async def test_nothing_to_watch(self, staged, archive):
        """A finished tree returns without opening the stream."""
        staged.update_job(ROOT, JobStatus("a", "bucket-0", JobState.SUCCEEDED))
        staged.update_job(ROOT, JobStatus("b", "bucket-1", JobState.FAILED))

        tree = await JobReconciler(staged, archive).reconcile(ROOT)

        assert tree.is_complete
        assert archive.watched == []


class TestApplyEvent:
    """Test single event application."""

    def test_event_for_unknown_job(self, staged, archive):
        """Events must belong to a job of the tree."""
        tree = staged.find_tree(ROOT)
        event = JobEvent(
            "ghost", "bucket-0", JobState.QUEUED, datetime.now(timezone.utc)
        )

        with pytest.raises(DataIntegrityError):
            JobReconciler(staged, archive).apply_event(tree, event)

    def test_forward_event_is_persisted(self, staged, archive):
        """Only forward transitions are written to the catalog."""
        staged.update_job(ROOT, JobStatus("job-9", "bucket-0"))
        tree = staged.find_tree(ROOT)
        reconciler = JobReconciler(staged, archive)
        event = JobEvent("job-9", "bucket-0", JobState.QUEUED, datetime.now(timezone.utc))

        assert reconciler.apply_event(tree, event) is True
        assert reconciler.apply_event(tree, event) is False
        assert staged.find_tree(ROOT).jobs["job-9"].state is JobState.QUEUED
