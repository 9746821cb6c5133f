"""Command line interface for staging, storing and serving trees."""

import asyncio
import os
import signal
import sys
from contextlib import suppress
from pathlib import Path

import click
import uvicorn

from coldbucket.catalog.config import get_catalog
from coldbucket.core.config import settings
from coldbucket.core.errors import ColdbucketError
from coldbucket.core.events import create_archive_service, create_content_store
from coldbucket.core.logging import configure_logging
from coldbucket.models import Tree
from coldbucket.reconciler import JobReconciler
from coldbucket.staging import StagingPipeline

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _scratch_dir() -> Path | None:
    return Path(settings.SCRATCH_DIR) if settings.SCRATCH_DIR else None


def _print_jobs(tree: Tree) -> None:
    jobs_by_bucket = {job.bucket_cid: job for job in tree.jobs.values()}
    for index, bucket_id in enumerate(tree.bucket_ids):
        job = jobs_by_bucket.get(bucket_id)
        if job is None:
            click.echo(f"  [{index}] {bucket_id}  (not submitted)")
        else:
            click.echo(f"  [{index}] {bucket_id}  job={job.job_id}  {job.state.value}")


@click.group()
@click.version_option(settings.version, prog_name=settings.app_name)
def cli() -> None:
    """Stage directory trees into archival buckets and serve them back."""
    configure_logging(
        testing=os.getenv("TESTING") == "true",
        level=settings.LOG_LEVEL,
        json_logs=settings.JSON_LOGS,
    )


async def _stage(directory: Path, max_bucket_size: int, resume: bool) -> Tree:
    content_store = create_content_store()
    archive = create_archive_service()
    try:
        pipeline = StagingPipeline(
            content_store,
            archive,
            get_catalog(),
            max_bucket_size,
            scratch_dir=_scratch_dir(),
            resume=resume,
        )
        return await pipeline.stage_directory(directory)
    finally:
        await content_store.aclose()
        await archive.aclose()


@cli.command()
@click.argument(
    "directory", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.option(
    "--max-bucket-size",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum total file bytes per bucket (default: MAX_BUCKET_SIZE)",
)
@click.option(
    "--resume/--no-resume",
    default=True,
    help="Reuse buckets recorded by an earlier run of the same tree",
)
def stage(directory: Path, max_bucket_size: int | None, resume: bool) -> None:
    """Add DIRECTORY to the content store and stage it into buckets."""
    size = max_bucket_size or settings.MAX_BUCKET_SIZE
    try:
        tree = asyncio.run(_stage(directory, size, resume))
    except ColdbucketError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Root: {tree.root_cid}")
    click.echo(f"Buckets: {len(tree.bucket_ids)}")
    for index, bucket_id in enumerate(tree.bucket_ids):
        click.echo(f"  [{index}] {bucket_id}")


async def _store(root_cid: str, watch: bool, forever: bool) -> Tree:
    archive = create_archive_service()
    reconciler = JobReconciler(get_catalog(), archive, stop_when_complete=not forever)

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in _STOP_SIGNALS:
        # Not available on every platform
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, cancel.set)

    try:
        if watch:
            return await reconciler.reconcile(root_cid, cancel)
        return await reconciler.submit(root_cid)
    finally:
        for sig in _STOP_SIGNALS:
            with suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
        await archive.aclose()


@cli.command()
@click.argument("root_cid")
@click.option(
    "--watch/--no-watch",
    default=True,
    help="Follow job events after submitting",
)
@click.option(
    "--forever",
    is_flag=True,
    help="Keep watching after every job is terminal, until interrupted",
)
def store(root_cid: str, watch: bool, forever: bool) -> None:
    """Submit the buckets of ROOT_CID for storage and track their jobs."""
    try:
        tree = asyncio.run(_store(root_cid, watch, forever))
    except ColdbucketError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Root: {tree.root_cid}")
    _print_jobs(tree)

    failed = tree.failed_jobs
    if failed:
        click.echo(f"{len(failed)} storage job(s) failed", err=True)
        sys.exit(1)


@cli.command()
@click.argument("root_cid")
def status(root_cid: str) -> None:
    """Show buckets, job states and catalog entries of ROOT_CID."""
    catalog = get_catalog()
    try:
        tree = catalog.find_tree(root_cid)
        stats = catalog.get_statistics(root_cid)
    except ColdbucketError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Root: {root_cid}")
    click.echo(
        f"Entries: {stats['total_entries']} "
        f"({stats['archived_entries']} in buckets, "
        f"{stats['unarchived_entries']} without bucket)"
    )
    click.echo(f"File bytes: {stats['file_bytes']}")

    if tree is None:
        click.echo("No tree recorded")
        return

    click.echo(f"Buckets: {len(tree.bucket_ids)}")
    _print_jobs(tree)
    if tree.is_complete:
        click.echo("All jobs terminal")
    else:
        click.echo(f"Pending jobs: {len(tree.pending_job_ids)}")


@cli.command()
@click.option("--host", default=None, help="Host to bind to (default: HOST)")
@click.option("--port", default=None, type=int, help="Port to bind to (default: PORT)")
def serve(host: str | None, port: int | None) -> None:
    """Run the content retrieval HTTP service."""
    uvicorn.run(
        "coldbucket.main:app",
        host=host or settings.HOST,
        port=port or settings.PORT,
        log_config=None,
    )


if __name__ == "__main__":
    cli()
