"""Archive service client.

The archive service accepts staged bucket folders, stores them long term and
reports storage job progress as a stream of events.
"""

import asyncio
import json
import tarfile
from collections.abc import AsyncIterator, Sequence
from contextlib import ExitStack
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import httpx

from coldbucket.core.errors import ArchiveServiceError
from coldbucket.core.logging import get_logger
from coldbucket.models import JobEvent, JobState, utcnow

logger = get_logger(__name__)


class ArchiveService(Protocol):
    """Long-term storage backend for staged buckets."""

    async def stage_folder(self, path: Path) -> str: ...

    async def push_storage_config(self, bucket_id: str) -> str: ...

    def watch_jobs(self, job_ids: Sequence[str]) -> AsyncIterator[JobEvent]: ...

    async def fetch_bucket(self, bucket_id: str, dest: Path) -> None: ...

    async def aclose(self) -> None: ...


def parse_job_event(record: dict[str, Any]) -> JobEvent:
    """Build a JobEvent from one decoded watch-stream record.

    Accepts both ``{"job": {...}}`` envelopes and bare job objects.

    Raises:
        ArchiveServiceError: If the record is malformed
    """
    job = record.get("job", record)
    try:
        updated = job.get("updated_at")
        updated_at = datetime.fromisoformat(updated) if updated else utcnow()
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return JobEvent(
            job_id=str(job["id"]),
            bucket_cid=str(job.get("cid", "")),
            state=JobState.from_wire(str(job["status"])),
            updated_at=updated_at,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ArchiveServiceError(f"Malformed job event: {record!r}") from e


class HttpArchiveService:
    """JSON-over-HTTP client for the archive service."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            base_url: Base URL of the archive service
            token: Optional bearer token forwarded on every request
            timeout: Timeout in seconds for non-streaming calls
            transport: Optional httpx transport, used by tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def _stream_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout, read=None, write=None)

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.is_error:
            raise ArchiveServiceError(
                f"Archive service {action} returned {response.status_code}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )

    async def stage_folder(self, path: Path) -> str:
        """Upload a bucket folder and return the bucket id it was staged as.

        Args:
            path: Folder whose files make up the bucket

        Raises:
            ArchiveServiceError: If the upload fails
        """
        folder = Path(path)
        try:
            with ExitStack() as stack:
                parts = [
                    (
                        "file",
                        (
                            item.name,
                            stack.enter_context(item.open("rb")),
                            "application/octet-stream",
                        ),
                    )
                    for item in sorted(folder.iterdir())
                    if item.is_file()
                ]
                response = await self._client.post(
                    "/v1/folders", files=parts, timeout=self._stream_timeout
                )
        except httpx.HTTPError as e:
            raise ArchiveServiceError(f"Staging {folder} failed: {e}") from e

        self._check(response, "stage")
        try:
            return str(response.json()["cid"])
        except (KeyError, ValueError) as e:
            raise ArchiveServiceError("Archive service sent no bucket id") from e

    async def push_storage_config(self, bucket_id: str) -> str:
        """Request long-term storage of a staged bucket.

        Returns:
            Id of the storage job
        """
        try:
            response = await self._client.post(
                f"/v1/storage-configs/{bucket_id}/push", json={"override": True}
            )
        except httpx.HTTPError as e:
            raise ArchiveServiceError(f"Pushing {bucket_id} failed: {e}") from e

        self._check(response, "push")
        try:
            return str(response.json()["job_id"])
        except (KeyError, ValueError) as e:
            raise ArchiveServiceError("Archive service sent no job id") from e

    async def watch_jobs(self, job_ids: Sequence[str]) -> AsyncIterator[JobEvent]:
        """Stream status events for the given jobs.

        The generator ends when the service closes the stream.

        Raises:
            ArchiveServiceError: If the stream cannot be opened or breaks
        """
        params = [("id", job_id) for job_id in job_ids]
        try:
            async with self._client.stream(
                "GET", "/v1/jobs/watch", params=params, timeout=self._stream_timeout
            ) as response:
                if response.is_error:
                    await response.aread()
                    self._check(response, "watch")
                async for line in response.aiter_lines():
                    if line.strip():
                        yield parse_job_event(json.loads(line))
        except httpx.HTTPError as e:
            raise ArchiveServiceError(f"Job watch stream failed: {e}") from e
        except json.JSONDecodeError as e:
            raise ArchiveServiceError("Job watch stream sent invalid JSON") from e

    async def fetch_bucket(self, bucket_id: str, dest: Path) -> None:
        """Download a bucket and unpack its files into ``dest``.

        Raises:
            ArchiveServiceError: If the download or unpacking fails
        """
        dest = Path(dest)
        archive_path = dest / f".{bucket_id}.tar"
        # Disk work runs in a thread so other requests keep being served
        loop = asyncio.get_running_loop()
        try:
            async with self._client.stream(
                "GET", f"/v1/folders/{bucket_id}", timeout=self._stream_timeout
            ) as response:
                if response.is_error:
                    await response.aread()
                    self._check(response, "fetch")
                with archive_path.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        await loop.run_in_executor(None, handle.write, chunk)

            await loop.run_in_executor(None, self._unpack, archive_path, dest)
        except httpx.HTTPError as e:
            raise ArchiveServiceError(f"Fetching {bucket_id} failed: {e}") from e
        except tarfile.TarError as e:
            raise ArchiveServiceError(f"Bucket {bucket_id} is not a valid archive") from e
        finally:
            archive_path.unlink(missing_ok=True)

        logger.info("bucket_downloaded", bucket_id=bucket_id, dest=str(dest))

    @staticmethod
    def _unpack(archive_path: Path, dest: Path) -> None:
        with tarfile.open(archive_path) as tar:
            tar.extractall(dest, filter="data")

    async def aclose(self) -> None:
        await self._client.aclose()
