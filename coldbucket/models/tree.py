"""Data models for staged trees and their entries."""

from dataclasses import dataclass, field

from coldbucket.models.jobs import JobStatus


@dataclass
class TreeEntry:
    """One file or directory of a staged tree."""

    content_id: str
    logical_path: str  # "<root cid>/a/b.txt", the root itself is "<root cid>"
    byte_size: int
    is_directory: bool
    bucket_id: str = ""

    @property
    def root_cid(self) -> str:
        """Content id of the tree this entry belongs to."""
        return self.logical_path.split("/", 1)[0]

    @property
    def relative_path(self) -> str:
        """Path below the tree root, empty for the root itself."""
        parts = self.logical_path.split("/", 1)
        return parts[1] if len(parts) > 1 else ""

    def assign_bucket(self, bucket_id: str) -> None:
        """Record the archive bucket holding this entry.

        Args:
            bucket_id: Bucket id returned by the archive service

        Raises:
            ValueError: If the entry already belongs to another bucket
        """
        if not bucket_id:
            raise ValueError("bucket id must not be empty")
        if self.bucket_id and self.bucket_id != bucket_id:
            raise ValueError(
                f"{self.logical_path} already belongs to bucket {self.bucket_id}"
            )
        self.bucket_id = bucket_id


@dataclass
class Tree:
    """Root-level record of one staging operation."""

    root_cid: str
    bucket_ids: list[str] = field(default_factory=list)
    jobs: dict[str, JobStatus] = field(default_factory=dict)

    @property
    def submitted_buckets(self) -> set[str]:
        """Bucket ids that already have a storage job."""
        return {job.bucket_cid for job in self.jobs.values()}

    @property
    def pending_job_ids(self) -> list[str]:
        """Ids of jobs that have not reached a terminal state."""
        return [
            job_id for job_id, job in self.jobs.items() if not job.state.is_terminal
        ]

    @property
    def failed_jobs(self) -> list[JobStatus]:
        """Jobs that ended in failure."""
        return [job for job in self.jobs.values() if job.state.is_failure]

    @property
    def is_complete(self) -> bool:
        """True once every bucket has a job and every job is terminal."""
        if not set(self.bucket_ids) <= self.submitted_buckets:
            return False
        return not self.pending_job_ids
