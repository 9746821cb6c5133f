"""Archival job state models."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

_RANKS = {
    "submitted": 0,
    "queued": 1,
    "executing": 2,
    "succeeded": 3,
    "failed": 3,
}

# Status names reported by Powergate-style backends
_WIRE_ALIASES = {
    "job_status_queued": "queued",
    "job_status_executing": "executing",
    "job_status_success": "succeeded",
    "job_status_failed": "failed",
    "job_status_canceled": "failed",
    "success": "succeeded",
    "canceled": "failed",
    "cancelled": "failed",
}


class JobState(str, Enum):
    """Lifecycle state of an archival storage job."""

    SUBMITTED = "submitted"
    QUEUED = "queued"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _RANKS[self.value]

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)

    @property
    def is_failure(self) -> bool:
        return self is JobState.FAILED

    @classmethod
    def from_wire(cls, value: str) -> "JobState":
        """Parse a status name reported by the archive service.

        Raises:
            ValueError: If the status is not recognised
        """
        normalized = value.strip().lower()
        return cls(_WIRE_ALIASES.get(normalized, normalized))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class JobEvent:
    """A status update received from the archive service."""

    job_id: str
    bucket_cid: str
    state: JobState
    updated_at: datetime


@dataclass(frozen=True)
class JobStatus:
    """Last known state of one bucket's storage job."""

    job_id: str
    bucket_cid: str
    state: JobState = JobState.SUBMITTED
    last_updated: datetime = field(default_factory=utcnow)

    def can_advance_to(self, state: JobState) -> bool:
        """Whether moving to ``state`` is a forward transition.

        Terminal states never change, and a repeated or older state is not
        an advance.
        """
        if self.state.is_terminal:
            return False
        return state.rank > self.state.rank

    def advance(self, event: JobEvent) -> "JobStatus | None":
        """Apply an event, returning the new status or None for a no-op."""
        if event.job_id != self.job_id:
            raise ValueError(f"event for {event.job_id} applied to {self.job_id}")
        if not self.can_advance_to(event.state):
            return None
        return replace(self, state=event.state, last_updated=event.updated_at)
