"""Data models for trees, entries and archival jobs."""

from .jobs import JobEvent, JobState, JobStatus, utcnow
from .tree import Tree, TreeEntry

__all__ = [
    "JobEvent",
    "JobState",
    "JobStatus",
    "Tree",
    "TreeEntry",
    "utcnow",
]
