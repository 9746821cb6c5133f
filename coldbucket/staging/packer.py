"""Group tree entries into size-bounded buckets."""

from collections.abc import Iterable
from dataclasses import dataclass, field

from coldbucket.models import TreeEntry


class BucketSealedError(Exception):
    """Raised when adding to a bucket that was already submitted."""


@dataclass
class Bucket:
    """An ordered group of entries submitted to the archive together."""

    index: int
    entries: list[TreeEntry] = field(default_factory=list)
    file_bytes: int = 0
    bucket_id: str | None = None

    @property
    def sealed(self) -> bool:
        return self.bucket_id is not None

    def add(self, entry: TreeEntry) -> None:
        if self.sealed:
            raise BucketSealedError(f"bucket {self.index} is sealed")
        self.entries.append(entry)
        if not entry.is_directory:
            self.file_bytes += entry.byte_size

    def seal(self, bucket_id: str) -> None:
        """Mark the bucket submitted and propagate its id to every entry."""
        if self.sealed:
            raise BucketSealedError(f"bucket {self.index} is sealed")
        for entry in self.entries:
            entry.assign_bucket(bucket_id)
        self.bucket_id = bucket_id


class BucketPacker:
    """Greedy, order-preserving bin packing of tree entries.

    Directory entries all go to bucket 0 and do not count toward the size
    bound. Files are taken in order and appended to the current bucket while
    it stays within ``max_bucket_size``; otherwise a new bucket is opened for
    the file. A file larger than the bound gets a bucket of its own.
    """

    def __init__(self, max_bucket_size: int) -> None:
        """Initialize packer.

        Args:
            max_bucket_size: Maximum total file bytes per bucket

        Raises:
            ValueError: If max_bucket_size is not positive
        """
        if max_bucket_size <= 0:
            raise ValueError(f"max_bucket_size must be positive, got {max_bucket_size}")
        self.max_bucket_size = max_bucket_size

    def pack(self, entries: Iterable[TreeEntry]) -> list[Bucket]:
        """Pack entries into buckets.

        Args:
            entries: Entries in enumeration order

        Returns:
            Buckets in submission order, bucket 0 holding the directories
        """
        entries = list(entries)
        buckets = [Bucket(index=0)]
        for entry in entries:
            if entry.is_directory:
                buckets[0].add(entry)

        current: Bucket | None = None
        for entry in entries:
            if entry.is_directory:
                continue
            if current is None or (
                current.entries
                and current.file_bytes + entry.byte_size > self.max_bucket_size
            ):
                current = Bucket(index=len(buckets))
                buckets.append(current)
            current.add(entry)

        return buckets
