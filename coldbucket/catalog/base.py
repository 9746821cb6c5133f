"""Catalog interface shared by staging, reconciliation and retrieval."""

from typing import Any, Iterable, Protocol

from coldbucket.models import JobStatus, Tree, TreeEntry


class Catalog(Protocol):
    """Document store mapping paths, buckets and trees to their records."""

    def upsert_entry(self, entry: TreeEntry) -> None: ...

    def upsert_entries(self, entries: Iterable[TreeEntry]) -> None: ...

    def find_entry(self, path: str) -> TreeEntry | None: ...

    def find_entries_by_bucket(self, bucket_id: str) -> list[TreeEntry]: ...

    def find_entries_by_root(self, root_cid: str) -> list[TreeEntry]: ...

    def upsert_tree(self, tree: Tree) -> None: ...

    def find_tree(self, root_cid: str) -> Tree | None: ...

    def update_job(self, root_cid: str, status: JobStatus) -> None: ...

    def get_statistics(self, root_cid: str | None = None) -> dict[str, Any]: ...

    def ping(self) -> bool: ...
