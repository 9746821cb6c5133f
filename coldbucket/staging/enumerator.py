"""Enumerate every file and directory of a content-addressed tree."""

from pathlib import Path

from coldbucket.clients.content_store import ContentStore
from coldbucket.core.errors import DataIntegrityError
from coldbucket.core.logging import get_logger
from coldbucket.models import TreeEntry

logger = get_logger(__name__)

EntryKey = tuple[str, str]  # (logical path, content id)


class TreeEnumerator:
    """Walks a content store tree mirrored by a local directory.

    The content store provides the link structure and data sizes, the local
    mirror tells files from directories. Anonymous links (chunks of large
    files) count toward sizes but are never emitted as entries.
    """

    def __init__(self, content_store: ContentStore) -> None:
        """Initialize enumerator.

        Args:
            content_store: Store holding the tree's nodes
        """
        self.content_store = content_store

    async def enumerate(self, root_cid: str, local_root: Path) -> list[TreeEntry]:
        """Produce an entry for every node of the tree.

        Entries come out depth-first, each directory after all of its
        children, and are unique per ``(logical path, content id)``.

        Args:
            root_cid: Content id of the tree's root directory
            local_root: Local directory the tree was added from

        Returns:
            Entries in enumeration order

        Raises:
            ContentStoreError: If a node cannot be read
            DataIntegrityError: If a node has no local counterpart
        """
        entries: dict[EntryKey, TreeEntry] = {}
        await self._visit(root_cid, root_cid, Path(local_root), entries)

        logger.info(
            "tree_enumerated",
            root_cid=root_cid,
            entries=len(entries),
            directories=sum(1 for entry in entries.values() if entry.is_directory),
        )
        return list(entries.values())

    async def _visit(
        self,
        cid: str,
        logical_path: str,
        local_path: Path,
        entries: dict[EntryKey, TreeEntry],
    ) -> int:
        """Emit entries for a named node and its subtree, returning its size."""
        if local_path.is_dir():
            is_directory = True
        elif local_path.is_file():
            is_directory = False
        else:
            raise DataIntegrityError(
                f"{logical_path} has no local counterpart at {local_path}"
            )

        node = await self.content_store.get_object_links(cid)

        # A directory's own data is structural, only its descendants count
        size = 0 if is_directory else node.data_size
        for link in node.links:
            if link.name:
                size += await self._visit(
                    link.cid, f"{logical_path}/{link.name}", local_path / link.name, entries
                )
            else:
                size += await self._anonymous_size(link.cid)

        entries.setdefault(
            (logical_path, cid),
            TreeEntry(
                content_id=cid,
                logical_path=logical_path,
                byte_size=size,
                is_directory=is_directory,
            ),
        )
        return size

    async def _anonymous_size(self, cid: str) -> int:
        """Size of an internal node and everything below it."""
        node = await self.content_store.get_object_links(cid)
        size = node.data_size
        for link in node.links:
            size += await self._anonymous_size(link.cid)
        return size
