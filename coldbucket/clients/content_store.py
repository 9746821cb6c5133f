"""Content store client for an IPFS HTTP API."""

import json
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import httpx

from coldbucket.core.errors import ContentStoreError
from coldbucket.core.logging import get_logger

logger = get_logger(__name__)

_DIRECTORY_TYPE = "application/x-directory"
_FILE_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class Link:
    """A link from one content store node to another.

    Named links are directory children; anonymous links point at internal
    nodes such as the chunks of a large file.
    """

    name: str
    cid: str
    size: int = 0


@dataclass(frozen=True)
class ObjectNode:
    """A content store node with its own data size and outgoing links."""

    cid: str
    data_size: int
    links: tuple[Link, ...] = field(default_factory=tuple)


class ContentStore(Protocol):
    """Content-addressed object store used for staging and retrieval."""

    async def add_directory(self, path: Path) -> str: ...

    async def add_file(self, path: Path) -> str: ...

    async def get_object_links(self, cid: str) -> ObjectNode: ...

    async def get_block(self, cid: str) -> bytes: ...

    async def put_block(self, data: bytes) -> str: ...

    async def cat(self, path: str) -> bytes: ...

    async def list_directory(self, path: str) -> list[Link]: ...

    async def ping(self) -> bool: ...

    async def aclose(self) -> None: ...


class IpfsContentStore:
    """Talks to an IPFS node over its ``/api/v0`` HTTP API."""

    def __init__(
        self,
        api_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            api_url: Base URL of the IPFS API, e.g. ``http://127.0.0.1:5001``
            timeout: Timeout in seconds for metadata and lookup calls
            transport: Optional httpx transport, used by tests
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=f"{self.api_url}/api/v0",
            timeout=timeout,
            transport=transport,
        )

    async def _post(
        self,
        endpoint: str,
        params: dict[str, str] | None = None,
        files: Any = None,
        unbounded: bool = False,
    ) -> httpx.Response:
        """POST to an API endpoint, translating failures to ContentStoreError.

        Args:
            endpoint: API endpoint below ``/api/v0``
            params: Query parameters
            files: Multipart file parts
            unbounded: Disable the read timeout for large transfers
        """
        kwargs: dict[str, Any] = {"params": params, "files": files}
        if unbounded:
            kwargs["timeout"] = httpx.Timeout(self.timeout, read=None, write=None)

        try:
            response = await self._client.post(endpoint, **kwargs)
        except httpx.HTTPError as e:
            raise ContentStoreError(f"Content store {endpoint} failed: {e}") from e

        if response.status_code != 200:
            raise ContentStoreError(
                f"Content store {endpoint} returned {response.status_code}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def _post_json(
        self, endpoint: str, params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        response = await self._post(endpoint, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise ContentStoreError(f"Content store {endpoint} sent invalid JSON") from e

    async def add_directory(self, path: Path) -> str:
        """Add a local directory recursively and return its root content id.

        Args:
            path: Local directory to add

        Returns:
            Content id of the directory node

        Raises:
            ContentStoreError: If the upload fails or no root id is reported
        """
        root = Path(path)
        name = root.name

        with ExitStack() as stack:
            parts: list[tuple[str, tuple[str, Any, str]]] = [
                ("file", (name, b"", _DIRECTORY_TYPE))
            ]
            for item in sorted(root.rglob("*")):
                part_name = f"{name}/{item.relative_to(root).as_posix()}"
                if item.is_dir():
                    parts.append(("file", (part_name, b"", _DIRECTORY_TYPE)))
                else:
                    handle = stack.enter_context(item.open("rb"))
                    parts.append(("file", (part_name, handle, _FILE_TYPE)))

            response = await self._post(
                "add",
                params={"recursive": "true", "pin": "true"},
                files=parts,
                unbounded=True,
            )

        for record in self._ndjson(response):
            if record.get("Name") == name:
                logger.info("directory_added", path=str(root), cid=record["Hash"])
                return str(record["Hash"])

        raise ContentStoreError(f"Content store did not report a root id for {root}")

    async def add_file(self, path: Path) -> str:
        """Add a single local file and return its content id."""
        source = Path(path)
        with source.open("rb") as handle:
            response = await self._post(
                "add",
                params={"pin": "true"},
                files=[("file", (source.name, handle, _FILE_TYPE))],
                unbounded=True,
            )

        records = self._ndjson(response)
        if not records:
            raise ContentStoreError(f"Content store did not report an id for {source}")
        return str(records[-1]["Hash"])

    async def get_object_links(self, cid: str) -> ObjectNode:
        """Get a node's own data size and all of its links."""
        stat = await self._post_json("object/stat", params={"arg": cid})
        links = await self._post_json("object/links", params={"arg": cid})

        try:
            return ObjectNode(
                cid=cid,
                data_size=int(stat["DataSize"]),
                links=tuple(
                    Link(
                        name=link.get("Name") or "",
                        cid=link["Hash"],
                        size=int(link.get("Size") or 0),
                    )
                    for link in links.get("Links") or []
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ContentStoreError(f"Malformed object response for {cid}") from e

    async def get_block(self, cid: str) -> bytes:
        """Get the raw block stored under a content id."""
        response = await self._post("block/get", params={"arg": cid})
        return response.content

    async def put_block(self, data: bytes) -> str:
        """Store a raw block and return its content id."""
        response = await self._post(
            "block/put", files=[("data", ("block", data, _FILE_TYPE))]
        )
        try:
            return str(response.json()["Key"])
        except (KeyError, ValueError) as e:
            raise ContentStoreError("Content store block/put sent no key") from e

    async def cat(self, path: str) -> bytes:
        """Read a file by logical path from locally available blocks only.

        Args:
            path: Logical path, e.g. ``"<root cid>/docs/a.txt"``

        Raises:
            ContentStoreError: If the path does not resolve locally
        """
        response = await self._post(
            "cat",
            params={"arg": f"/ipfs/{path.strip('/')}", "offline": "true"},
            unbounded=True,
        )
        return response.content

    async def list_directory(self, path: str) -> list[Link]:
        """List the named children of a directory from local blocks only.

        Child types are not resolved, so only the directory's own block
        has to be present.

        Raises:
            ContentStoreError: If the directory block is not available locally
        """
        data = await self._post_json(
            "ls",
            params={
                "arg": f"/ipfs/{path.strip('/')}",
                "offline": "true",
                "resolve-type": "false",
                "size": "false",
            },
        )
        try:
            objects = data.get("Objects") or []
            return [
                Link(
                    name=link["Name"],
                    cid=link["Hash"],
                    size=int(link.get("Size") or 0),
                )
                for obj in objects
                for link in obj.get("Links") or []
                if link.get("Name")
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ContentStoreError(f"Malformed ls response for {path}") from e

    async def ping(self) -> bool:
        """Check that the node answers API calls."""
        try:
            await self._post("version")
        except ContentStoreError:
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _ndjson(response: httpx.Response) -> list[dict[str, Any]]:
        try:
            return [json.loads(line) for line in response.text.splitlines() if line]
        except ValueError as e:
            raise ContentStoreError("Content store sent an invalid add response") from e
