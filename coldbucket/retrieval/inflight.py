"""Sets of bucket ids with a fetch in progress."""

import threading
from typing import Protocol

import redis

from coldbucket.core.errors import InflightStoreError


class Inflight(Protocol):
    """Check-and-insert set of bucket ids being fetched."""

    def try_add(self, bucket_id: str) -> bool: ...

    def discard(self, bucket_id: str) -> None: ...

    def __contains__(self, bucket_id: object) -> bool: ...


class InflightSet:
    """In-process in-flight set.

    ``try_add`` is the only way to claim a bucket id, and it succeeds for
    exactly one caller until the id is discarded again.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bucket_ids: set[str] = set()

    def try_add(self, bucket_id: str) -> bool:
        """Claim a bucket id.

        Returns:
            True if the id was not in the set and has been added
        """
        with self._lock:
            if bucket_id in self._bucket_ids:
                return False
            self._bucket_ids.add(bucket_id)
            return True

    def discard(self, bucket_id: str) -> None:
        with self._lock:
            self._bucket_ids.discard(bucket_id)

    def __contains__(self, bucket_id: object) -> bool:
        with self._lock:
            return bucket_id in self._bucket_ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._bucket_ids)


class RedisInflightSet:
    """In-flight set shared by several server processes through Redis.

    Each claimed bucket id is a key written with ``SET NX EX``. The expiry
    releases ids held by a process that died before discarding them.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        prefix: str = "coldbucket:inflight:",
        ttl: int = 3600,
    ) -> None:
        """Initialize set.

        Args:
            redis_client: Connected Redis client
            prefix: Key prefix for claimed bucket ids
            ttl: Seconds before an unreleased claim expires
        """
        self.redis = redis_client
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, bucket_id: str) -> str:
        return f"{self.prefix}{bucket_id}"

    def try_add(self, bucket_id: str) -> bool:
        """Claim a bucket id across all processes sharing the Redis server.

        Raises:
            InflightStoreError: If Redis cannot be reached
        """
        try:
            return bool(self.redis.set(self._key(bucket_id), "1", nx=True, ex=self.ttl))
        except redis.RedisError as e:
            raise InflightStoreError(f"Could not claim bucket {bucket_id}: {e}") from e

    def discard(self, bucket_id: str) -> None:
        try:
            self.redis.delete(self._key(bucket_id))
        except redis.RedisError as e:
            raise InflightStoreError(
                f"Could not release bucket {bucket_id}: {e}"
            ) from e

    def __contains__(self, bucket_id: object) -> bool:
        if not isinstance(bucket_id, str):
            return False
        try:
            return bool(self.redis.exists(self._key(bucket_id)))
        except redis.RedisError as e:
            raise InflightStoreError(f"Could not query bucket {bucket_id}: {e}") from e

    def __len__(self) -> int:
        try:
            return sum(1 for _ in self.redis.scan_iter(match=f"{self.prefix}*"))
        except redis.RedisError as e:
            raise InflightStoreError(f"Could not count in-flight buckets: {e}") from e
