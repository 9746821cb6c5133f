"""Cache-first content retrieval with coalesced bucket fetches."""

from coldbucket.retrieval.coalescer import (
    RetrievalCoalescer,
    RetrievalResult,
    RetrievalStatus,
)
from coldbucket.retrieval.inflight import Inflight, InflightSet, RedisInflightSet

__all__ = [
    "Inflight",
    "InflightSet",
    "RedisInflightSet",
    "RetrievalCoalescer",
    "RetrievalResult",
    "RetrievalStatus",
]
