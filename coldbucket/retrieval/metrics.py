"""Prometheus metrics for the retrieval path."""

from prometheus_client import Counter, Gauge

RETRIEVAL_REQUESTS = Counter(
    "coldbucket_retrieval_requests_total",
    "Total number of content requests",
    ["result"],  # found, directory, pending, not_found
)

BUCKET_FETCHES = Counter(
    "coldbucket_bucket_fetches_total",
    "Total number of bucket fetches from the archive service",
    ["status"],  # success, failure
)

INFLIGHT_FETCHES = Gauge(
    "coldbucket_inflight_fetches",
    "Number of bucket fetches running in this process",
)
