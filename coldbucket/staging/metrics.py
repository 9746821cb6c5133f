"""Prometheus metrics for the staging pipeline."""

from prometheus_client import Counter

STAGED_BUCKETS = Counter(
    "coldbucket_staged_buckets_total",
    "Total number of buckets handled by the staging pipeline",
    ["outcome"],  # submitted, resumed
)

STAGED_ENTRIES = Counter(
    "coldbucket_staged_entries_total",
    "Total number of entries recorded with a bucket id",
    ["kind"],  # file, directory
)

STAGED_BYTES = Counter(
    "coldbucket_staged_bytes_total",
    "Total file bytes submitted to the archive service",
)
