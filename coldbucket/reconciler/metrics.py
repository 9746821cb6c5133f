"""Prometheus metrics for the job reconciler."""

from prometheus_client import Counter, Gauge

RECONCILER_SUBMISSIONS = Counter(
    "coldbucket_reconciler_submissions_total",
    "Total number of buckets pushed for long-term storage",
)

RECONCILER_JOB_EVENTS = Counter(
    "coldbucket_reconciler_job_events_total",
    "Total number of job status events received",
    ["state", "applied"],  # applied: true, false
)

RECONCILER_PENDING_JOBS = Gauge(
    "coldbucket_reconciler_pending_jobs",
    "Number of watched jobs that have not reached a terminal state",
)
