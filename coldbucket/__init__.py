"""Stage directory trees into archival buckets and serve them back."""

__version__ = "0.1.0"
