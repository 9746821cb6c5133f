"""Storage job submission and reconciliation."""

from coldbucket.reconciler.reconciler import JobReconciler

__all__ = ["JobReconciler"]
