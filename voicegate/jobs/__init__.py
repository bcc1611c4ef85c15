"""
Background Jobs
================
Scheduled call reconciliation.
"""

from voicegate.jobs.reconciler import CallReconciler, ReconcileSummary

__all__ = ["CallReconciler", "ReconcileSummary"]
