"""Dispatch Tracker - exactly-once sales invoice submission per document code."""

from dispatch.tracker import DispatchTracker, DispatchResult, DispatchBatchSummary

__all__ = [
    "DispatchTracker",
    "DispatchResult",
    "DispatchBatchSummary",
]
