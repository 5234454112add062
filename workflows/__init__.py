"""Workflow definitions module."""

from workflows.daily_sync_workflow import DailySyncWorkflow, DailySyncInput, TASK_QUEUE

__all__ = ["DailySyncWorkflow", "DailySyncInput", "TASK_QUEUE"]
