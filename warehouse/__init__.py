"""Warehouse Tracker - idempotent stock movement postings per document code."""

from warehouse.tracker import (
    DecisionKind,
    WarehouseDecision,
    WarehouseResult,
    WarehouseBatchSummary,
    WarehouseTracker,
    classify_document,
)

__all__ = [
    "DecisionKind",
    "WarehouseDecision",
    "WarehouseResult",
    "WarehouseBatchSummary",
    "WarehouseTracker",
    "classify_document",
]
