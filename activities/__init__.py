"""Activity definitions module."""

from activities.pipeline import (
    sync_sales,
    sync_stock_transfers,
    dispatch_invoices,
    process_warehouse,
    retry_failed_warehouse,
    open_pipeline,
    Pipeline,
    SyncInput,
    SyncOutput,
    DispatchInput,
    DispatchOutput,
    WarehouseInput,
    WarehouseRetryInput,
    WarehouseOutput,
)

__all__ = [
    # Activities
    "sync_sales",
    "sync_stock_transfers",
    "dispatch_invoices",
    "process_warehouse",
    "retry_failed_warehouse",
    # Wiring
    "open_pipeline",
    "Pipeline",
    # Inputs/outputs
    "SyncInput",
    "SyncOutput",
    "DispatchInput",
    "DispatchOutput",
    "WarehouseInput",
    "WarehouseRetryInput",
    "WarehouseOutput",
]
