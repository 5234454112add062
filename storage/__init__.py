"""Storage - sqlite persistence for the pipeline."""

from storage.db import DEFAULT_DB_PATH, get_db_connection, init_pipeline_db
from storage.repositories import (
    CashRecordRepository,
    CustomerRepository,
    DispatchRecordRepository,
    Repositories,
    SaleLineRepository,
    StockTransferRepository,
    WarehousePostingRepository,
)

__all__ = [
    "DEFAULT_DB_PATH",
    "get_db_connection",
    "init_pipeline_db",
    "CashRecordRepository",
    "CustomerRepository",
    "DispatchRecordRepository",
    "Repositories",
    "SaleLineRepository",
    "StockTransferRepository",
    "WarehousePostingRepository",
]
