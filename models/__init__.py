"""Models Package.

Data models for the POS sync pipeline including:
- Canonical records (sale lines, customers, stock transfers)
- Idempotency records (invoice dispatch, warehouse postings)
- Reference models from the classification service
"""

from models.records import (
    DispatchStatus,
    IOType,
    CustomerRef,
    SaleLine,
    CashRecord,
    StockTransferRecord,
    DispatchRecord,
    WarehousePostingRecord,
)

from models.refs import (
    ReferenceProduct,
    DepartmentRef,
)

__all__ = [
    # Enums
    "DispatchStatus",
    "IOType",
    # Records
    "CustomerRef",
    "SaleLine",
    "CashRecord",
    "StockTransferRecord",
    "DispatchRecord",
    "WarehousePostingRecord",
    # Refs
    "ReferenceProduct",
    "DepartmentRef",
]
