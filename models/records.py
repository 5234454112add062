"""Canonical records persisted by the pipeline.

All records are immutable; repositories return fresh instances and callers
derive changed copies with ``model_copy(update=...)``.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class DispatchStatus(str, Enum):
    """Per-document invoice dispatch state."""
    UNSENT = "UNSENT"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class IOType(str, Enum):
    """Stock movement direction."""
    IN = "I"
    OUT = "O"
    TRANSFER = "T"


# =============================================================================
# Ingested records
# =============================================================================

class CustomerRef(BaseModel):
    """Customer looked up or created during ingestion."""
    code: str
    name: Optional[str] = None
    mobile: Optional[str] = None
    brand: Optional[str] = None
    grade_name: Optional[str] = None
    branch_code: Optional[str] = None
    ecom_name: Optional[str] = None

    class Config:
        frozen = True


class SaleLine(BaseModel):
    """One sale line of a POS order.

    ``discounts`` carries the raw discount/payment components keyed by their
    feed names (other_discamt, grade_discamt, paid_by_voucher_ecode_ecoin_bp,
    chietKhauVoucherDp1, chietKhau12, ...). ``labels`` carries explicit
    maCkNN labels supplied by the feed.
    """
    id: Optional[int] = None
    doc_code: str
    line_no: int
    doc_date: date
    branch_code: str = ""
    brand: str = ""
    customer_code: Optional[str] = None
    order_type_name: str = ""
    item_code: str = ""
    item_name: str = ""
    product_type: Optional[str] = Field(None, description="Line kind from the feed: I, S or V")
    qty: float = 0
    revenue: float = 0
    line_total: float = 0
    goods_amount: Optional[float] = Field(None, description="tienHang")
    gross_amount: Optional[float] = Field(None, description="Pre-discount amount (mn_linetotal)")
    unit_price: Optional[float] = Field(None, description="giaBan")
    promotion_code: Optional[str] = None
    package_code: Optional[str] = None
    sales_channel: Optional[str] = None
    type_sale: Optional[str] = None
    serial: Optional[str] = None
    unit: Optional[str] = None
    tax_code: Optional[str] = None
    discounts: Dict[str, float] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    resolved: bool = True
    processed: bool = False

    class Config:
        frozen = True

    def discount(self, *keys: str) -> float:
        """Return the first non-zero discount among ``keys`` (in order)."""
        for key in keys:
            value = self.discounts.get(key)
            if value:
                return float(value)
        return 0.0


class CashRecord(BaseModel):
    """Cash/voucher aggregate entry for a document (get_daily_cash)."""
    doc_code: str
    fop_syscode: str
    refno: str = ""
    total_in: float = 0

    class Config:
        frozen = True


class StockTransferRecord(BaseModel):
    """One stock movement row. ``composite_key`` is a pure function of content."""
    id: Optional[int] = None
    doctype: str = ""
    doc_code: str
    trans_date: Optional[datetime] = None
    doc_desc: Optional[str] = None
    branch_code: str = ""
    brand_code: str = ""
    item_code: str = ""
    item_name: str = ""
    material_code: Optional[str] = None
    stock_code: str = ""
    related_stock_code: Optional[str] = None
    io_type: str = ""
    qty: float = 0
    batch_serial: Optional[str] = None
    so_code: Optional[str] = None
    sync_date: Optional[str] = None
    brand: Optional[str] = None
    composite_key: str

    class Config:
        frozen = True


# =============================================================================
# Idempotency records (one per document code)
# =============================================================================

class DispatchRecord(BaseModel):
    """Invoice dispatch state for one document code."""
    doc_code: str
    status: DispatchStatus = DispatchStatus.UNSENT
    message: Optional[str] = None
    guid: Optional[str] = None
    response_payload: Optional[Any] = None
    customer_code: Optional[str] = None
    unit_code: Optional[str] = None
    doc_date: Optional[date] = None
    attempts: int = 0
    updated_at: Optional[datetime] = None

    class Config:
        frozen = True

    @property
    def is_success(self) -> bool:
        return self.status == DispatchStatus.SUCCESS


class WarehousePostingRecord(BaseModel):
    """Warehouse posting state for one document code."""
    doc_code: str
    io_type: Optional[str] = None
    success: bool = False
    result_payload: Optional[Any] = None
    error_message: Optional[str] = None
    processed_date: Optional[datetime] = None
    attempts: int = 0

    class Config:
        frozen = True
