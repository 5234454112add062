"""
Derivation Engine Models

Defines data structures for:
- Order-type flags and price resolution results
- Discount slots (ck01..ck22)
- Order context handed to the engine
- Outbound invoice and stock payloads
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from models.records import CashRecord, CustomerRef, StockTransferRecord
from models.refs import DepartmentRef


SLOT_NAMES = [f"ck{i:02d}" for i in range(1, 23)]

MATERIAL_CODE_MAX = 16
UNIT_MAX = 32
WAREHOUSE_CODE_MAX = 16
DEPARTMENT_CODE_MAX = 8
BATCH_CODE_MAX = 16
SERIAL_MAX = 64
LABEL_MAX = 32

DEFAULT_UNIT = "Cái"


@dataclass(frozen=True)
class OrderTypes:
    """Flags derived from an order-type name."""
    is_normal: bool = False
    is_points_exchange: bool = False
    is_service_exchange: bool = False
    is_birthday: bool = False
    is_investment: bool = False
    is_account_sale: bool = False
    is_marketplace: bool = False
    is_card_split: bool = False
    is_service: bool = False
    is_shell_exchange: bool = False


@dataclass(frozen=True)
class PriceInfo:
    """Resolved pricing for one line."""
    unit_price: float
    gross_amount: float
    goods_amount: float


@dataclass(frozen=True)
class DiscountSlot:
    """One ckNN label + amount pair."""
    label: Optional[str] = None
    amount: float = 0.0

    @property
    def is_set(self) -> bool:
        return abs(self.amount) > 0


# =============================================================================
# Engine input
# =============================================================================

@dataclass
class OrderContext:
    """Everything about the parent document a line derivation may look at."""
    doc_code: str
    doc_date: date
    branch_code: str = ""
    customer: Optional[CustomerRef] = None
    cash_records: List[CashRecord] = field(default_factory=list)
    department: Optional[DepartmentRef] = None
    stock_transfers: List[StockTransferRecord] = field(default_factory=list)

    @property
    def unit_code(self) -> str:
        if self.department and self.department.unit_code:
            return self.department.unit_code
        return self.branch_code

    @property
    def department_code(self) -> str:
        if self.department and self.department.department_code:
            return self.department.department_code
        return self.branch_code

    def cash_of(self, fop_syscode: str) -> List[CashRecord]:
        return [c for c in self.cash_records if c.fop_syscode == fop_syscode]


# =============================================================================
# Outbound payloads
# =============================================================================

@dataclass
class InvoiceLine:
    """One derived invoice detail line."""
    dong: int
    ma_vt: str
    dvt: str
    so_luong: float
    gia_ban: float
    tien_hang: float
    ma_kho: Optional[str] = None
    ma_lo: Optional[str] = None
    so_serial: Optional[str] = None
    ma_thue: str = "00"
    ma_bp: str = ""
    km_yn: int = 0
    ma_ctkm_th: Optional[str] = None
    slots: Dict[str, DiscountSlot] = field(default_factory=dict)

    def slot(self, name: str) -> DiscountSlot:
        return self.slots.get(name, DiscountSlot())

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "dong": self.dong,
            "ma_vt": self.ma_vt,
            "dvt": self.dvt,
            "so_luong": self.so_luong,
            "gia_ban": self.gia_ban,
            "tien_hang": self.tien_hang,
            "ma_thue": self.ma_thue,
            "ma_bp": self.ma_bp,
            "km_yn": self.km_yn,
            "ma_ctkm_th": self.ma_ctkm_th or "",
        }
        if self.ma_kho:
            payload["ma_kho"] = self.ma_kho
        # batch and serial are exclusive on the wire
        if self.so_serial:
            payload["so_serial"] = self.so_serial
        elif self.ma_lo:
            payload["ma_lo"] = self.ma_lo
        for name in SLOT_NAMES:
            slot = self.slot(name)
            payload[f"ma_{name}"] = slot.label or ""
            payload[f"{name}_nt"] = slot.amount
        return payload


@dataclass
class InvoicePayload:
    """Sales invoice for one document."""
    so_ct: str
    ngay_ct: str
    ma_dvcs: str
    ma_kh: str
    detail: List[InvoiceLine] = field(default_factory=list)
    action: int = 0
    ma_gd: str = "1"
    ma_nt: str = "VND"
    ty_gia: float = 1.0
    ma_kenh: str = "ONLINE"
    dien_giai: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "ma_dvcs": self.ma_dvcs,
            "ma_kh": self.ma_kh,
            "ngay_ct": self.ngay_ct,
            "so_ct": self.so_ct,
            "ma_gd": self.ma_gd,
            "ma_nt": self.ma_nt,
            "ty_gia": self.ty_gia,
            "ma_kenh": self.ma_kenh,
            "dien_giai": self.dien_giai or self.so_ct,
            "detail": [line.to_payload() for line in self.detail],
        }


@dataclass
class StockLine:
    """One warehouse movement line."""
    dong: int
    ma_vt: str
    dvt: str
    so_luong: float
    ma_kho: str
    ma_nx: str
    ma_bp: Optional[str] = None
    ma_lo: Optional[str] = None
    so_serial: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "dong": self.dong,
            "ma_vt": self.ma_vt,
            "dvt": self.dvt,
            "so_luong": self.so_luong,
            "ma_kho": self.ma_kho,
            "ma_nx": self.ma_nx,
            "ma_bp": self.ma_bp,
            "gia_nt": 0,
            "tien_nt": 0,
        }
        if self.ma_lo:
            payload["ma_lo"] = self.ma_lo
        elif self.so_serial:
            payload["so_serial"] = self.so_serial
        return payload


@dataclass
class StockPayload:
    """Stock in/out or grouped transfer posting for one document."""
    so_ct: str
    ngay_ct: str
    ma_dvcs: str
    ma_kh: str
    ma_nx: str
    detail: List[StockLine] = field(default_factory=list)
    ma_kho_n: Optional[str] = None
    ma_kho_x: Optional[str] = None
    dien_giai: Optional[str] = None
    action: int = 0

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": self.action,
            "ma_dvcs": self.ma_dvcs,
            "ma_kh": self.ma_kh,
            "ngay_ct": self.ngay_ct,
            "so_ct": self.so_ct,
            "ma_nx": self.ma_nx,
            "dien_giai": self.dien_giai or self.so_ct,
            "detail": [line.to_payload() for line in self.detail],
        }
        if self.ma_kho_n:
            payload["ma_kho_n"] = self.ma_kho_n
        if self.ma_kho_x:
            payload["ma_kho_x"] = self.ma_kho_x
        return payload


def format_doc_date(value: Any) -> str:
    """ISO timestamp for ngay_ct."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day).isoformat()
    return str(value or "")
