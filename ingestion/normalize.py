"""
Ingestion normalization helpers.

Pure functions that turn raw feed objects into canonical records:
- Composite dedup keys for stock rows
- Feed/transfer/range date parsing
- Sale line and stock row construction
- Voucher payment split at ingest
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from derivation_engine.rules import (
    first_present,
    is_reserve_voucher,
    normalize_brand,
    normalize_customer_code,
    to_number,
)
from models.records import CashRecord, CustomerRef, SaleLine, StockTransferRecord

MONTHS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]
ECOIN_SYSCODE = "ECOIN"

# Feed keys stored verbatim in SaleLine.discounts
DISCOUNT_KEYS = (
    "other_discamt",
    "chietKhauMuaHangGiamGia",
    "disc_tm",
    "chietKhauCkTheoChinhSach",
    "grade_discamt",
    "chietKhauMuaHangCkVip",
    "chietKhauThanhToanCoupon",
    "chietKhauVoucherDp1",
    "chietKhauVoucherDp2",
    "chietKhauVoucherDp3",
    "chietKhauThanhToanTkTienAo",
) + tuple(f"chietKhau{n:02d}" for n in range(9, 23))


class StructuralInputError(Exception):
    """A document that cannot be ingested at all (no lines, bad date)."""
    def __init__(self, doc_code: str, message: str):
        super().__init__(f"{doc_code}: {message}")
        self.doc_code = doc_code


class DateRangeError(ValueError):
    """A DDMMMYYYY date or range could not be parsed."""
    pass


# =============================================================================
# Keys and dates
# =============================================================================

def _format_qty(qty: Any) -> str:
    number = to_number(qty)
    if number == int(number):
        return str(int(number))
    return repr(number)


def build_composite_key(
    doc_code: Optional[str],
    item_code: Optional[str],
    qty: Any,
    stock_code: Optional[str],
    io_type: Optional[str],
    batch_serial: Optional[str],
) -> str:
    """Content-derived dedup key: the same business content always yields the same key."""
    parts = [
        doc_code or "",
        item_code or "",
        _format_qty(qty),
        stock_code or "",
        io_type or "",
        batch_serial or "",
    ]
    return "|".join(str(p).strip() for p in parts)


def parse_trans_date(value: Optional[str]) -> Optional[datetime]:
    """Parse "dd/mm/YYYY HH:MM" (time optional)."""
    if not value:
        return None
    text = value.strip()
    for fmt in ("%d/%m/%Y %H:%M", "%d/%m/%Y %H:%M:%S", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_feed_date(value: Any) -> Optional[datetime]:
    """Parse a sale document date: ISO, or "DD-MM-YYYY HH:mm"."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%d-%m-%Y %H:%M", "%d-%m-%Y %H:%M:%S", "%d-%m-%Y"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_ddmmmyyyy(value: str) -> date:
    """Parse "01NOV2025". Raises DateRangeError."""
    text = (value or "").strip().upper()
    if len(text) != 9:
        raise DateRangeError(f"Invalid date '{value}', expected DDMMMYYYY")
    day, month, year = text[:2], text[2:5], text[5:]
    if month not in MONTHS or not day.isdigit() or not year.isdigit():
        raise DateRangeError(f"Invalid date '{value}', expected DDMMMYYYY")
    try:
        return date(int(year), MONTHS.index(month) + 1, int(day))
    except ValueError as e:
        raise DateRangeError(f"Invalid date '{value}': {e}")


def format_ddmmmyyyy(value: date) -> str:
    return f"{value.day:02d}{MONTHS[value.month - 1]}{value.year}"


def parse_date_range(date_from: str, date_to: str) -> Tuple[datetime, datetime]:
    """Inclusive [start of date_from, end of date_to]."""
    start = parse_ddmmmyyyy(date_from)
    end = parse_ddmmmyyyy(date_to)
    if start > end:
        raise DateRangeError(f"Range start {date_from} is after end {date_to}")
    return (
        datetime(start.year, start.month, start.day),
        datetime(end.year, end.month, end.day, 23, 59, 59),
    )


def iter_days(date_from: str, date_to: str) -> List[str]:
    """Every day of a DDMMMYYYY range, as DDMMMYYYY strings."""
    start, end = parse_date_range(date_from, date_to)
    days = []
    current = start.date()
    while current <= end.date():
        days.append(format_ddmmmyyyy(current))
        current += timedelta(days=1)
    return days


# =============================================================================
# Voucher split
# =============================================================================

def split_voucher_payment(
    voucher_paid: float,
    cash_records: List[CashRecord],
    sales_channel: Optional[str],
    promotion_code: Optional[str],
    package_code: Optional[str],
    brand: Optional[str],
) -> Dict[str, float]:
    """Route a line's voucher payment to the right discount component.

    ECOIN-paid orders move the amount to the virtual-account field; otherwise
    the reserve rule picks chietKhauVoucherDp1 over the primary voucher field.
    """
    amount = to_number(voucher_paid)
    if amount <= 0:
        return {}

    ecoin = [r for r in cash_records if (r.fop_syscode or "").upper() == ECOIN_SYSCODE]
    if ecoin:
        ecoin_total = next((r.total_in for r in ecoin if r.total_in > 0), 0)
        return {"chietKhauThanhToanTkTienAo": ecoin_total if ecoin_total > 0 else amount}

    if is_reserve_voucher(sales_channel, promotion_code, package_code, brand):
        return {"chietKhauVoucherDp1": amount}
    return {"paid_by_voucher_ecode_ecoin_bp": amount}


# =============================================================================
# Record construction
# =============================================================================

def build_customer(order: Dict[str, Any], brand: Optional[str]) -> Optional[CustomerRef]:
    raw = order.get("customer") or {}
    code = normalize_customer_code(raw.get("code"))
    if not code:
        return None
    return CustomerRef(
        code=code,
        name=first_present(raw.get("name")),
        mobile=first_present(raw.get("mobile")),
        brand=normalize_brand(first_present(raw.get("brand"), brand, default="")) or None,
        grade_name=first_present(raw.get("grade_name")),
        branch_code=first_present(raw.get("branch_code"), order.get("branchCode")),
        ecom_name=first_present(raw.get("ecom_name")),
    )


def build_cash_records(doc_code: str, rows: List[Dict[str, Any]]) -> List[CashRecord]:
    records = []
    for row in rows:
        if doc_code not in (row.get("so_code"), row.get("master_code")):
            continue
        records.append(CashRecord(
            doc_code=doc_code,
            fop_syscode=str(row.get("fop_syscode") or "").upper(),
            refno=str(row.get("refno") or ""),
            total_in=to_number(row.get("total_in")),
        ))
    return records


def build_sale_lines(
    order: Dict[str, Any],
    brand: Optional[str],
    cash_records: List[CashRecord],
) -> List[SaleLine]:
    """Canonical lines for one feed order.

    Raises:
        StructuralInputError: no lines, or the document date cannot be parsed
    """
    doc_code = str(order.get("docCode") or "").strip()
    sales = order.get("sales") or []
    if not sales:
        raise StructuralInputError(doc_code, "order has no sale lines")

    doc_date = parse_feed_date(order.get("docDate"))
    if doc_date is None:
        raise StructuralInputError(doc_code, f"unparseable document date {order.get('docDate')!r}")

    customer = order.get("customer") or {}
    normalized_brand = normalize_brand(first_present(customer.get("brand"), brand, default=""))

    lines = []
    for index, sale in enumerate(sales):
        discounts = {
            key: to_number(sale.get(key))
            for key in DISCOUNT_KEYS
            if to_number(sale.get(key)) != 0
        }
        discounts.update(split_voucher_payment(
            sale.get("paid_by_voucher_ecode_ecoin_bp"),
            cash_records,
            sale.get("order_source"),
            sale.get("promCode"),
            sale.get("pkg_code"),
            normalized_brand,
        ))
        labels = {
            key: str(value)
            for key, value in sale.items()
            if key.startswith("maCk") and value
        }

        lines.append(SaleLine(
            doc_code=doc_code,
            line_no=index + 1,
            doc_date=doc_date.date(),
            branch_code=str(order.get("branchCode") or ""),
            brand=normalized_brand,
            customer_code=normalize_customer_code(customer.get("code")) or None,
            order_type_name=str(sale.get("ordertype") or "").strip(),
            item_code=str(sale.get("itemCode") or "").strip(),
            item_name=str(sale.get("itemName") or ""),
            product_type=first_present(sale.get("producttype")),
            qty=to_number(sale.get("qty")),
            revenue=to_number(sale.get("revenue")),
            line_total=to_number(sale.get("linetotal")),
            goods_amount=_optional_number(sale.get("tienHang")),
            gross_amount=_optional_number(sale.get("mn_linetotal")),
            unit_price=_optional_number(sale.get("giaBan")),
            promotion_code=first_present(sale.get("promCode")),
            package_code=first_present(sale.get("pkg_code")),
            sales_channel=first_present(sale.get("order_source")),
            type_sale=first_present(sale.get("type_sale")),
            serial=first_present(sale.get("serial")),
            unit=first_present(sale.get("dvt")),
            tax_code=first_present(sale.get("maThue")),
            discounts=discounts,
            labels=labels,
        ))
    return lines


def _optional_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return to_number(value)


def build_stock_record(row: Dict[str, Any], sync_date: str, brand: Optional[str]) -> StockTransferRecord:
    """Canonical stock row with its content-derived composite key."""
    doc_code = str(row.get("doccode") or row.get("docCode") or "").strip()
    item_code = str(row.get("itemcode") or row.get("itemCode") or "").strip()
    stock_code = str(row.get("stockcode") or row.get("stockCode") or "").strip()
    io_type = str(row.get("iotype") or row.get("ioType") or "").strip().upper()
    batch_serial = first_present(row.get("batchserial"), row.get("batchSerial"))
    qty = to_number(row.get("qty"))

    return StockTransferRecord(
        doctype=str(row.get("doctype") or "").strip().upper(),
        doc_code=doc_code,
        trans_date=parse_trans_date(row.get("transdate") or row.get("transDate")),
        doc_desc=first_present(row.get("doc_desc"), row.get("docDesc")),
        branch_code=str(row.get("branch_code") or row.get("branchCode") or ""),
        brand_code=str(row.get("brand_code") or row.get("brandCode") or ""),
        item_code=item_code,
        item_name=str(row.get("itemname") or row.get("itemName") or ""),
        stock_code=stock_code,
        related_stock_code=first_present(row.get("related_stock_code"), row.get("relatedStockCode")),
        io_type=io_type,
        qty=qty,
        batch_serial=batch_serial,
        so_code=first_present(row.get("so_code"), row.get("soCode")),
        sync_date=sync_date,
        brand=normalize_brand(brand) or None,
        composite_key=build_composite_key(doc_code, item_code, qty, stock_code, io_type, batch_serial),
    )
