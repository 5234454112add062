"""
Pipeline Repositories

Explicit repository classes over the sqlite tables created by
``storage.db.init_pipeline_db``. Every repository exposes the same small
surface where it applies:

- get(key)                     → record or None
- upsert(record)               → stored record (+ created flag where useful)
- find_by_natural_key(...)     → record(s) matching the business key

Records are immutable pydantic models; each call returns fresh instances.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple, Union

from models.records import (
    CashRecord,
    CustomerRef,
    DispatchRecord,
    DispatchStatus,
    SaleLine,
    StockTransferRecord,
    WarehousePostingRecord,
)
from storage.db import DEFAULT_DB_PATH, get_db_connection, init_pipeline_db


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str, ensure_ascii=False)


def _loads(value: Optional[str]) -> Any:
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def utc_now() -> datetime:
    """Current UTC time, naive, matching sqlite CURRENT_TIMESTAMP."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _now() -> str:
    return utc_now().isoformat()


# =============================================================================
# Customers
# =============================================================================

class CustomerRepository:
    """Customers keyed by code."""

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, code: str) -> Optional[CustomerRef]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM customers WHERE code = ?", (code,)).fetchone()
            return _row_to_customer(row) if row else None
        finally:
            conn.close()

    find_by_natural_key = get

    def upsert(self, customer: CustomerRef) -> Tuple[CustomerRef, bool]:
        """Insert a new customer or update the stored one.

        Returns:
            (stored customer, created)
        """
        conn = get_db_connection(self.db_path)
        try:
            existing = conn.execute(
                "SELECT id FROM customers WHERE code = ?", (customer.code,)
            ).fetchone()
            if existing:
                conn.execute("""
                    UPDATE customers
                    SET name = ?, mobile = ?, brand = ?, grade_name = ?,
                        branch_code = ?, ecom_name = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE code = ?
                """, (
                    customer.name, customer.mobile, customer.brand, customer.grade_name,
                    customer.branch_code, customer.ecom_name, customer.code,
                ))
            else:
                conn.execute("""
                    INSERT INTO customers
                    (code, name, mobile, brand, grade_name, branch_code, ecom_name)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    customer.code, customer.name, customer.mobile, customer.brand,
                    customer.grade_name, customer.branch_code, customer.ecom_name,
                ))
            conn.commit()
            return customer, existing is None
        finally:
            conn.close()


def _row_to_customer(row: sqlite3.Row) -> CustomerRef:
    return CustomerRef(
        code=row["code"],
        name=row["name"],
        mobile=row["mobile"],
        brand=row["brand"],
        grade_name=row["grade_name"],
        branch_code=row["branch_code"],
        ecom_name=row["ecom_name"],
    )


# =============================================================================
# Sale lines
# =============================================================================

_SALE_COLUMNS = (
    "doc_code", "line_no", "doc_date", "branch_code", "brand", "customer_code",
    "order_type_name", "item_code", "item_name", "product_type", "qty", "revenue",
    "line_total", "goods_amount", "gross_amount", "unit_price", "promotion_code",
    "package_code", "sales_channel", "type_sale", "serial", "unit", "tax_code",
    "discounts", "labels", "resolved",
)


def _sale_values(line: SaleLine) -> tuple:
    return (
        line.doc_code, line.line_no, _iso(line.doc_date), line.branch_code, line.brand,
        line.customer_code, line.order_type_name, line.item_code, line.item_name,
        line.product_type, line.qty, line.revenue, line.line_total, line.goods_amount,
        line.gross_amount, line.unit_price, line.promotion_code, line.package_code,
        line.sales_channel, line.type_sale, line.serial, line.unit, line.tax_code,
        _dumps(line.discounts), _dumps(line.labels), 1 if line.resolved else 0,
    )


class SaleLineRepository:
    """Sale lines keyed by (doc_code, line_no)."""

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, line_id: int) -> Optional[SaleLine]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM sale_lines WHERE id = ?", (line_id,)).fetchone()
            return _row_to_sale(row) if row else None
        finally:
            conn.close()

    def find_by_natural_key(self, doc_code: str, line_no: int) -> Optional[SaleLine]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM sale_lines WHERE doc_code = ? AND line_no = ?",
                (doc_code, line_no),
            ).fetchone()
            return _row_to_sale(row) if row else None
        finally:
            conn.close()

    def upsert(self, line: SaleLine) -> Tuple[SaleLine, bool]:
        """Insert or update a sale line by natural key.

        The processed flag is owned by the dispatch tracker and is never
        overwritten here.

        Returns:
            (stored line, created)
        """
        conn = get_db_connection(self.db_path)
        try:
            existing = conn.execute(
                "SELECT id, processed FROM sale_lines WHERE doc_code = ? AND line_no = ?",
                (line.doc_code, line.line_no),
            ).fetchone()

            if existing:
                assignments = ", ".join(f"{col} = ?" for col in _SALE_COLUMNS[2:])
                conn.execute(
                    f"UPDATE sale_lines SET {assignments}, updated_at = CURRENT_TIMESTAMP "
                    f"WHERE id = ?",
                    _sale_values(line)[2:] + (existing["id"],),
                )
                conn.commit()
                return line.model_copy(update={
                    "id": existing["id"],
                    "processed": bool(existing["processed"]),
                }), False

            placeholders = ", ".join("?" for _ in _SALE_COLUMNS)
            cursor = conn.execute(
                f"INSERT INTO sale_lines ({', '.join(_SALE_COLUMNS)}) VALUES ({placeholders})",
                _sale_values(line),
            )
            conn.commit()
            return line.model_copy(update={"id": cursor.lastrowid}), True
        finally:
            conn.close()

    def list_by_doc_code(self, doc_code: str) -> List[SaleLine]:
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM sale_lines WHERE doc_code = ? ORDER BY line_no",
                (doc_code,),
            ).fetchall()
            return [_row_to_sale(row) for row in rows]
        finally:
            conn.close()

    def mark_processed(self, doc_code: str) -> int:
        """Mark every line of a document processed. Returns rows updated."""
        conn = get_db_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE sale_lines SET processed = 1, updated_at = CURRENT_TIMESTAMP "
                "WHERE doc_code = ?",
                (doc_code,),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def list_unprocessed_doc_codes(self) -> List[str]:
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT DISTINCT doc_code FROM sale_lines WHERE processed = 0 ORDER BY doc_code"
            ).fetchall()
            return [row["doc_code"] for row in rows]
        finally:
            conn.close()

    def list_unresolved(self, doc_code: Optional[str] = None) -> List[SaleLine]:
        conn = get_db_connection(self.db_path)
        try:
            if doc_code:
                rows = conn.execute(
                    "SELECT * FROM sale_lines WHERE resolved = 0 AND doc_code = ? ORDER BY id",
                    (doc_code,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM sale_lines WHERE resolved = 0 ORDER BY id"
                ).fetchall()
            return [_row_to_sale(row) for row in rows]
        finally:
            conn.close()

    def set_resolved(self, line_ids: Iterable[int], resolved: bool) -> int:
        ids = list(line_ids)
        if not ids:
            return 0
        conn = get_db_connection(self.db_path)
        try:
            placeholders = ", ".join("?" for _ in ids)
            cursor = conn.execute(
                f"UPDATE sale_lines SET resolved = ?, updated_at = CURRENT_TIMESTAMP "
                f"WHERE id IN ({placeholders})",
                (1 if resolved else 0, *ids),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()


def _row_to_sale(row: sqlite3.Row) -> SaleLine:
    return SaleLine(
        id=row["id"],
        doc_code=row["doc_code"],
        line_no=row["line_no"],
        doc_date=date.fromisoformat(row["doc_date"][:10]),
        branch_code=row["branch_code"] or "",
        brand=row["brand"] or "",
        customer_code=row["customer_code"],
        order_type_name=row["order_type_name"] or "",
        item_code=row["item_code"] or "",
        item_name=row["item_name"] or "",
        product_type=row["product_type"],
        qty=row["qty"] or 0,
        revenue=row["revenue"] or 0,
        line_total=row["line_total"] or 0,
        goods_amount=row["goods_amount"],
        gross_amount=row["gross_amount"],
        unit_price=row["unit_price"],
        promotion_code=row["promotion_code"],
        package_code=row["package_code"],
        sales_channel=row["sales_channel"],
        type_sale=row["type_sale"],
        serial=row["serial"],
        unit=row["unit"],
        tax_code=row["tax_code"],
        discounts=_loads(row["discounts"]) or {},
        labels=_loads(row["labels"]) or {},
        resolved=bool(row["resolved"]),
        processed=bool(row["processed"]),
    )


# =============================================================================
# Cash / voucher aggregates
# =============================================================================

class CashRecordRepository:
    """Cash records keyed by (doc_code, fop_syscode, refno)."""

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_PATH):
        self.db_path = db_path

    def upsert(self, record: CashRecord) -> CashRecord:
        conn = get_db_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO cash_records (doc_code, fop_syscode, refno, total_in)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(doc_code, fop_syscode, refno)
                DO UPDATE SET total_in = excluded.total_in
            """, (record.doc_code, record.fop_syscode, record.refno or "", record.total_in))
            conn.commit()
            return record
        finally:
            conn.close()

    def list_by_doc_code(self, doc_code: str) -> List[CashRecord]:
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM cash_records WHERE doc_code = ? ORDER BY id", (doc_code,)
            ).fetchall()
            return [
                CashRecord(
                    doc_code=row["doc_code"],
                    fop_syscode=row["fop_syscode"],
                    refno=row["refno"],
                    total_in=row["total_in"] or 0,
                )
                for row in rows
            ]
        finally:
            conn.close()

    find_by_natural_key = list_by_doc_code


# =============================================================================
# Stock transfers
# =============================================================================

_STOCK_COLUMNS = (
    "doctype", "doc_code", "trans_date", "doc_desc", "branch_code", "brand_code",
    "item_code", "item_name", "material_code", "stock_code", "related_stock_code",
    "io_type", "qty", "batch_serial", "so_code", "sync_date", "brand", "composite_key",
)


def _stock_values(record: StockTransferRecord) -> tuple:
    return (
        record.doctype, record.doc_code, _iso(record.trans_date), record.doc_desc,
        record.branch_code, record.brand_code, record.item_code, record.item_name,
        record.material_code, record.stock_code, record.related_stock_code,
        record.io_type, record.qty, record.batch_serial, record.so_code,
        record.sync_date, record.brand, record.composite_key,
    )


class StockTransferRepository:
    """Stock transfer rows. Inserts are unconditional; reads de-duplicate."""

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, row_id: int) -> Optional[StockTransferRecord]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM stock_transfers WHERE id = ?", (row_id,)).fetchone()
            return _row_to_stock(row) if row else None
        finally:
            conn.close()

    def upsert(self, record: StockTransferRecord) -> StockTransferRecord:
        """Persist one row (always a new physical row)."""
        return self.insert_many([record])[0]

    def insert_many(self, records: List[StockTransferRecord]) -> List[StockTransferRecord]:
        """Insert rows in a single transaction; all or nothing."""
        placeholders = ", ".join("?" for _ in _STOCK_COLUMNS)
        sql = f"INSERT INTO stock_transfers ({', '.join(_STOCK_COLUMNS)}) VALUES ({placeholders})"
        conn = get_db_connection(self.db_path)
        try:
            stored = []
            with conn:
                for record in records:
                    cursor = conn.execute(sql, _stock_values(record))
                    stored.append(record.model_copy(update={"id": cursor.lastrowid}))
            return stored
        finally:
            conn.close()

    def find_by_natural_key(self, composite_key: str) -> List[StockTransferRecord]:
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM stock_transfers WHERE composite_key = ? ORDER BY id",
                (composite_key,),
            ).fetchall()
            return [_row_to_stock(row) for row in rows]
        finally:
            conn.close()

    def list_effective_by_doc_code(self, doc_code: str) -> List[StockTransferRecord]:
        """One row per composite key (earliest stored) for a document."""
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT * FROM stock_transfers
                WHERE id IN (
                    SELECT MIN(id) FROM stock_transfers
                    WHERE doc_code = ?
                    GROUP BY composite_key
                )
                ORDER BY id
            """, (doc_code,)).fetchall()
            return [_row_to_stock(row) for row in rows]
        finally:
            conn.close()

    def list_doc_codes_by_trans_date(self, start: datetime, end: datetime) -> List[str]:
        """Document codes with a transfer dated in [start, end]."""
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT DISTINCT doc_code FROM stock_transfers
                WHERE trans_date >= ? AND trans_date <= ?
                ORDER BY doc_code
            """, (start.isoformat(), end.isoformat())).fetchall()
            return [row["doc_code"] for row in rows]
        finally:
            conn.close()


def _row_to_stock(row: sqlite3.Row) -> StockTransferRecord:
    return StockTransferRecord(
        id=row["id"],
        doctype=row["doctype"] or "",
        doc_code=row["doc_code"],
        trans_date=datetime.fromisoformat(row["trans_date"]) if row["trans_date"] else None,
        doc_desc=row["doc_desc"],
        branch_code=row["branch_code"] or "",
        brand_code=row["brand_code"] or "",
        item_code=row["item_code"] or "",
        item_name=row["item_name"] or "",
        material_code=row["material_code"],
        stock_code=row["stock_code"] or "",
        related_stock_code=row["related_stock_code"],
        io_type=row["io_type"] or "",
        qty=row["qty"] or 0,
        batch_serial=row["batch_serial"],
        so_code=row["so_code"],
        sync_date=row["sync_date"],
        brand=row["brand"],
        composite_key=row["composite_key"],
    )


# =============================================================================
# Dispatch records
# =============================================================================

class DispatchRecordRepository:
    """Invoice dispatch state, unique on doc_code."""

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, doc_code: str) -> Optional[DispatchRecord]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM dispatch_records WHERE doc_code = ?", (doc_code,)
            ).fetchone()
            return _row_to_dispatch(row) if row else None
        finally:
            conn.close()

    find_by_natural_key = get

    def insert_unsent(self, doc_code: str) -> bool:
        """Claim a row for doc_code. Returns True if this call created it."""
        conn = get_db_connection(self.db_path)
        try:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO dispatch_records (doc_code, status, updated_at) "
                "VALUES (?, ?, ?)",
                (doc_code, DispatchStatus.UNSENT.value, _now()),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def upsert(self, record: DispatchRecord) -> DispatchRecord:
        updated_at = record.updated_at or utc_now()
        conn = get_db_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO dispatch_records
                (doc_code, status, message, guid, response_payload, customer_code,
                 unit_code, doc_date, attempts, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(doc_code) DO UPDATE SET
                    status = excluded.status,
                    message = excluded.message,
                    guid = excluded.guid,
                    response_payload = excluded.response_payload,
                    customer_code = excluded.customer_code,
                    unit_code = excluded.unit_code,
                    doc_date = excluded.doc_date,
                    attempts = excluded.attempts,
                    updated_at = excluded.updated_at
            """, (
                record.doc_code,
                record.status.value,
                record.message,
                record.guid,
                _dumps(record.response_payload),
                record.customer_code,
                record.unit_code,
                _iso(record.doc_date),
                record.attempts,
                updated_at.isoformat(),
            ))
            conn.commit()
            return record.model_copy(update={"updated_at": updated_at})
        finally:
            conn.close()


def _row_to_dispatch(row: sqlite3.Row) -> DispatchRecord:
    return DispatchRecord(
        doc_code=row["doc_code"],
        status=DispatchStatus(row["status"]),
        message=row["message"],
        guid=row["guid"],
        response_payload=_loads(row["response_payload"]),
        customer_code=row["customer_code"],
        unit_code=row["unit_code"],
        doc_date=date.fromisoformat(row["doc_date"]) if row["doc_date"] else None,
        attempts=row["attempts"] or 0,
        updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
    )


# =============================================================================
# Warehouse postings
# =============================================================================

class WarehousePostingRepository:
    """Warehouse posting state, unique on doc_code."""

    def __init__(self, db_path: Union[str, Path] = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, doc_code: str) -> Optional[WarehousePostingRecord]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM warehouse_postings WHERE doc_code = ?", (doc_code,)
            ).fetchone()
            return _row_to_posting(row) if row else None
        finally:
            conn.close()

    find_by_natural_key = get

    def upsert(self, record: WarehousePostingRecord) -> WarehousePostingRecord:
        processed_date = record.processed_date or utc_now()
        conn = get_db_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO warehouse_postings
                (doc_code, io_type, success, result_payload, error_message, processed_date, attempts)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(doc_code) DO UPDATE SET
                    io_type = excluded.io_type,
                    success = excluded.success,
                    result_payload = excluded.result_payload,
                    error_message = excluded.error_message,
                    processed_date = excluded.processed_date,
                    attempts = excluded.attempts
            """, (
                record.doc_code,
                record.io_type,
                1 if record.success else 0,
                _dumps(record.result_payload),
                record.error_message,
                processed_date.isoformat(),
                record.attempts,
            ))
            conn.commit()
            return record.model_copy(update={"processed_date": processed_date})
        finally:
            conn.close()

    def list_failed(self) -> List[WarehousePostingRecord]:
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM warehouse_postings WHERE success = 0 ORDER BY doc_code"
            ).fetchall()
            return [_row_to_posting(row) for row in rows]
        finally:
            conn.close()


def _row_to_posting(row: sqlite3.Row) -> WarehousePostingRecord:
    return WarehousePostingRecord(
        doc_code=row["doc_code"],
        io_type=row["io_type"],
        success=bool(row["success"]),
        result_payload=_loads(row["result_payload"]),
        error_message=row["error_message"],
        processed_date=datetime.fromisoformat(row["processed_date"]) if row["processed_date"] else None,
        attempts=row["attempts"] or 0,
    )


# =============================================================================
# Wiring
# =============================================================================

@dataclass
class Repositories:
    """All repositories bound to one database, built once at startup."""
    customers: CustomerRepository
    sales: SaleLineRepository
    cash: CashRecordRepository
    stock_transfers: StockTransferRepository
    dispatch: DispatchRecordRepository
    warehouse: WarehousePostingRepository

    @classmethod
    def from_path(cls, db_path: Union[str, Path] = DEFAULT_DB_PATH, init: bool = True) -> "Repositories":
        if init:
            init_pipeline_db(db_path)
        return cls(
            customers=CustomerRepository(db_path),
            sales=SaleLineRepository(db_path),
            cash=CashRecordRepository(db_path),
            stock_transfers=StockTransferRepository(db_path),
            dispatch=DispatchRecordRepository(db_path),
            warehouse=WarehousePostingRepository(db_path),
        )
