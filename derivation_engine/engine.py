"""
Derivation Engine

Turns enriched sale lines plus their order context into outbound invoice
payloads, and stock-transfer rows into warehouse payloads.

No I/O happens here: callers resolve references and load records first.
"""

from typing import Dict, List, Optional

from models.records import SaleLine, StockTransferRecord
from models.refs import ReferenceProduct

from .models import (
    BATCH_CODE_MAX,
    DEFAULT_UNIT,
    DEPARTMENT_CODE_MAX,
    LABEL_MAX,
    MATERIAL_CODE_MAX,
    SERIAL_MAX,
    UNIT_MAX,
    WAREHOUSE_CODE_MAX,
    DiscountSlot,
    InvoiceLine,
    InvoicePayload,
    OrderContext,
    StockLine,
    StockPayload,
    format_doc_date,
)
from .rules import (
    INVESTMENT_GIFT_LABEL,
    derive_warehouse_code,
    first_present,
    get_order_types,
    gift_label,
    is_gift_line,
    limit,
    normalize_brand,
    normalize_customer_code,
    normalize_tax_code,
    resolve_prices,
    select_batch_or_serial,
)
from .slots import assign_discount_slots

IO_TYPE_TO_MA_NX = {
    "O": "1111",
    "I": "1112",
}


def movement_code(io_type: Optional[str]) -> str:
    """ma_nx for an io direction (O out, I in)."""
    return IO_TYPE_TO_MA_NX.get((io_type or "").strip().upper(), "1111")


class DerivationEngine:
    """Builds invoice and warehouse payloads.

    Example:
        engine = DerivationEngine()
        payload = engine.build_invoice_payload(order, lines, products)
        body = payload.to_payload()
    """

    def _brand_for(self, line: SaleLine, order: OrderContext) -> str:
        customer_brand = order.customer.brand if order.customer else None
        return normalize_brand(first_present(line.brand, customer_brand, default=""))

    def _matching_transfer(
        self,
        line: SaleLine,
        order: OrderContext,
        material_code: Optional[str],
    ) -> Optional[StockTransferRecord]:
        for row in order.stock_transfers:
            if row.item_code == line.item_code:
                return row
            if material_code and row.material_code == material_code:
                return row
        return None

    def derive_line(
        self,
        line: SaleLine,
        order: OrderContext,
        product: Optional[ReferenceProduct],
        index: int,
    ) -> InvoiceLine:
        """Derive one invoice line.

        Args:
            line: Sale line to derive
            order: Parent document context
            product: Resolved classification (None when unresolved)
            index: Zero-based position in the document

        Returns:
            InvoiceLine with dong = index + 1
        """
        brand = self._brand_for(line, order)
        order_types = get_order_types(line.order_type_name)
        prices = resolve_prices(line, order_types)
        is_gift = is_gift_line(prices.unit_price, prices.gross_amount, order_types)

        material_code = first_present(product.material_code if product else None, line.item_code, default="")
        unit = first_present(product.unit if product else None, line.unit, default=DEFAULT_UNIT)

        transfer = self._matching_transfer(line, order, material_code)
        warehouse_code = derive_warehouse_code(
            line.order_type_name,
            order.department_code,
            fallback=transfer.stock_code if transfer else None,
        )

        serial_source = first_present(transfer.batch_serial if transfer else None, line.serial)
        batch_code, serial = select_batch_or_serial(
            serial_source,
            product.track_batch if product else False,
            product.track_serial if product else False,
            product.product_type if product else None,
            brand,
        )

        ctkm_label = None
        if is_gift or order_types.is_points_exchange:
            ctkm_label = gift_label(line.promotion_code, order.doc_date, order_types, order.unit_code)

        slots = assign_discount_slots(line, order, product, order_types, is_gift, brand)
        slots = {
            name: DiscountSlot(label=limit(slot.label, LABEL_MAX), amount=slot.amount)
            for name, slot in slots.items()
        }

        return InvoiceLine(
            dong=index + 1,
            ma_vt=limit(material_code, MATERIAL_CODE_MAX),
            dvt=limit(unit, UNIT_MAX),
            so_luong=line.qty,
            gia_ban=prices.unit_price,
            tien_hang=prices.gross_amount,
            ma_kho=limit(warehouse_code, WAREHOUSE_CODE_MAX),
            ma_lo=limit(batch_code, BATCH_CODE_MAX),
            so_serial=limit(serial, SERIAL_MAX),
            ma_thue=normalize_tax_code(line.tax_code),
            ma_bp=limit(order.department_code, DEPARTMENT_CODE_MAX) or "",
            km_yn=1 if is_gift and ctkm_label != INVESTMENT_GIFT_LABEL else 0,
            ma_ctkm_th=limit(ctkm_label, LABEL_MAX),
            slots=slots,
        )

    def build_invoice_payload(
        self,
        order: OrderContext,
        lines: List[SaleLine],
        products: Dict[str, ReferenceProduct],
    ) -> InvoicePayload:
        """Header plus one detail line per sale line (ordered by line_no)."""
        ordered = sorted(lines, key=lambda l: l.line_no)
        customer_code = order.customer.code if order.customer else first_present(
            *(l.customer_code for l in ordered), default=""
        )
        detail = [
            self.derive_line(line, order, products.get(line.item_code), index)
            for index, line in enumerate(ordered)
        ]
        return InvoicePayload(
            so_ct=order.doc_code,
            ngay_ct=format_doc_date(order.doc_date),
            ma_dvcs=order.unit_code,
            ma_kh=normalize_customer_code(customer_code),
            detail=detail,
        )

    # =========================================================================
    # Warehouse payloads
    # =========================================================================

    def _stock_line(
        self,
        row: StockTransferRecord,
        product: Optional[ReferenceProduct],
        index: int,
        department_code: Optional[str],
    ) -> StockLine:
        material_code = first_present(
            product.material_code if product else None,
            row.material_code,
            row.item_code,
            default="",
        )
        batch_code, serial = select_batch_or_serial(
            row.batch_serial,
            product.track_batch if product else False,
            product.track_serial if product else False,
            product.product_type if product else None,
            row.brand,
        )
        return StockLine(
            dong=index + 1,
            ma_vt=limit(material_code, MATERIAL_CODE_MAX),
            dvt=limit(first_present(product.unit if product else None, default=DEFAULT_UNIT), UNIT_MAX),
            so_luong=abs(row.qty),
            ma_kho=limit(row.stock_code, WAREHOUSE_CODE_MAX),
            ma_nx=movement_code(row.io_type),
            ma_bp=limit(first_present(department_code, row.branch_code), DEPARTMENT_CODE_MAX),
            ma_lo=limit(batch_code, BATCH_CODE_MAX),
            so_serial=limit(serial, SERIAL_MAX),
        )

    def build_stock_payload(
        self,
        rows: List[StockTransferRecord],
        products: Dict[str, ReferenceProduct],
        customer_code: Optional[str],
        unit_code: Optional[str],
        department_code: Optional[str] = None,
    ) -> StockPayload:
        """Stock in/out posting for one document's eligible rows."""
        if not rows:
            raise ValueError("Cannot build a stock payload without rows")
        first = rows[0]
        return StockPayload(
            so_ct=first.doc_code,
            ngay_ct=format_doc_date(first.trans_date),
            ma_dvcs=first_present(unit_code, first.branch_code, default=""),
            ma_kh=normalize_customer_code(customer_code),
            ma_nx=movement_code(first.io_type),
            dien_giai=first.doc_desc,
            detail=[
                self._stock_line(row, products.get(row.item_code), index, department_code)
                for index, row in enumerate(rows)
            ],
        )

    def build_transfer_payload(
        self,
        rows: List[StockTransferRecord],
        products: Dict[str, ReferenceProduct],
        customer_code: Optional[str],
        unit_code: Optional[str],
        department_code: Optional[str] = None,
    ) -> StockPayload:
        """Grouped transfer between stock_code (out) and related_stock_code (in)."""
        if not rows:
            raise ValueError("Cannot build a transfer payload without rows")
        outgoing = [r for r in rows if (r.io_type or "").upper() == "O"] or list(rows)
        first = outgoing[0]
        related = first_present(*(r.related_stock_code for r in outgoing), default=None)
        return StockPayload(
            so_ct=first.doc_code,
            ngay_ct=format_doc_date(first.trans_date),
            ma_dvcs=first_present(unit_code, first.branch_code, default=""),
            ma_kh=normalize_customer_code(customer_code),
            ma_nx=movement_code(first.io_type),
            ma_kho_x=limit(first.stock_code, WAREHOUSE_CODE_MAX),
            ma_kho_n=limit(related, WAREHOUSE_CODE_MAX),
            dien_giai=first.doc_desc,
            detail=[
                self._stock_line(row, products.get(row.item_code), index, department_code)
                for index, row in enumerate(outgoing)
            ],
        )
