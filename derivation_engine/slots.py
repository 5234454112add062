"""
Discount Slot Assignment

Maps a sale line's discount/payment components onto the ck01..ck22 slots
of the outbound invoice line. ck05 (primary voucher) and ck15 (reserve
voucher) are mutually exclusive; reclassification happens here at read
time and never rewrites stored amounts.
"""

from typing import Dict, Optional

from models.records import SaleLine
from models.refs import ReferenceProduct

from .models import SLOT_NAMES, DiscountSlot, OrderContext, OrderTypes
from .rules import (
    format_voucher_label,
    is_reserve_voucher,
    marketplace_voucher_label,
    primary_voucher_label,
    promotion_label,
    to_number,
    virtual_account_label,
    vip_discount_label,
)

PRIMARY_VOUCHER_KEY = "paid_by_voucher_ecode_ecoin_bp"
RESERVE_VOUCHER_KEY = "chietKhauVoucherDp1"
ECOIN_SYSCODE = "ECOIN"

# ck11 and ck15 are computed explicitly
GENERIC_SLOT_NUMBERS = [n for n in range(9, 23) if n not in (11, 15)]


def _label(line: SaleLine, slot: str) -> Optional[str]:
    value = line.labels.get(f"ma{slot.capitalize()}")
    return value.strip() if value and value.strip() else None


def _ecoin_amount(order: OrderContext) -> float:
    for record in order.cash_of(ECOIN_SYSCODE):
        if to_number(record.total_in) > 0:
            return to_number(record.total_in)
    return 0.0


def assign_discount_slots(
    line: SaleLine,
    order: OrderContext,
    refs: Optional[ReferenceProduct],
    order_types: OrderTypes,
    is_gift: bool,
    brand: str,
) -> Dict[str, DiscountSlot]:
    """Build all 22 slots for one line.

    Args:
        line: The sale line
        order: Parent document context (cash records, customer)
        refs: Resolved product classification, or None if unresolved
        order_types: Flags for the line's order type
        is_gift: Result of the gift classification
        brand: Normalized brand

    Returns:
        Dict with every key ck01..ck22
    """
    slots: Dict[str, DiscountSlot] = {name: DiscountSlot() for name in SLOT_NAMES}
    product_type = refs.product_type if refs else None
    material_code = refs.material_code if refs else None

    # ck01: purchase promotion
    if not is_gift and not order_types.is_points_exchange:
        amount = line.discount("other_discamt", "chietKhauMuaHangGiamGia")
        label = promotion_label(
            line.promotion_code, line.product_type, order_types.is_marketplace, brand,
        )
        slots["ck01"] = DiscountSlot(label=label, amount=amount)

    # ck02: policy discount
    disc_tm = to_number(line.discounts.get("disc_tm"))
    ck02 = disc_tm if disc_tm > 0 else line.discount("chietKhauCkTheoChinhSach")
    slots["ck02"] = DiscountSlot(label=_label(line, "ck02"), amount=ck02)

    # ck03: VIP purchase discount
    ck03 = line.discount("chietKhauMuaHangCkVip", "grade_discamt")
    if ck03:
        slots["ck03"] = DiscountSlot(
            label=vip_discount_label(
                product_type,
                material_code,
                line.item_code,
                refs.track_inventory if refs else None,
                refs.track_serial if refs else None,
                brand,
            ),
            amount=ck03,
        )

    # ck04: coupon
    ck04 = line.discount("chietKhauThanhToanCoupon", "chietKhau09")
    if ck04:
        slots["ck04"] = DiscountSlot(label=_label(line, "ck04") or "COUPON", amount=ck04)

    # ck11: virtual-account payment, possibly inferred from an ECOIN cash record
    primary = to_number(line.discounts.get(PRIMARY_VOUCHER_KEY))
    reserve = to_number(line.discounts.get(RESERVE_VOUCHER_KEY))
    voucher_total = primary + reserve

    ck11 = line.discount("chietKhauThanhToanTkTienAo", "chietKhau11")
    if ck11 == 0 and voucher_total > 0:
        ecoin = _ecoin_amount(order)
        if ecoin > 0:
            ck11 = ecoin
            voucher_total = 0.0
    if ck11:
        slots["ck11"] = DiscountSlot(
            label=_label(line, "ck11") or virtual_account_label(order.doc_date, brand),
            amount=ck11,
        )

    # ck05 / ck15: exactly one carries the voucher amount
    if voucher_total > 0:
        if is_reserve_voucher(line.sales_channel, line.promotion_code, line.package_code, brand):
            ecom_name = order.customer.ecom_name if order.customer else None
            slots["ck15"] = DiscountSlot(
                label=_label(line, "ck15") or marketplace_voucher_label(brand, ecom_name),
                amount=voucher_total,
            )
        elif not order_types.is_points_exchange:
            label = _label(line, "ck05") or primary_voucher_label(
                brand,
                line.product_type,
                product_type == "GIFT",
                line.revenue,
                line.line_total,
                line.type_sale,
            )
            slots["ck05"] = DiscountSlot(label=format_voucher_label(label, brand), amount=voucher_total)

    # ck06 is never populated
    slots["ck06"] = DiscountSlot()

    dp2 = line.discount("chietKhauVoucherDp2")
    if dp2 > 0:
        slots["ck07"] = DiscountSlot(label="VOUCHER_DP2", amount=dp2)
    dp3 = line.discount("chietKhauVoucherDp3")
    if dp3 > 0:
        slots["ck08"] = DiscountSlot(label="VOUCHER_DP3", amount=dp3)

    for number in GENERIC_SLOT_NUMBERS:
        name = f"ck{number:02d}"
        amount = line.discount(f"chietKhau{number:02d}", f"{name}_nt")
        if amount:
            slots[name] = DiscountSlot(label=_label(line, name), amount=amount)

    return slots
