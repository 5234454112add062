"""
Derivation Engine - sale line to invoice line transformation

Pure functions of their inputs:
- Order-type classification and warehouse codes
- Price backfill and gift detection
- Discount slot assignment (ck01..ck22)
- Promotion, gift, voucher and VIP labels
- Batch/serial selection
"""

from .models import (
    OrderTypes,
    PriceInfo,
    DiscountSlot,
    OrderContext,
    InvoiceLine,
    InvoicePayload,
    StockLine,
    StockPayload,
    SLOT_NAMES,
)
from .rules import (
    first_present,
    first_nonzero,
    get_order_types,
    order_type_prefix,
    derive_warehouse_code,
    resolve_prices,
    is_gift_amounts,
    is_gift_line,
    normalize_brand,
    normalize_customer_code,
    brand_code,
    virtual_account_label,
    vip_discount_label,
    primary_voucher_label,
    marketplace_voucher_label,
    format_voucher_label,
    is_reserve_voucher,
    promotion_display_code,
    promotion_label,
    gift_label,
    legacy_gift_month,
    select_batch_or_serial,
    derive_batch_code,
    normalize_tax_code,
    limit,
    SERVICE_ORDER_TYPES,
    GOODS_ORDER_TYPES,
    NORMAL_SALE_ORDER_TYPES,
    WAREHOUSE_CODE_MSO1_OVERRIDE,
)
from .slots import assign_discount_slots
from .engine import DerivationEngine, movement_code

__all__ = [
    # Models
    "OrderTypes",
    "PriceInfo",
    "DiscountSlot",
    "OrderContext",
    "InvoiceLine",
    "InvoicePayload",
    "StockLine",
    "StockPayload",
    "SLOT_NAMES",
    # Rules
    "first_present",
    "first_nonzero",
    "get_order_types",
    "order_type_prefix",
    "derive_warehouse_code",
    "resolve_prices",
    "is_gift_amounts",
    "is_gift_line",
    "normalize_brand",
    "normalize_customer_code",
    "brand_code",
    "virtual_account_label",
    "vip_discount_label",
    "primary_voucher_label",
    "marketplace_voucher_label",
    "format_voucher_label",
    "is_reserve_voucher",
    "promotion_display_code",
    "promotion_label",
    "gift_label",
    "legacy_gift_month",
    "select_batch_or_serial",
    "derive_batch_code",
    "normalize_tax_code",
    "limit",
    "SERVICE_ORDER_TYPES",
    "GOODS_ORDER_TYPES",
    "NORMAL_SALE_ORDER_TYPES",
    "WAREHOUSE_CODE_MSO1_OVERRIDE",
    # Slots
    "assign_discount_slots",
    # Engine
    "DerivationEngine",
    "movement_code",
]
