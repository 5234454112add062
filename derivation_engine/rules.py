"""
Derivation Rules

Pure, deterministic business rules used to turn a sale line into an
invoice line: order-type classification, price backfill, gift detection,
warehouse codes, discount/voucher labels and batch/serial selection.
"""

from datetime import date
from typing import Any, Optional, Tuple

from .models import OrderTypes, PriceInfo


GIFT_EPSILON = 0.01

RESERVE_VOUCHER_CHANNEL = "SHOPEE"
CHANNEL_ONLY_RESERVE_BRANDS = {"f3"}

FULL_SERIAL_BRANDS = {"yaman"}

WAREHOUSE_CODE_MSO1_OVERRIDE = "BMSO1"
MSO1_DEPARTMENT_CODE = "MSO1"

INVESTMENT_GIFT_LABEL = "TT DAU TU"
GIFT_LABEL_SUFFIX = ".TANG SP"

WHOLESALE_TYPES = {"WHOLESALE", "WS"}


# =============================================================================
# Ordered fallbacks
# =============================================================================

def first_present(*values: Any, default: Any = None) -> Any:
    """Return the first value that is neither None nor an empty string.

    Precedence is argument order.
    """
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and value.strip() == "":
            continue
        return value
    return default


def first_nonzero(*values: Any, default: float = 0.0) -> float:
    """Return the first value that converts to a non-zero float."""
    for value in values:
        number = to_number(value)
        if number != 0:
            return number
    return default


def to_number(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def limit(value: Optional[str], max_length: int) -> Optional[str]:
    """Truncate to max_length characters (None passes through)."""
    if value is None:
        return None
    return str(value)[:max_length]


# =============================================================================
# Order types
# =============================================================================

SERVICE_ORDER_TYPES = frozenset([
    "02. Làm dịch vụ",
    "04. Đổi DV",
    "08. Tách thẻ",
    "Đổi thẻ KEEP->Thẻ DV",
    "LAM_DV",
    "DOI_VO_LAY_DV",
    "KEEP_TO_SVC",
    "LAM_THE_DV",
    "SUA_THE_DV",
    "DOI_THE_DV",
    "LAM_DV_LE",
    "LAM_THE_KEEP",
    "NOI_THE_KEEP",
    "RENAME_CARD",
])

GOODS_ORDER_TYPES = frozenset([
    "01.Thường",
    "01. Thường",
    "03. Đổi điểm",
    "05. Tặng sinh nhật",
    "06. Đầu tư",
    "07. Bán tài khoản",
    "9. Sàn TMDT",
    "Đổi vỏ",
    "NORMAL",
    "KM_TRA_DL",
    "BIRTHDAY_PROM",
    "BP_TO_ITEM",
    "BAN_ECOIN",
    "SAN_TMDT",
    "SO_DL",
    "SO_HTDT_HB",
    "SO_HTDT_HK",
    "SO_HTDT_HL_CB",
    "SO_HTDT_HL_HB",
    "SO_HTDT_HL_KM",
    "SO_HTDT_HT",
    "ZERO_CTY",
    "ZERO_SHOP",
])

NORMAL_SALE_ORDER_TYPES = frozenset([
    "01.Thường",
    "01. Thường",
    "Thường",
])


def get_order_types(name: Optional[str]) -> OrderTypes:
    """Classify an order-type name into flags."""
    normalized = (name or "").strip()
    lowered = normalized.lower()

    is_service_exchange = "04. Đổi DV" in normalized or "04.Đổi DV" in normalized
    is_card_split = "08. Tách thẻ" in normalized or "08.Tách thẻ" in normalized

    return OrderTypes(
        is_normal=normalized in NORMAL_SALE_ORDER_TYPES or lowered == "thuong",
        is_points_exchange="03. Đổi điểm" in normalized or "03.Đổi điểm" in normalized,
        is_service_exchange=is_service_exchange,
        is_birthday="tặng sinh nhật" in lowered or "tang sinh nhat" in lowered,
        is_investment="đầu tư" in lowered or "dau tu" in lowered,
        is_account_sale="07. Bán tài khoản" in normalized or "07.Bán tài khoản" in normalized,
        is_marketplace="9. Sàn TMDT" in normalized or "9.Sàn TMDT" in normalized,
        is_card_split=is_card_split,
        is_service=(
            "02. Làm dịch vụ" in normalized
            or is_service_exchange
            or is_card_split
            or "Đổi thẻ KEEP->Thẻ DV" in normalized
        ),
        is_shell_exchange="đổi vỏ" in lowered or "doi vo" in lowered,
    )


def order_type_prefix(name: Optional[str]) -> Optional[str]:
    """L for service order types, B for goods order types, else None."""
    normalized = (name or "").strip()
    if normalized in SERVICE_ORDER_TYPES:
        return "L"
    if normalized in GOODS_ORDER_TYPES:
        return "B"
    return None


def derive_warehouse_code(
    order_type_name: Optional[str],
    department_code: Optional[str],
    fallback: Optional[str] = None,
) -> Optional[str]:
    """prefix + department code; MSO1 always maps to the fixed override."""
    department_code = (department_code or "").strip()
    if department_code == MSO1_DEPARTMENT_CODE:
        return WAREHOUSE_CODE_MSO1_OVERRIDE
    prefix = order_type_prefix(order_type_name)
    if prefix is None or not department_code:
        return fallback
    return f"{prefix}{department_code}"


# =============================================================================
# Prices and gifts
# =============================================================================

def resolve_prices(line: Any, order_types: OrderTypes) -> PriceInfo:
    """Backfill the pre-discount amount and unit price.

    Gross precedence: gross_amount, line_total, goods_amount, then
    revenue + sum(discounts). Unit price is gross / qty when qty > 0,
    otherwise the explicit unit price.
    """
    if order_types.is_points_exchange:
        return PriceInfo(unit_price=0.0, gross_amount=0.0, goods_amount=0.0)

    goods_amount = first_nonzero(line.goods_amount, line.line_total, line.revenue)
    gross = first_nonzero(line.gross_amount, line.line_total, line.goods_amount)
    if gross == 0:
        discount_total = sum(to_number(v) for v in line.discounts.values())
        gross = to_number(line.revenue) + discount_total

    qty = to_number(line.qty)
    if qty > 0:
        unit_price = gross / qty
    else:
        unit_price = to_number(line.unit_price)

    return PriceInfo(unit_price=unit_price, gross_amount=gross, goods_amount=goods_amount)


def is_gift_amounts(unit_price: float, gross_amount: float) -> bool:
    return abs(unit_price) < GIFT_EPSILON and abs(gross_amount) < GIFT_EPSILON


def is_gift_line(unit_price: float, gross_amount: float, order_types: OrderTypes) -> bool:
    """Zero price and zero amount, never on service order types."""
    if order_types.is_service:
        return False
    return is_gift_amounts(unit_price, gross_amount)


# =============================================================================
# Brands
# =============================================================================

BRAND_CODES = {
    "menard": "MN",
    "f3": "FBV",
    "facialbar": "FBV",
    "chando": "CDV",
    "labhair": "LHV",
    "yaman": "BTH",
}

POINTS_EXCHANGE_LABELS = {
    "TTM": "TTM.KMDIEM",
    "AMA": "TTM.KMDIEM",
    "TSG": "TTM.KMDIEM",
    "FBV": "FBV.KMDIEM",
    "BTH": "BTH.KMDIEM",
    "CDV": "CDV.KMDIEM",
    "LHV": "LHV.KMDIEM",
}
DEFAULT_POINTS_EXCHANGE_LABEL = "TTM.KMDIEM"

ECOM_PROMOTION_LABELS = {
    "menard": "TTM.R601ECOM",
    "yaman": "BTH.R601ECOM",
}

ECOM_VOUCHER_LABELS = {
    "menard": "TTM.R601ECOM",
    "yaman": "BTH.R601ECOM",
    "chando": "CDV.R601ECOM",
    "cdv": "CDV.R601ECOM",
}
DEFAULT_ECOM_VOUCHER_LABEL = "VC CTKM SÀN"


def normalize_brand(brand: Optional[str]) -> str:
    value = (brand or "").strip().lower()
    return "f3" if value == "facialbar" else value


def normalize_customer_code(code: Optional[str]) -> str:
    """Strip an NV prefix (employee accounts): NV8480 -> 8480."""
    value = (code or "").strip()
    if len(value) > 2 and value[:2].upper() == "NV":
        return value[2:]
    return value


def brand_code(brand: Optional[str]) -> str:
    return BRAND_CODES.get((brand or "").strip().lower(), "MN")


def virtual_account_label(doc_date: date, brand: Optional[str]) -> str:
    """ck11 label: {yy}{mm}{brandCode}.TKDV, e.g. 2511MN.TKDV."""
    return f"{doc_date.year % 100:02d}{doc_date.month:02d}{brand_code(brand)}.TKDV"


# =============================================================================
# Discount labels
# =============================================================================

def vip_discount_label(
    product_type: Optional[str],
    material_code: Optional[str],
    item_code: Optional[str],
    track_inventory: Optional[bool],
    track_serial: Optional[bool],
    brand: Optional[str],
) -> str:
    """ck03 label."""
    if normalize_brand(brand) == "f3":
        return "FBV CKVIP DV" if product_type == "DIVU" else "FBV CKVIP SP"

    if product_type == "DIVU":
        return "VIP DV MAT"
    if product_type == "VOUC":
        return "VIP VC MP"

    material = material_code or ""
    code = item_code or ""
    has_vc = "VC" in material.upper() or "VC" in code.upper()
    if material.startswith("E.") or has_vc or (track_inventory is False and track_serial is True):
        return "VIP VC MP"
    return "VIP MP"


def is_wholesale(type_sale: Optional[str]) -> bool:
    return (type_sale or "").strip().upper() in WHOLESALE_TYPES


def primary_voucher_label(
    brand: Optional[str],
    line_kind: Optional[str],
    is_gift_product: bool,
    revenue: float,
    line_total: float,
    type_sale: Optional[str] = None,
) -> Optional[str]:
    """ck05 label by brand and line kind (I goods, S service, V voucher)."""
    if is_wholesale(type_sale):
        return None
    if to_number(revenue) == 0 and to_number(line_total) == 0:
        return None

    brand = normalize_brand(brand)
    if brand == "yaman":
        return {"I": "YVC.HB", "S": "YVC.DV"}.get(line_kind)
    if brand == "f3":
        return {"I": "FBV TT VCDV", "S": "FBV TT VCHH"}.get(line_kind)
    if brand == "labhair":
        if line_kind == "I":
            return "LHVTT.VCKM" if is_gift_product else "LHVTT.VCHB"
        if line_kind == "S":
            return "LHVTT.VCDV"
        return None
    if brand == "menard":
        if line_kind == "I":
            return "VC KM" if is_gift_product else "VC HB"
        if line_kind == "S":
            return "VC DV"
        if line_kind == "V":
            return "VC KM"
    return None


def marketplace_voucher_label(brand: Optional[str], ecom_name: Optional[str] = None) -> str:
    """ck15 label for reserve/marketplace vouchers."""
    return ECOM_VOUCHER_LABELS.get((brand or "").strip().lower(), DEFAULT_ECOM_VOUCHER_LABEL)


def format_voucher_label(label: Optional[str], brand: Optional[str]) -> Optional[str]:
    """Expand VCHB/VCKM/VCDV to spaced forms, except for f3 compound labels."""
    if not label:
        return label
    if normalize_brand(brand) == "f3":
        return label
    return (
        label.replace("VCHB", "VC HB")
        .replace("VCKM", "VC KM")
        .replace("VCDV", "VC DV")
    )


def is_reserve_voucher(
    sales_channel: Optional[str],
    promotion_code: Optional[str],
    package_code: Optional[str],
    brand: Optional[str],
) -> bool:
    """Marketplace channel, or promotion without package (channel only for f3)."""
    if (sales_channel or "").strip().upper() == RESERVE_VOUCHER_CHANNEL:
        return True
    if normalize_brand(brand) in CHANNEL_ONLY_RESERVE_BRANDS:
        return False
    has_promotion = bool((promotion_code or "").strip())
    has_package = bool((package_code or "").strip())
    return has_promotion and not has_package


# =============================================================================
# Promotion and gift labels
# =============================================================================

def _strip_prmn(code: str) -> Tuple[str, bool]:
    if code.upper().startswith("PRMN"):
        return "RMN" + code[4:], True
    return code, False


def promotion_display_code(code: Optional[str]) -> Optional[str]:
    """Text before the first '-', with PRMN mapped to RMN."""
    if not code or not code.strip():
        return None
    head = code.strip().split("-")[0] or code.strip()
    return _strip_prmn(head)[0]


def promotion_label(
    code: Optional[str],
    line_kind: Optional[str],
    is_marketplace: bool,
    brand: Optional[str],
) -> Optional[str]:
    """ck01 label."""
    if is_marketplace:
        ecom = ECOM_PROMOTION_LABELS.get((brand or "").strip().lower())
        if ecom:
            return ecom

    if not code or not code.strip():
        return None
    head = code.strip().split("-")[0] or code.strip()
    label, prmn_derived = _strip_prmn(head)

    if prmn_derived or is_marketplace:
        return label

    suffix = {"I": ".I", "S": ".S", "V": ".V"}.get((line_kind or "").upper(), "")
    if suffix and not label.endswith(suffix):
        label += suffix
    return label


def legacy_gift_month(promotion_code: Optional[str]) -> Optional[str]:
    """Legacy numeric scan: "10" -> "10", "5" -> "25"."""
    code = promotion_code or ""
    if "10" in code:
        return "10"
    if "5" in code:
        return "25"
    return None


def _gift_brand_suffix(promotion_code: str) -> str:
    head = promotion_code.strip().split(".")[0]
    return head[-2:]


def gift_label(
    promotion_code: Optional[str],
    doc_date: Optional[date],
    order_types: OrderTypes,
    unit_code: Optional[str] = None,
) -> Optional[str]:
    """Label for the gift (ma_ctkm_th) column of a gift line."""
    if order_types.is_points_exchange:
        return POINTS_EXCHANGE_LABELS.get((unit_code or "").strip().upper(), DEFAULT_POINTS_EXCHANGE_LABEL)
    if order_types.is_investment:
        return INVESTMENT_GIFT_LABEL
    if not (order_types.is_normal or order_types.is_account_sale or order_types.is_marketplace):
        return None
    if not promotion_code or not promotion_code.strip():
        return None

    suffix = _gift_brand_suffix(promotion_code)
    if doc_date is not None:
        return f"{doc_date.year % 100:02d}{doc_date.month:02d}{suffix}{GIFT_LABEL_SUFFIX}"

    legacy = legacy_gift_month(promotion_code)
    if legacy is not None:
        return f"{legacy}{suffix}{GIFT_LABEL_SUFFIX}"

    display = promotion_display_code(promotion_code) or ""
    for kind_suffix in (".I", ".S", ".V"):
        if display.endswith(kind_suffix):
            return display[: -len(kind_suffix)]
    return display


# =============================================================================
# Batch / serial
# =============================================================================

def derive_batch_code(serial: Optional[str], category: Optional[str], brand: Optional[str]) -> Optional[str]:
    """Batch code from a serial string."""
    if not serial:
        return None
    if "_" in serial:
        return serial.split("_", 1)[1]
    if normalize_brand(brand) in FULL_SERIAL_BRANDS:
        return serial
    category = (category or "").strip().upper()
    keep = 8 if category == "TPCN" else 4
    return serial[-keep:] if len(serial) >= keep else serial


def select_batch_or_serial(
    serial: Optional[str],
    track_batch: Optional[bool],
    track_serial: Optional[bool],
    category: Optional[str],
    brand: Optional[str],
) -> Tuple[Optional[str], Optional[str]]:
    """Returns (batch_code, serial); at most one is non-empty."""
    serial = (serial or "").strip() or None
    if track_batch:
        return derive_batch_code(serial, category, brand), None
    if track_serial:
        return None, serial
    return None, None


def normalize_tax_code(code: Optional[str]) -> str:
    code = (code or "").strip()
    return code or "00"
