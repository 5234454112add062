"""Retail Feed Client.

aiohttp client for the per-brand retail feed (daily sales, daily cash,
daily stock movements). Dates are passed in DDMMMYYYY form (01NOV2025).

Sale rows arrive flat, one per line; ``rows_to_orders`` groups them by
document code into the order shape consumed by ingestion.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp

from core.observability import get_logger

logger = get_logger(__name__)

SALE_ORDER_DOCTYPE = "SALE_ORDER"
CASHIO_BRANDS = {"labhair", "yaman", "menard"}

# Feed keys copied verbatim into a sale line's discount components
DISCOUNT_FIELDS = (
    "disc_tm",
    "chietKhauCkTheoChinhSach",
    "chietKhauMuaHangCkVip",
    "chietKhauThanhToanCoupon",
    "chietKhauVoucherDp2",
    "chietKhauVoucherDp3",
    "chietKhauThanhToanTkTienAo",
) + tuple(f"chietKhau{n:02d}" for n in range(9, 23))


class FeedError(Exception):
    """The retail feed could not be read."""
    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


def rows_to_orders(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Group flat SALE_ORDER rows into orders, preserving arrival order."""
    orders: Dict[str, Dict[str, Any]] = {}

    for row in rows:
        if row.get("doctype", SALE_ORDER_DOCTYPE) != SALE_ORDER_DOCTYPE:
            continue
        doc_code = row.get("code")
        if not doc_code:
            continue

        sale = {
            "id": row.get("id"),
            "itemCode": row.get("itemcode"),
            "itemName": row.get("itemname"),
            "ordertype": row.get("ordertype_name"),
            "promCode": row.get("prom_code"),
            "serial": row.get("serial"),
            "qty": row.get("qty") or 0,
            "revenue": row.get("revenue") or 0,
            "linetotal": row.get("mn_linetotal") or row.get("revenue") or 0,
            "mn_linetotal": row.get("mn_linetotal"),
            "tienHang": row.get("mn_linetotal") or row.get("revenue") or 0,
            "giaBan": row.get("price") or 0,
            "producttype": row.get("producttype"),
            "pkg_code": row.get("pkg_code"),
            "order_source": row.get("so_source"),
            "type_sale": row.get("type_sale"),
            "dvt": row.get("dvt"),
            "grade_discamt": row.get("grade_discamt") or 0,
            "other_discamt": row.get("other_discamt") or 0,
            "paid_by_voucher_ecode_ecoin_bp": row.get("v_paid") or 0,
        }
        for key in DISCOUNT_FIELDS:
            if row.get(key) is not None:
                sale[key] = row[key]

        order = orders.get(doc_code)
        if order is None:
            order = {
                "docCode": doc_code,
                "docDate": row.get("docdate"),
                "branchCode": row.get("branch_code") or "",
                "customer": {
                    "code": row.get("partner_code") or "",
                    "name": row.get("partner_name") or "",
                    "mobile": row.get("partner_mobile"),
                    "grade_name": row.get("partner_grade"),
                    "branch_code": row.get("branch_code"),
                },
                "sales": [],
            }
            orders[doc_code] = order
        order["sales"].append(sale)

    return list(orders.values())


class FeedClient:
    """HTTP client for the retail feed.

    Usage:
        async with FeedClient(base_url) as feed:
            orders = await feed.get_daily_sales("01NOV2025", "menard")
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        brand_urls: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.brand_urls = {k.lower(): v.rstrip("/") for k, v in (brand_urls or {}).items()}
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(headers={"accept": "application/json"})

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "FeedClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def _base_url_for(self, brand: Optional[str]) -> str:
        return self.brand_urls.get((brand or "").lower(), self.base_url)

    async def _get_data(self, brand: Optional[str], endpoint: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not self._session:
            raise FeedError("Not connected. Call connect() first.")

        url = f"{self._base_url_for(brand)}/{endpoint}"
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with self._session.get(url, params=params, timeout=timeout) as response:
                text = await response.text()
                if response.status >= 400:
                    raise FeedError(f"Feed error {response.status} on {endpoint}: {text[:200]}", response.status)
                body = json.loads(text) if text else {}
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise FeedError(f"Feed request {endpoint} failed: {type(e).__name__}: {e}")

        data = body.get("data") if isinstance(body, dict) else body
        return data if isinstance(data, list) else []

    async def get_daily_sales(self, date: str, brand: str) -> List[Dict[str, Any]]:
        """Orders (grouped) for a DDMMMYYYY date."""
        rows = await self._get_data(brand, "get_daily_sale", {"P_DATE": date})
        orders = rows_to_orders(rows)
        logger.info(f"Feed returned {len(rows)} sale rows in {len(orders)} orders for {brand} {date}")
        return orders

    async def get_daily_cash(self, date: str, brand: str) -> List[Dict[str, Any]]:
        endpoint = "get_daily_cashio" if (brand or "").lower() in CASHIO_BRANDS else "get_daily_cash"
        return await self._get_data(brand, endpoint, {"P_DATE": date})

    async def get_daily_stock_transfers(self, date: str, brand: str, part: int) -> List[Dict[str, Any]]:
        return await self._get_data(brand, "get_daily_stock_trans", {"P_DATE": date, "P_PART": str(part)})
