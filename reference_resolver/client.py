"""Reference Service HTTP Client.

Thin aiohttp client for the product/department classification service.
A 404 (or an empty body) is a miss and returns None; every other failure
raises ReferenceServiceError so the resolver can log it and degrade.
"""

import asyncio
import json
from typing import Any, Callable, Dict, Optional, TypeVar
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from core.observability import get_logger
from models.refs import DepartmentRef, ReferenceProduct

logger = get_logger(__name__)

T = TypeVar("T")


class ReferenceServiceError(Exception):
    """Transport failure or unexpected status from the reference service."""
    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


def _first(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def _text(value: Any) -> Optional[str]:
    """Scalars become strings; nested objects are dropped."""
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value).strip() or None


def _as_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("true", "1", "yes", "y")


def _unwrap(body: Any) -> Optional[Dict[str, Any]]:
    """Pick the product object out of data.item / data / bare envelopes."""
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    if isinstance(data, dict):
        item = data.get("item")
        if isinstance(item, dict):
            return item
        return data
    return body


def parse_product(payload: Any, code: str, source: str = "code") -> Optional[ReferenceProduct]:
    """Normalize a product payload into a ReferenceProduct.

    Accepts camelCase and lowercase field variants (productType/producttype).
    Returns None when the payload carries neither id nor code.
    """
    product = _unwrap(payload)
    if not product or not (product.get("id") or product.get("code")):
        return None

    return ReferenceProduct(
        code=code,
        material_code=_text(_first(product, "materialCode", "materialcode", "maVatTu")),
        product_type=_text(_first(product, "productType", "producttype")),
        unit=_text(_first(product, "unit", "dvt")),
        name=_text(_first(product, "name", "materialName")),
        track_inventory=_as_bool(_first(product, "trackInventory", "trackinventory")),
        track_serial=bool(_as_bool(_first(product, "trackSerial", "trackserial"))),
        track_batch=bool(_as_bool(_first(product, "trackBatch", "trackbatch"))),
        material_type=_text(_first(product, "materialType", "materialtype")),
        source=source,
    )


def parse_department(payload: Any, branch_code: str) -> Optional[DepartmentRef]:
    """Take the first department of a ``data.items`` listing."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data") or {}
    items = data.get("items") if isinstance(data, dict) else None
    if not items:
        return None
    department = items[0] if isinstance(items, list) else None
    if not isinstance(department, dict):
        return None
    return DepartmentRef(
        branch_code=branch_code,
        department_code=_text(department.get("ma_bp")),
        unit_code=_text(department.get("ma_dvcs") or department.get("ma_dvcs_ht")),
        brand=_text(department.get("brand")),
        company=_text(department.get("company")),
        department_type=_text(department.get("type")),
    )


class ReferenceServiceClient:
    """HTTP client for the classification service.

    Usage:
        async with ReferenceServiceClient(base_url) as client:
            product = await client.get_product_by_code("SP001")
    """

    def __init__(self, base_url: str, timeout_seconds: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"accept": "application/json"},
            )

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "ReferenceServiceClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """GET a path. Returns parsed JSON, or None on 404."""
        if not self._session:
            raise ReferenceServiceError("Not connected. Call connect() first.")

        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with self._session.get(url, params=params, timeout=timeout) as response:
                text = await response.text()
                if response.status == 404:
                    return None
                if response.status >= 400:
                    raise ReferenceServiceError(
                        f"Reference service error {response.status}: {text[:200]}",
                        response.status,
                    )
                return json.loads(text) if text else None
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise ReferenceServiceError(f"Request to {url} failed: {type(e).__name__}: {e}")

    @staticmethod
    def _parse(parser: Callable[..., T], body: Any, *args: Any, **kwargs: Any) -> Optional[T]:
        if body is None:
            return None
        try:
            return parser(body, *args, **kwargs)
        except ValidationError as e:
            raise ReferenceServiceError(f"Malformed reference payload: {e.error_count()} invalid field(s)")

    async def get_product_by_code(self, code: str) -> Optional[ReferenceProduct]:
        body = await self._get(f"/material-catalogs/code/{quote(code, safe='')}")
        return self._parse(parse_product, body, code, source="code")

    async def get_product_by_legacy_code(self, code: str) -> Optional[ReferenceProduct]:
        body = await self._get(f"/material-catalogs/old-code/{quote(code, safe='')}")
        return self._parse(parse_product, body, code, source="legacy")

    async def get_department(self, branch_code: str) -> Optional[DepartmentRef]:
        body = await self._get(
            "/departments",
            params={"page": "1", "limit": "25", "branchcode": branch_code},
        )
        return self._parse(parse_department, body, branch_code)
