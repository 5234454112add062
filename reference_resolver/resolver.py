"""Reference Resolver.

Resolves item codes to product classifications and branch codes to
department metadata:
1. Try lookup by code
2. Fall back to lookup by legacy code
3. Give up with None (callers apply defaults and flag the line unresolved)

Lookups are issued in waves of ``batch_size`` concurrent calls. A miss or a
service failure never raises.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, TypeVar

from pydantic import ValidationError

from core.observability import get_logger
from models.refs import DepartmentRef, ReferenceProduct
from reference_resolver.client import ReferenceServiceError

logger = get_logger(__name__)

T = TypeVar("T")


class ReferenceLookup(Protocol):
    """Protocol for the classification service.

    ReferenceServiceClient implements this; tests inject an AsyncMock.
    """

    async def get_product_by_code(self, code: str) -> Optional[ReferenceProduct]:
        ...

    async def get_product_by_legacy_code(self, code: str) -> Optional[ReferenceProduct]:
        ...

    async def get_department(self, branch_code: str) -> Optional[DepartmentRef]:
        ...


def _unique(values: Iterable[Any]) -> List[str]:
    seen = []
    for value in values:
        if value is None:
            continue
        value = str(value).strip()
        if value and value not in seen:
            seen.append(value)
    return seen


class ReferenceResolver:
    """Product and department resolution with bounded fan-out.

    Example:
        resolver = ReferenceResolver(client, batch_size=10)
        products = await resolver.resolve_products(["SP001", "SP002"])
        if "SP001" not in products:
            ...  # unresolved
    """

    def __init__(self, lookup: ReferenceLookup, batch_size: int = 10, use_cache: bool = True):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.lookup = lookup
        self.batch_size = batch_size
        self.use_cache = use_cache
        self._products: Dict[str, Optional[ReferenceProduct]] = {}
        self._departments: Dict[str, Optional[DepartmentRef]] = {}

    def clear_cache(self) -> None:
        self._products.clear()
        self._departments.clear()

    async def _safe(self, call: Callable[[], Awaitable[T]], what: str) -> Optional[T]:
        try:
            return await call()
        except ReferenceServiceError as e:
            logger.warning(
                f"Reference lookup failed for {what}: {e}",
                extra_fields={"status_code": e.status_code},
            )
            return None
        except ValidationError as e:
            logger.warning(f"Malformed reference payload for {what}: {e.error_count()} invalid field(s)")
            return None

    async def resolve_product(self, code: str) -> Optional[ReferenceProduct]:
        """Resolve one item code: by code, then by legacy code."""
        code = str(code or "").strip()
        if not code:
            return None
        if self.use_cache and code in self._products:
            return self._products[code]

        product = await self._safe(lambda: self.lookup.get_product_by_code(code), f"product {code}")
        if product is None:
            product = await self._safe(
                lambda: self.lookup.get_product_by_legacy_code(code),
                f"product {code} (legacy)",
            )
        if product is None:
            logger.debug(f"Product {code} not found in reference service")

        if self.use_cache:
            self._products[code] = product
        return product

    async def resolve_department(self, branch_code: str) -> Optional[DepartmentRef]:
        branch_code = str(branch_code or "").strip()
        if not branch_code:
            return None
        if self.use_cache and branch_code in self._departments:
            return self._departments[branch_code]

        department = await self._safe(
            lambda: self.lookup.get_department(branch_code),
            f"department {branch_code}",
        )
        if self.use_cache:
            self._departments[branch_code] = department
        return department

    async def _in_waves(
        self,
        keys: List[str],
        fetch: Callable[[str], Awaitable[Optional[T]]],
    ) -> Dict[str, T]:
        found: Dict[str, T] = {}
        for start in range(0, len(keys), self.batch_size):
            wave = keys[start:start + self.batch_size]
            results = await asyncio.gather(*(fetch(key) for key in wave))
            for key, result in zip(wave, results):
                if result is not None:
                    found[key] = result
        return found

    async def resolve_products(self, codes: Iterable[Optional[str]]) -> Dict[str, ReferenceProduct]:
        """Resolve many item codes. Unresolved codes are absent from the result."""
        keys = _unique(codes)
        found = await self._in_waves(keys, self.resolve_product)
        if len(found) < len(keys):
            logger.info(f"Resolved {len(found)}/{len(keys)} item codes")
        return found

    async def resolve_departments(self, branch_codes: Iterable[Optional[str]]) -> Dict[str, DepartmentRef]:
        return await self._in_waves(_unique(branch_codes), self.resolve_department)
