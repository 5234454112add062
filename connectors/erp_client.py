"""ERP HTTP Client.

Low-level aiohttp client for the accounting system's submission endpoints
(sales invoices, warehouse receipts/releases, warehouse transfers).
Handles bearer headers, retries with exponential backoff, and typed errors.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Union

import aiohttp

from core.config import RetryConfig
from core.observability import get_logger

logger = get_logger(__name__)

DUPLICATE_MARKERS = ("đã tồn tại", "pk_d81", "duplicate")

SALES_INVOICE_ENDPOINT = "salesInvoice"
WAREHOUSE_RECEIPT_ENDPOINT = "warehouseReceipt"
WAREHOUSE_RELEASE_ENDPOINT = "warehouseRelease"
WAREHOUSE_TRANSFER_ENDPOINT = "warehouseTransfer"

ResponseBody = Union[Dict[str, Any], List[Any]]


class ERPApiError(Exception):
    """Base exception for ERP API errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ERPAuthenticationError(ERPApiError):
    """Authentication failed (401/403)."""
    pass


class ERPValidationError(ERPApiError):
    """Validation error from the ERP (400)."""
    pass


class ERPRateLimitError(ERPApiError):
    """Rate limit exceeded (429)."""
    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, 429)
        self.retry_after = retry_after


class ERPServerError(ERPApiError):
    """Server error (5xx) after retries were exhausted."""
    pass


# =============================================================================
# Response helpers
# =============================================================================

def _first_entry(body: Any) -> Optional[Dict[str, Any]]:
    if isinstance(body, list):
        return body[0] if body and isinstance(body[0], dict) else None
    if isinstance(body, dict):
        return body
    return None


def is_success_response(body: Any) -> bool:
    """status == 1 on the dict, or on the first element of a list."""
    entry = _first_entry(body)
    if entry is None:
        return False
    try:
        return int(entry.get("status")) == 1
    except (TypeError, ValueError):
        return False


def response_message(body: Any) -> str:
    entry = _first_entry(body)
    if entry is None:
        return str(body) if body is not None else ""
    return str(entry.get("message") or "")


def response_guid(body: Any) -> Optional[str]:
    entry = _first_entry(body)
    if entry is None:
        return None
    guid = entry.get("guid")
    if isinstance(guid, list):
        guid = guid[0] if guid else None
    return str(guid) if guid else None


def is_duplicate_error(text: Optional[str]) -> bool:
    """The ERP reports the document already exists upstream."""
    lowered = (text or "").lower()
    return any(marker in lowered for marker in DUPLICATE_MARKERS)


class ERPClient:
    """HTTP client for the ERP submission API.

    Usage:
        client = ERPClient(base_url, token=token)
        await client.connect()
        body = await client.submit_sales_invoice(payload)
        await client.disconnect()
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self.retry_config = retry_config or RetryConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "ERPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None) -> ResponseBody:
        """Make an API request with automatic retries.

        Raises:
            ERPAuthenticationError: Authentication failed
            ERPValidationError: Validation error (body kept in response_body)
            ERPRateLimitError: Rate limit exceeded
            ERPServerError: 5xx after retries
            ERPApiError: Other API or transport errors
        """
        if not self._session:
            raise ERPApiError("Not connected. Call connect() first.")

        url = f"{self.base_url}/{endpoint}"
        retry_config = self.retry_config
        last_error: Optional[Exception] = None

        for attempt in range(retry_config.max_retries + 1):
            try:
                timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
                async with self._session.request(
                    method,
                    url,
                    headers=self._get_headers(),
                    json=data,
                    timeout=timeout,
                ) as response:
                    response_text = await response.text()

                    if response.status < 400:
                        return json.loads(response_text) if response_text else {}

                    if response.status in (401, 403):
                        raise ERPAuthenticationError(
                            f"Authentication failed: {response_text}",
                            response.status,
                            response_text,
                        )

                    if response.status == 429:
                        retry_after = int(response.headers.get("Retry-After", 60))
                        if attempt < retry_config.max_retries:
                            logger.warning(f"Rate limited, waiting {retry_after}s...")
                            await asyncio.sleep(retry_after)
                            continue
                        raise ERPRateLimitError("Rate limit exceeded", retry_after)

                    if response.status == 400:
                        raise ERPValidationError(
                            f"Validation error: {_error_text(response_text)}",
                            response.status,
                            response_text,
                        )

                    if response.status in retry_config.retry_on_status:
                        if attempt < retry_config.max_retries:
                            delay = retry_config.get_delay(attempt)
                            logger.warning(
                                f"Request failed with {response.status}, "
                                f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry_config.max_retries})"
                            )
                            await asyncio.sleep(delay)
                            continue
                        if response.status >= 500:
                            raise ERPServerError(
                                f"Server error {response.status}: {_error_text(response_text)}",
                                response.status,
                                response_text,
                            )

                    raise ERPApiError(
                        f"API error {response.status}: {_error_text(response_text)}",
                        response.status,
                        response_text,
                    )

            except ERPApiError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
                last_error = e
                if attempt < retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.warning(
                        f"Request failed with {type(e).__name__}: {e}, "
                        f"retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise ERPApiError(f"Request failed after {retry_config.max_retries} retries: {e}")

        raise ERPApiError(f"Request failed: {last_error}")

    async def submit_sales_invoice(self, payload: Dict[str, Any]) -> ResponseBody:
        logger.info(f"Submitting sales invoice {payload.get('so_ct')}")
        return await self._request("POST", SALES_INVOICE_ENDPOINT, payload)

    async def submit_stock_io(self, payload: Dict[str, Any]) -> ResponseBody:
        """Receipt for inbound (1112) postings, release for outbound."""
        endpoint = WAREHOUSE_RECEIPT_ENDPOINT if payload.get("ma_nx") == "1112" else WAREHOUSE_RELEASE_ENDPOINT
        logger.info(f"Submitting {endpoint} {payload.get('so_ct')}")
        return await self._request("POST", endpoint, payload)

    async def submit_stock_transfer(self, payload: Dict[str, Any]) -> ResponseBody:
        logger.info(f"Submitting warehouse transfer {payload.get('so_ct')}")
        return await self._request("POST", WAREHOUSE_TRANSFER_ENDPOINT, payload)


def _error_text(response_text: str) -> str:
    """Pull the message out of an error body when it is JSON."""
    try:
        body = json.loads(response_text)
    except (json.JSONDecodeError, TypeError):
        return response_text
    message = response_message(body)
    return message or response_text
