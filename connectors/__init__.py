"""Connectors - HTTP clients for the external systems.

- erp_client: accounting system submission endpoints (invoices, warehouse postings)
- feed_client: retail feed (daily sales, cash aggregates, stock movements)

Both clients speak aiohttp, return parsed JSON, and raise typed errors;
callers decide whether a failure is per-record or fatal.
"""

from connectors.erp_client import (
    ERPClient,
    ERPApiError,
    ERPAuthenticationError,
    ERPValidationError,
    ERPRateLimitError,
    ERPServerError,
    is_success_response,
    is_duplicate_error,
    response_message,
    response_guid,
    DUPLICATE_MARKERS,
)
from connectors.feed_client import (
    FeedClient,
    FeedError,
    rows_to_orders,
)

__all__ = [
    # ERP
    "ERPClient",
    "ERPApiError",
    "ERPAuthenticationError",
    "ERPValidationError",
    "ERPRateLimitError",
    "ERPServerError",
    "is_success_response",
    "is_duplicate_error",
    "response_message",
    "response_guid",
    "DUPLICATE_MARKERS",
    # Feed
    "FeedClient",
    "FeedError",
    "rows_to_orders",
]
