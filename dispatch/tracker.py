"""
Dispatch Tracker

Submits one sales invoice per document code and keeps the outcome in a
DispatchRecord (unique on doc_code).

State per document:
    UNSENT -> (attempt) -> SUCCESS | FAILED

- SUCCESS short-circuits later calls unless force_retry is set
- A duplicate-key rejection from the ERP counts as SUCCESS
- Every attempt is persisted with the raw response or error text
- On SUCCESS every sale line of the document is marked processed

Concurrent calls for the same document are serialized by a per-key lock on
top of the insert-first row claim.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from connectors.erp_client import (
    ERPApiError,
    ERPClient,
    is_duplicate_error,
    is_success_response,
    response_guid,
    response_message,
)
from core.observability import get_logger, with_correlation
from derivation_engine import DerivationEngine, OrderContext, normalize_customer_code
from models.records import DispatchRecord, DispatchStatus, SaleLine
from reference_resolver import ReferenceResolver
from storage.repositories import Repositories

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    """Outcome of one process_order call."""
    doc_code: str
    status: DispatchStatus
    message: Optional[str] = None
    response: Any = None
    already_exists: bool = False
    duplicate: bool = False

    @property
    def success(self) -> bool:
        return self.status == DispatchStatus.SUCCESS


@dataclass
class DispatchBatchSummary:
    processed: int = 0
    success: int = 0
    failed: int = 0
    cached: int = 0
    errors: List[str] = field(default_factory=list)


class DispatchTracker:
    """Idempotent invoice dispatch.

    Example:
        tracker = DispatchTracker(repos, resolver, DerivationEngine(), erp)
        result = await tracker.process_order("SO001")
        if result.already_exists:
            ...  # cached, no ERP call made
    """

    def __init__(
        self,
        repos: Repositories,
        resolver: ReferenceResolver,
        engine: DerivationEngine,
        erp_client: ERPClient,
    ):
        self.repos = repos
        self.resolver = resolver
        self.engine = engine
        self.erp_client = erp_client
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def _acquire_slot(self, doc_code: str) -> asyncio.Lock:
        lock = self._locks.get(doc_code)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[doc_code] = lock
        self._lock_users[doc_code] = self._lock_users.get(doc_code, 0) + 1
        return lock

    def _release_slot(self, doc_code: str) -> None:
        remaining = self._lock_users.get(doc_code, 1) - 1
        if remaining > 0:
            self._lock_users[doc_code] = remaining
        else:
            self._lock_users.pop(doc_code, None)
            self._locks.pop(doc_code, None)

    async def _build_context(self, doc_code: str, lines: List[SaleLine]) -> OrderContext:
        first = lines[0]
        customer_code = next((l.customer_code for l in lines if l.customer_code), None)
        customer = self.repos.customers.get(customer_code) if customer_code else None
        department = await self.resolver.resolve_department(first.branch_code) if first.branch_code else None
        return OrderContext(
            doc_code=doc_code,
            doc_date=first.doc_date,
            branch_code=first.branch_code,
            customer=customer,
            cash_records=self.repos.cash.list_by_doc_code(doc_code),
            department=department,
            stock_transfers=self.repos.stock_transfers.list_effective_by_doc_code(doc_code),
        )

    def _record(
        self,
        previous: Optional[DispatchRecord],
        doc_code: str,
        status: DispatchStatus,
        message: Optional[str],
        response: Any = None,
        order: Optional[OrderContext] = None,
        customer_code: Optional[str] = None,
    ) -> DispatchRecord:
        attempts = (previous.attempts if previous else 0) + 1
        return self.repos.dispatch.upsert(DispatchRecord(
            doc_code=doc_code,
            status=status,
            message=message,
            guid=response_guid(response) if response is not None else None,
            response_payload=response,
            customer_code=customer_code or (previous.customer_code if previous else None),
            unit_code=order.unit_code if order else (previous.unit_code if previous else None),
            doc_date=order.doc_date if order else (previous.doc_date if previous else None),
            attempts=attempts,
        ))

    async def process_order(self, doc_code: str, force_retry: bool = False) -> DispatchResult:
        """Derive and submit the invoice for one document.

        Never raises; unexpected errors are recorded as FAILED.
        """
        lock = self._acquire_slot(doc_code)
        try:
            async with lock:
                with with_correlation(doc_code=doc_code, stage="dispatch"):
                    return await self._process_locked(doc_code, force_retry)
        finally:
            self._release_slot(doc_code)

    async def _process_locked(self, doc_code: str, force_retry: bool) -> DispatchResult:
        self.repos.dispatch.insert_unsent(doc_code)
        existing = self.repos.dispatch.get(doc_code)

        if existing and existing.is_success and not force_retry:
            logger.info(f"Invoice {doc_code} already dispatched, returning cached result")
            return DispatchResult(
                doc_code=doc_code,
                status=DispatchStatus.SUCCESS,
                message=existing.message,
                response=existing.response_payload,
                already_exists=True,
            )

        order: Optional[OrderContext] = None
        customer_code: Optional[str] = None
        try:
            lines = self.repos.sales.list_by_doc_code(doc_code)
            if not lines:
                message = f"No sale lines for {doc_code}"
                logger.warning(message)
                self._record(existing, doc_code, DispatchStatus.FAILED, message)
                return DispatchResult(doc_code=doc_code, status=DispatchStatus.FAILED, message=message)

            order = await self._build_context(doc_code, lines)
            products = await self.resolver.resolve_products(l.item_code for l in lines if l.resolved)
            payload = self.engine.build_invoice_payload(order, lines, products)
            customer_code = normalize_customer_code(payload.ma_kh) or None

            try:
                response = await self.erp_client.submit_sales_invoice(payload.to_payload())
            except ERPApiError as e:
                text = e.response_body or str(e)
                if is_duplicate_error(text) or is_duplicate_error(str(e)):
                    return self._succeed(existing, doc_code, str(e), e.response_body or None, order,
                                         customer_code, duplicate=True)
                raise

            if is_success_response(response):
                return self._succeed(existing, doc_code, response_message(response) or "OK", response,
                                     order, customer_code)

            message = response_message(response) or "Invoice rejected"
            if is_duplicate_error(message):
                return self._succeed(existing, doc_code, message, response, order, customer_code, duplicate=True)

            logger.warning(f"ERP rejected invoice {doc_code}: {message}")
            self._record(existing, doc_code, DispatchStatus.FAILED, message, response, order, customer_code)
            return DispatchResult(doc_code=doc_code, status=DispatchStatus.FAILED, message=message, response=response)

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Invoice dispatch failed for {doc_code}: {message}")
            self._record(existing, doc_code, DispatchStatus.FAILED, message, None, order, customer_code)
            return DispatchResult(doc_code=doc_code, status=DispatchStatus.FAILED, message=message)

    def _succeed(
        self,
        existing: Optional[DispatchRecord],
        doc_code: str,
        message: str,
        response: Any,
        order: OrderContext,
        customer_code: Optional[str],
        duplicate: bool = False,
    ) -> DispatchResult:
        if duplicate:
            logger.info(f"Invoice {doc_code} already exists upstream, recording success")
        self._record(existing, doc_code, DispatchStatus.SUCCESS, message, response, order, customer_code)
        marked = self.repos.sales.mark_processed(doc_code)
        logger.info(f"Invoice {doc_code} dispatched, {marked} lines marked processed")
        return DispatchResult(
            doc_code=doc_code,
            status=DispatchStatus.SUCCESS,
            message=message,
            response=response,
            duplicate=duplicate,
        )

    async def process_orders(self, doc_codes: List[str], force_retry: bool = False) -> DispatchBatchSummary:
        summary = DispatchBatchSummary()
        for doc_code in dict.fromkeys(doc_codes):
            result = await self.process_order(doc_code, force_retry=force_retry)
            summary.processed += 1
            if result.already_exists:
                summary.cached += 1
            elif result.success:
                summary.success += 1
            else:
                summary.failed += 1
                summary.errors.append(f"{doc_code}: {result.message}")

        logger.info(
            f"Dispatch batch: {summary.processed} processed, {summary.success} sent, "
            f"{summary.cached} cached, {summary.failed} failed"
        )
        return summary

    async def process_pending(self, force_retry: bool = False) -> DispatchBatchSummary:
        """Dispatch every document that still has unprocessed lines."""
        return await self.process_orders(self.repos.sales.list_unprocessed_doc_codes(), force_retry=force_retry)
