"""
Warehouse Tracker

Posts stock movements to the ERP once per document code.

Classification (per document):
- STOCK_TRANSFER rows with a related stock code -> one grouped transfer call
- STOCK_IO rows with no linked sales order and io_type I/O -> stock in/out call
- anything else -> skipped (logged, no posting record)

Every attempt upserts a WarehousePostingRecord keyed by doc_code; a failed
record stays retryable.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from connectors.erp_client import ERPClient, is_success_response, response_message
from core.observability import get_logger, with_correlation
from derivation_engine import DerivationEngine
from ingestion.normalize import parse_date_range
from models.records import IOType, StockTransferRecord, WarehousePostingRecord
from reference_resolver import ReferenceResolver
from storage.repositories import Repositories

logger = get_logger(__name__)

TRANSFER_DOCTYPE = "STOCK_TRANSFER"
STOCK_IO_DOCTYPE = "STOCK_IO"
STOCK_IO_DIRECTIONS = {"I", "O"}
SKIPPED_ITEM_CODES = {"TRUTONKEEP"}
MAX_RETRY_ERRORS = 10
MAX_RANGE_ERRORS = 20


class DecisionKind(str, Enum):
    TRANSFER = "TRANSFER"
    STOCK_IO = "STOCK_IO"
    SKIP = "SKIP"


@dataclass
class WarehouseDecision:
    """Which call (if any) a document needs, and the rows it covers."""
    kind: DecisionKind
    rows: List[StockTransferRecord] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def io_type(self) -> Optional[str]:
        if self.kind == DecisionKind.TRANSFER:
            return IOType.TRANSFER.value
        if self.kind == DecisionKind.STOCK_IO and self.rows:
            return self.rows[0].io_type
        return None


@dataclass
class WarehouseResult:
    doc_code: str
    success: bool
    skipped: bool = False
    already_exists: bool = False
    io_type: Optional[str] = None
    message: Optional[str] = None
    response: Any = None


@dataclass
class WarehouseBatchSummary:
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


def _has_sales_order(row: StockTransferRecord) -> bool:
    value = (row.so_code or "").strip()
    return bool(value) and value.lower() != "null"


def classify_document(rows: List[StockTransferRecord]) -> WarehouseDecision:
    """Decide the posting for one document's rows."""
    rows = [r for r in rows if (r.item_code or "").upper() not in SKIPPED_ITEM_CODES]
    if not rows:
        return WarehouseDecision(DecisionKind.SKIP, reason="no postable rows")

    transfer_rows = [r for r in rows if r.doctype == TRANSFER_DOCTYPE]
    if any((r.related_stock_code or "").strip() for r in transfer_rows):
        return WarehouseDecision(DecisionKind.TRANSFER, rows=transfer_rows)

    eligible = [
        r for r in rows
        if r.doctype == STOCK_IO_DOCTYPE
        and not _has_sales_order(r)
        and (r.io_type or "").upper() in STOCK_IO_DIRECTIONS
    ]
    if eligible:
        return WarehouseDecision(DecisionKind.STOCK_IO, rows=eligible)

    if any(r.doctype == STOCK_IO_DOCTYPE and _has_sales_order(r) for r in rows):
        return WarehouseDecision(DecisionKind.SKIP, reason="linked to a sales order")
    return WarehouseDecision(DecisionKind.SKIP, reason="not a transfer or stock in/out")


class WarehouseTracker:
    """Idempotent warehouse postings.

    Example:
        tracker = WarehouseTracker(repos, resolver, DerivationEngine(), erp)
        summary = await tracker.process_documents(["ST001", "ST002"])
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

    async def _build_payload(self, doc_code: str, decision: WarehouseDecision):
        first = decision.rows[0]
        products = await self.resolver.resolve_products([r.item_code for r in decision.rows])
        department = await self.resolver.resolve_department(first.branch_code) if first.branch_code else None

        sale_lines = self.repos.sales.list_by_doc_code(doc_code)
        customer_code = next((l.customer_code for l in sale_lines if l.customer_code), None)
        unit_code = department.unit_code if department else None
        department_code = department.department_code if department else None

        if decision.kind == DecisionKind.TRANSFER:
            return self.engine.build_transfer_payload(
                decision.rows, products, customer_code, unit_code, department_code,
            )
        return self.engine.build_stock_payload(
            decision.rows, products, customer_code, unit_code, department_code,
        )

    async def process_document(self, doc_code: str, force_retry: bool = False) -> WarehouseResult:
        """Classify and post one document.

        Exceptions from the ERP call are recorded on the posting record and
        returned as a failed result.
        """
        with with_correlation(doc_code=doc_code, stage="warehouse"):
            existing = self.repos.warehouse.get(doc_code)
            if existing and existing.success and not force_retry:
                logger.info(f"Warehouse posting for {doc_code} already succeeded, skipping")
                return WarehouseResult(
                    doc_code=doc_code,
                    success=True,
                    already_exists=True,
                    io_type=existing.io_type,
                    response=existing.result_payload,
                )

            rows = self.repos.stock_transfers.list_effective_by_doc_code(doc_code)
            decision = classify_document(rows)
            if decision.kind == DecisionKind.SKIP:
                logger.info(f"Skipping warehouse posting for {doc_code}: {decision.reason}")
                return WarehouseResult(doc_code=doc_code, success=True, skipped=True, message=decision.reason)

            attempts = (existing.attempts if existing else 0) + 1
            io_type = decision.io_type
            try:
                payload = await self._build_payload(doc_code, decision)
                body = payload.to_payload()
                if decision.kind == DecisionKind.TRANSFER:
                    response = await self.erp_client.submit_stock_transfer(body)
                else:
                    response = await self.erp_client.submit_stock_io(body)
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.error(f"Warehouse posting failed for {doc_code}: {message}")
                self.repos.warehouse.upsert(WarehousePostingRecord(
                    doc_code=doc_code,
                    io_type=io_type,
                    success=False,
                    result_payload=existing.result_payload if existing else None,
                    error_message=message,
                    attempts=attempts,
                ))
                return WarehouseResult(doc_code=doc_code, success=False, io_type=io_type, message=message)

            success = is_success_response(response)
            message = None if success else (response_message(response) or "Warehouse posting rejected")
            self.repos.warehouse.upsert(WarehousePostingRecord(
                doc_code=doc_code,
                io_type=io_type,
                success=success,
                result_payload=response,
                error_message=message,
                attempts=attempts,
            ))

            if success:
                logger.info(f"Posted {decision.kind.value} for {doc_code} ({len(decision.rows)} rows)")
            else:
                logger.warning(f"ERP rejected warehouse posting for {doc_code}: {message}")

            return WarehouseResult(
                doc_code=doc_code,
                success=success,
                io_type=io_type,
                message=message,
                response=response,
            )

    async def process_documents(
        self,
        doc_codes: List[str],
        force_retry: bool = False,
        max_errors: Optional[int] = None,
    ) -> WarehouseBatchSummary:
        summary = WarehouseBatchSummary()
        for doc_code in dict.fromkeys(doc_codes):
            summary.processed += 1
            try:
                result = await self.process_document(doc_code, force_retry=force_retry)
            except Exception as e:
                summary.failed += 1
                summary.errors.append(f"{doc_code}: {e}")
                logger.error(f"Unexpected warehouse error for {doc_code}: {e}")
                continue

            if result.skipped:
                summary.skipped += 1
            elif result.success:
                summary.success += 1
            else:
                summary.failed += 1
                summary.errors.append(f"{doc_code}: {result.message}")

        if max_errors is not None:
            summary.errors = summary.errors[:max_errors]

        logger.info(
            f"Warehouse batch: {summary.processed} processed, {summary.success} ok, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        return summary

    async def retry_failed_by_date_range(self, date_from: str, date_to: str) -> WarehouseBatchSummary:
        """Retry failed postings whose transfer dates fall in a DDMMMYYYY range.

        Raises:
            DateRangeError: if either date cannot be parsed
        """
        start, end = parse_date_range(date_from, date_to)
        in_range = set(self.repos.stock_transfers.list_doc_codes_by_trans_date(start, end))
        failed = [r.doc_code for r in self.repos.warehouse.list_failed() if r.doc_code in in_range]

        if not failed:
            logger.info(f"No failed warehouse postings between {date_from} and {date_to}")
            return WarehouseBatchSummary()

        logger.info(f"Retrying {len(failed)} failed warehouse postings ({date_from} - {date_to})")
        return await self.process_documents(failed, force_retry=True, max_errors=MAX_RETRY_ERRORS)

    async def process_by_date_range(self, date_from: str, date_to: str) -> WarehouseBatchSummary:
        """Post every document with a transfer dated in the range."""
        start, end = parse_date_range(date_from, date_to)
        doc_codes = self.repos.stock_transfers.list_doc_codes_by_trans_date(start, end)
        return await self.process_documents(doc_codes, max_errors=MAX_RANGE_ERRORS)
