"""
Ingestion Service

Persists one date+brand batch from the retail feed:
- customers (insert, or update name/mobile/grade/brand on repeat sightings)
- cash/voucher aggregates
- sale lines, flagged resolved=False when the item code is unknown
- stock rows, chunked, each chunk one transaction

Batch calls always return a summary; a failing record becomes an error entry.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.config import PipelineConfig
from core.observability import get_logger, with_correlation
from models.records import CustomerRef, StockTransferRecord
from reference_resolver import ReferenceResolver
from storage.repositories import Repositories

from .normalize import (
    StructuralInputError,
    build_cash_records,
    build_customer,
    build_sale_lines,
    build_stock_record,
)

logger = get_logger(__name__)


def _code(value: Any) -> str:
    return str(value if value is not None else "").strip()


@dataclass
class IngestionSummary:
    """Result of a sales ingestion batch."""
    created: int = 0
    updated: int = 0
    failed: int = 0
    customers_created: int = 0
    doc_codes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    unresolved_items: List[str] = field(default_factory=list)


@dataclass
class StockIngestionSummary:
    """Result of a stock-transfer ingestion batch."""
    received: int = 0
    saved: int = 0
    failed: int = 0
    doc_codes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warehouse_processed: int = 0
    warehouse_failed: int = 0
    warehouse_error: Optional[str] = None


@dataclass
class ResyncSummary:
    checked: int = 0
    resolved: int = 0
    still_unresolved: List[str] = field(default_factory=list)


class IngestionService:
    """Normalizes and persists feed batches.

    Args:
        repos: Repository wiring
        resolver: Reference resolver (item codes, departments)
        warehouse_tracker: Optional tracker run on touched stock documents
        config: Pipeline settings (stock_chunk_size)
    """

    def __init__(
        self,
        repos: Repositories,
        resolver: ReferenceResolver,
        warehouse_tracker: Optional[Any] = None,
        config: Optional[PipelineConfig] = None,
    ):
        self.repos = repos
        self.resolver = resolver
        self.warehouse_tracker = warehouse_tracker
        self.config = config or PipelineConfig()

    # =========================================================================
    # Sales
    # =========================================================================

    def _upsert_customer(self, customer: CustomerRef, department_brand: Optional[str]) -> bool:
        existing = self.repos.customers.get(customer.code)
        if existing is None:
            if department_brand:
                customer = customer.model_copy(update={"brand": department_brand})
            self.repos.customers.upsert(customer)
            return True

        updates: Dict[str, Any] = {}
        for name in ("name", "mobile", "grade_name"):
            value = getattr(customer, name)
            if value:
                updates[name] = value
        if department_brand:
            updates["brand"] = department_brand
        if updates:
            self.repos.customers.upsert(existing.model_copy(update=updates))
        return False

    async def _lookup(self, resolve, codes: List[Any], errors: List[str], what: str) -> Dict[str, Any]:
        """Run a batch resolver call; a failure leaves every code unresolved."""
        try:
            return await resolve(_code(c) for c in codes)
        except Exception as e:
            errors.append(f"{what} lookup failed: {e}")
            logger.error(f"Batch {what} lookup failed, marking codes unresolved: {e}")
            return {}

    async def ingest_sales(
        self,
        sync_date: str,
        brand: str,
        orders: List[Dict[str, Any]],
        cash_rows: Optional[List[Dict[str, Any]]] = None,
    ) -> IngestionSummary:
        """Persist a batch of feed orders in arrival order."""
        summary = IngestionSummary()
        cash_rows = cash_rows or []

        with with_correlation(brand=brand, sync_date=sync_date, stage="ingest_sales"):
            item_codes = [
                sale.get("itemCode")
                for order in orders
                for sale in (order.get("sales") or [])
            ]
            products = await self._lookup(
                self.resolver.resolve_products, item_codes, summary.errors, "product",
            )
            departments = await self._lookup(
                self.resolver.resolve_departments,
                [order.get("branchCode") for order in orders],
                summary.errors,
                "department",
            )

            for order in orders:
                doc_code = _code(order.get("docCode"))
                with with_correlation(doc_code=doc_code):
                    try:
                        cash_records = build_cash_records(doc_code, cash_rows)
                        lines = build_sale_lines(order, brand, cash_records)

                        department = departments.get(_code(order.get("branchCode")))
                        customer = build_customer(order, brand)
                        if customer and self._upsert_customer(customer, department.brand if department else None):
                            summary.customers_created += 1

                        for record in cash_records:
                            self.repos.cash.upsert(record)

                        for line in lines:
                            resolved = line.item_code in products
                            if not resolved and line.item_code not in summary.unresolved_items:
                                summary.unresolved_items.append(line.item_code)
                            _, created = self.repos.sales.upsert(
                                line.model_copy(update={"resolved": resolved})
                            )
                            if created:
                                summary.created += 1
                            else:
                                summary.updated += 1

                        summary.doc_codes.append(doc_code)
                    except StructuralInputError as e:
                        summary.failed += 1
                        summary.errors.append(str(e))
                        logger.warning(f"Structural failure: {e}")
                    except Exception as e:
                        summary.failed += 1
                        summary.errors.append(f"{doc_code}: {e}")
                        logger.error(f"Failed to ingest order {doc_code}: {e}")

        logger.info(
            f"Ingested sales {brand} {sync_date}: {summary.created} created, "
            f"{summary.updated} updated, {summary.failed} failed, "
            f"{len(summary.unresolved_items)} unresolved items"
        )
        return summary

    async def resync_unresolved(self, doc_code: Optional[str] = None) -> ResyncSummary:
        """Retry reference lookups for resolved=False lines."""
        summary = ResyncSummary()
        lines = self.repos.sales.list_unresolved(doc_code)
        if not lines:
            return summary

        summary.checked = len(lines)
        products = await self.resolver.resolve_products(line.item_code for line in lines)
        now_resolved = [line.id for line in lines if line.item_code in products and line.id is not None]
        summary.resolved = self.repos.sales.set_resolved(now_resolved, True)
        summary.still_unresolved = sorted({l.item_code for l in lines if l.item_code not in products})

        logger.info(f"Re-sync: {summary.resolved}/{summary.checked} lines now resolved")
        return summary

    # =========================================================================
    # Stock transfers
    # =========================================================================

    def _persist_chunk(self, chunk: List[StockTransferRecord], summary: StockIngestionSummary) -> None:
        try:
            self.repos.stock_transfers.insert_many(chunk)
            summary.saved += len(chunk)
            return
        except Exception as e:
            logger.warning(f"Chunk of {len(chunk)} stock rows failed ({e}), retrying row by row")

        for record in chunk:
            try:
                self.repos.stock_transfers.upsert(record)
                summary.saved += 1
            except Exception as e:
                summary.failed += 1
                summary.errors.append(f"{record.doc_code}/{record.item_code}: {e}")

    async def ingest_stock_transfers(
        self,
        sync_date: str,
        brand: str,
        rows: List[Dict[str, Any]],
    ) -> StockIngestionSummary:
        """Persist stock rows, then post the touched documents."""
        summary = StockIngestionSummary(received=len(rows))

        with with_correlation(brand=brand, sync_date=sync_date, stage="ingest_stock"):
            records: List[StockTransferRecord] = []
            for row in rows:
                try:
                    records.append(build_stock_record(row, sync_date, brand))
                except Exception as e:
                    summary.failed += 1
                    summary.errors.append(f"{row.get('doccode')}: {e}")

            products = await self._lookup(
                self.resolver.resolve_products,
                [r.item_code for r in records],
                summary.errors,
                "product",
            )
            records = [
                r.model_copy(update={"material_code": products[r.item_code].material_code})
                if r.item_code in products and products[r.item_code].material_code
                else r
                for r in records
            ]

            chunk_size = max(1, self.config.stock_chunk_size)
            for start in range(0, len(records), chunk_size):
                self._persist_chunk(records[start:start + chunk_size], summary)

            summary.doc_codes = list(dict.fromkeys(r.doc_code for r in records if r.doc_code))
            logger.info(
                f"Ingested stock {brand} {sync_date}: {summary.saved}/{summary.received} saved, "
                f"{len(summary.doc_codes)} documents"
            )

            if self.warehouse_tracker is not None and summary.doc_codes:
                try:
                    result = await self.warehouse_tracker.process_documents(summary.doc_codes)
                    summary.warehouse_processed = result.success
                    summary.warehouse_failed = result.failed
                except Exception as e:
                    summary.warehouse_error = str(e)
                    logger.error(f"Warehouse processing after stock ingest failed: {e}")

        return summary
