"""
Pipeline Activities for the POS sync pipeline

Activities wrap the batch components for Temporal:
- sync_sales: pull daily sales + cash from the retail feed and persist them
- sync_stock_transfers: pull stock rows, persist, post touched documents
- dispatch_invoices: submit invoices for unprocessed documents
- process_warehouse: post stock movements for given documents
- retry_failed_warehouse: retry failed postings in a DDMMMYYYY range

Each activity builds its components from load_config() and returns a
plain dataclass summary.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import List, Optional

from temporalio import activity

from connectors import ERPClient, FeedClient
from core.config import PipelineConfig, load_config
from core.observability import (
    log_activity_complete,
    log_activity_error,
    log_activity_start,
    with_correlation,
)
from derivation_engine import DerivationEngine
from dispatch import DispatchTracker
from ingestion import FeedSync, IngestionService
from reference_resolver import ReferenceResolver, ReferenceServiceClient
from storage import Repositories
from warehouse import WarehouseTracker


# =============================================================================
# Activity Input/Output Models
# =============================================================================

@dataclass
class SyncInput:
    """Input for sync_sales / sync_stock_transfers"""
    sync_date: str  # DDMMMYYYY
    brand: str


@dataclass
class SyncOutput:
    sync_date: str
    brand: str
    created: int = 0
    updated: int = 0
    failed: int = 0
    doc_codes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    unresolved_items: List[str] = field(default_factory=list)
    warehouse_error: Optional[str] = None


@dataclass
class DispatchInput:
    """Input for dispatch_invoices. Empty doc_codes means every pending document."""
    doc_codes: List[str] = field(default_factory=list)
    force_retry: bool = False


@dataclass
class DispatchOutput:
    processed: int = 0
    success: int = 0
    cached: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class WarehouseInput:
    doc_codes: List[str] = field(default_factory=list)
    force_retry: bool = False


@dataclass
class WarehouseRetryInput:
    date_from: str  # DDMMMYYYY
    date_to: str


@dataclass
class WarehouseOutput:
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


# =============================================================================
# Wiring
# =============================================================================

@dataclass
class Pipeline:
    """Components wired for one activity run."""
    config: PipelineConfig
    repos: Repositories
    resolver: ReferenceResolver
    engine: DerivationEngine
    erp: ERPClient
    feed: FeedClient
    dispatch: DispatchTracker
    warehouse: WarehouseTracker
    ingestion: IngestionService
    sync: FeedSync


@asynccontextmanager
async def open_pipeline(config: Optional[PipelineConfig] = None):
    """Build components and open their HTTP sessions for the duration of the block."""
    config = config or load_config()
    repos = Repositories.from_path(config.db_path)
    engine = DerivationEngine()

    async with ReferenceServiceClient(
        config.reference_base_url, timeout_seconds=config.reference_timeout_seconds
    ) as reference_client, ERPClient(
        config.erp_base_url,
        token=config.erp_token,
        timeout_seconds=config.erp_timeout_seconds,
        retry_config=config.erp_retry,
    ) as erp, FeedClient(
        config.feed_base_url, timeout_seconds=config.feed_timeout_seconds
    ) as feed:
        resolver = ReferenceResolver(reference_client, batch_size=config.lookup_batch_size)
        warehouse = WarehouseTracker(repos, resolver, engine, erp)
        ingestion = IngestionService(repos, resolver, warehouse_tracker=warehouse, config=config)
        yield Pipeline(
            config=config,
            repos=repos,
            resolver=resolver,
            engine=engine,
            erp=erp,
            feed=feed,
            dispatch=DispatchTracker(repos, resolver, engine, erp),
            warehouse=warehouse,
            ingestion=ingestion,
            sync=FeedSync(feed, ingestion, feed_parts=config.feed_parts),
        )


def _activity_correlation(**kwargs):
    info = activity.info()
    return with_correlation(
        workflow_id=info.workflow_id,
        workflow_run_id=info.workflow_run_id,
        activity_id=info.activity_id,
        activity_name=info.activity_type,
        task_queue=info.task_queue,
        **kwargs,
    )


def _warehouse_output(summary) -> WarehouseOutput:
    return WarehouseOutput(
        processed=summary.processed,
        success=summary.success,
        failed=summary.failed,
        skipped=summary.skipped,
        errors=summary.errors,
    )


# =============================================================================
# Activities
# =============================================================================

@activity.defn
async def sync_sales(input: SyncInput) -> SyncOutput:
    """Pull and persist one day of sales for one brand."""
    started = time.monotonic()
    with _activity_correlation(brand=input.brand, sync_date=input.sync_date, stage="sync_sales"):
        log_activity_start("sync_sales", brand=input.brand, sync_date=input.sync_date)
        try:
            async with open_pipeline() as pipeline:
                summary = await pipeline.sync.sync_sales(input.sync_date, input.brand)
        except Exception as e:
            log_activity_error("sync_sales", str(e))
            raise

        log_activity_complete("sync_sales", (time.monotonic() - started) * 1000, created=summary.created)
        return SyncOutput(
            sync_date=input.sync_date,
            brand=input.brand,
            created=summary.created,
            updated=summary.updated,
            failed=summary.failed,
            doc_codes=summary.doc_codes,
            errors=summary.errors,
            unresolved_items=summary.unresolved_items,
        )


@activity.defn
async def sync_stock_transfers(input: SyncInput) -> SyncOutput:
    """Pull and persist one day of stock rows, then post touched documents."""
    started = time.monotonic()
    with _activity_correlation(brand=input.brand, sync_date=input.sync_date, stage="sync_stock"):
        log_activity_start("sync_stock_transfers", brand=input.brand, sync_date=input.sync_date)
        try:
            async with open_pipeline() as pipeline:
                summary = await pipeline.sync.sync_stock(input.sync_date, input.brand)
        except Exception as e:
            log_activity_error("sync_stock_transfers", str(e))
            raise

        log_activity_complete("sync_stock_transfers", (time.monotonic() - started) * 1000, saved=summary.saved)
        return SyncOutput(
            sync_date=input.sync_date,
            brand=input.brand,
            created=summary.saved,
            failed=summary.failed,
            doc_codes=summary.doc_codes,
            errors=summary.errors,
            warehouse_error=summary.warehouse_error,
        )


@activity.defn
async def dispatch_invoices(input: DispatchInput) -> DispatchOutput:
    """Submit invoices for the given (or all pending) documents."""
    started = time.monotonic()
    with _activity_correlation(stage="dispatch"):
        log_activity_start("dispatch_invoices", count=len(input.doc_codes))
        async with open_pipeline() as pipeline:
            if input.doc_codes:
                summary = await pipeline.dispatch.process_orders(input.doc_codes, force_retry=input.force_retry)
            else:
                summary = await pipeline.dispatch.process_pending(force_retry=input.force_retry)

        log_activity_complete("dispatch_invoices", (time.monotonic() - started) * 1000, success=summary.success)
        return DispatchOutput(
            processed=summary.processed,
            success=summary.success,
            cached=summary.cached,
            failed=summary.failed,
            errors=summary.errors,
        )


@activity.defn
async def process_warehouse(input: WarehouseInput) -> WarehouseOutput:
    with _activity_correlation(stage="warehouse"):
        log_activity_start("process_warehouse", count=len(input.doc_codes))
        async with open_pipeline() as pipeline:
            summary = await pipeline.warehouse.process_documents(input.doc_codes, force_retry=input.force_retry)
        log_activity_complete("process_warehouse", success=summary.success)
        return _warehouse_output(summary)


@activity.defn
async def retry_failed_warehouse(input: WarehouseRetryInput) -> WarehouseOutput:
    """Retry failed warehouse postings in a date range.

    A malformed range raises DateRangeError, which is not retryable.
    """
    with _activity_correlation(stage="warehouse_retry"):
        log_activity_start("retry_failed_warehouse", date_from=input.date_from, date_to=input.date_to)
        async with open_pipeline() as pipeline:
            summary = await pipeline.warehouse.retry_failed_by_date_range(input.date_from, input.date_to)
        log_activity_complete("retry_failed_warehouse", success=summary.success)
        return _warehouse_output(summary)
