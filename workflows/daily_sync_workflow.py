"""
Daily Sync Workflow

Per date+brand orchestration:
SYNC_SALES → SYNC_STOCK (posts warehouse movements) → DISPATCH_INVOICES

Each stage is an activity with its own retry policy. A stage failure is
recorded in the summary; later stages still run since every stage is
keyed by document code and safe to re-run.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.pipeline import (
        dispatch_invoices,
        sync_sales,
        sync_stock_transfers,
        DispatchInput,
        SyncInput,
    )


TASK_QUEUE = "pos-sync"


@dataclass
class DailySyncInput:
    """Input for the daily sync workflow.

    Attributes:
        sync_date: Feed date in DDMMMYYYY form (e.g. 01NOV2025)
        brand: Brand to sync (menard, f3, chando, labhair, yaman)
        dispatch: Submit invoices after syncing
        force_retry: Re-submit documents that already succeeded
    """
    sync_date: str
    brand: str
    dispatch: bool = True
    force_retry: bool = False


@workflow.defn
class DailySyncWorkflow:
    """Sync one day of one brand and dispatch its invoices."""

    @workflow.run
    async def run(self, input: DailySyncInput) -> Dict[str, Any]:
        workflow.logger.info(f"Starting daily sync for {input.brand} {input.sync_date}")

        # Feed and ERP calls may be slow; the components collect per-record errors themselves
        activity_options = {
            "start_to_close_timeout": timedelta(minutes=30),
            "retry_policy": RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=5),
                maximum_interval=timedelta(minutes=2),
                backoff_coefficient=2.0,
                non_retryable_error_types=["DateRangeError", "ERPAuthenticationError"],
            ),
        }

        summary: Dict[str, Any] = {
            "sync_date": input.sync_date,
            "brand": input.brand,
            "errors": [],
        }
        sync_input = SyncInput(sync_date=input.sync_date, brand=input.brand)

        doc_codes: List[str] = []
        try:
            sales = await workflow.execute_activity(sync_sales, sync_input, **activity_options)
            doc_codes = sales.doc_codes
            summary["sales"] = {
                "created": sales.created,
                "updated": sales.updated,
                "failed": sales.failed,
                "unresolved_items": len(sales.unresolved_items),
            }
        except Exception as e:
            workflow.logger.error(f"Sales sync failed: {e}")
            summary["errors"].append(f"sync_sales: {e}")

        try:
            stock = await workflow.execute_activity(sync_stock_transfers, sync_input, **activity_options)
            summary["stock"] = {
                "saved": stock.created,
                "failed": stock.failed,
                "documents": len(stock.doc_codes),
                "warehouse_error": stock.warehouse_error,
            }
        except Exception as e:
            workflow.logger.error(f"Stock sync failed: {e}")
            summary["errors"].append(f"sync_stock_transfers: {e}")

        if input.dispatch and doc_codes:
            try:
                dispatched = await workflow.execute_activity(
                    dispatch_invoices,
                    DispatchInput(doc_codes=doc_codes, force_retry=input.force_retry),
                    **activity_options,
                )
                summary["dispatch"] = {
                    "success": dispatched.success,
                    "cached": dispatched.cached,
                    "failed": dispatched.failed,
                }
            except Exception as e:
                workflow.logger.error(f"Invoice dispatch failed: {e}")
                summary["errors"].append(f"dispatch_invoices: {e}")

        workflow.logger.info(f"Daily sync finished for {input.brand} {input.sync_date}")
        return summary
