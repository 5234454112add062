"""Start the daily sync workflow.

Connects to Temporal, starts a DailySyncWorkflow for each brand of a
DDMMMYYYY date, and prints the summaries.

Usage:
    python scripts/start_daily_sync.py 01NOV2025 menard f3
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from temporal_client import get_temporal_client
from core.observability import configure_logging, get_logger
from ingestion.normalize import parse_ddmmmyyyy
from workflows.daily_sync_workflow import DailySyncWorkflow, DailySyncInput, TASK_QUEUE

logger = get_logger(__name__)


async def start_daily_sync(sync_date: str, brands, dispatch: bool = True, force_retry: bool = False):
    """Start one workflow per brand and wait for all of them."""
    parse_ddmmmyyyy(sync_date)

    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    handles = []
    for brand in brands:
        handle = await client.start_workflow(
            DailySyncWorkflow.run,
            DailySyncInput(sync_date=sync_date, brand=brand, dispatch=dispatch, force_retry=force_retry),
            task_queue=TASK_QUEUE,
            id=f"daily-sync-{brand}-{sync_date}",
        )
        logger.info(f"Workflow started: {handle.id}")
        handles.append(handle)

    return [await handle.result() for handle in handles]


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Start the POS daily sync workflow")
    parser.add_argument("sync_date", help="Date in DDMMMYYYY form, e.g. 01NOV2025")
    parser.add_argument("brands", nargs="+", help="Brands to sync")
    parser.add_argument("--no-dispatch", action="store_true", help="Sync only, do not submit invoices")
    parser.add_argument("--force-retry", action="store_true", help="Re-submit already dispatched documents")
    args = parser.parse_args()

    configure_logging()
    try:
        results = asyncio.run(start_daily_sync(
            args.sync_date, args.brands,
            dispatch=not args.no_dispatch, force_retry=args.force_retry,
        ))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(results, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
