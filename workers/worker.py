"""Worker for the POS sync pipeline.

Listens on the pos-sync task queue and executes the daily sync workflow
and the pipeline activities (feed sync, invoice dispatch, warehouse postings).
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from temporal_client import get_temporal_client
from core.config import load_config
from core.observability import configure_logging, get_logger
from workflows.daily_sync_workflow import DailySyncWorkflow, TASK_QUEUE
from activities.pipeline import (
    sync_sales,
    sync_stock_transfers,
    dispatch_invoices,
    process_warehouse,
    retry_failed_warehouse,
)

logger = get_logger(__name__)

ACTIVITIES = [
    sync_sales,
    sync_stock_transfers,
    dispatch_invoices,
    process_warehouse,
    retry_failed_warehouse,
]


async def run_worker(task_queue: str = TASK_QUEUE):
    """Start a worker on the given task queue.

    Raises:
        Exception: If connection to Temporal fails
    """
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=[DailySyncWorkflow],
        activities=ACTIVITIES,
    )
    logger.info(f"Worker created for queue '{task_queue}' with {len(ACTIVITIES)} activities")

    try:
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="POS Sync Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=TASK_QUEUE,
        help=f"Task queue to poll (default: {TASK_QUEUE})"
    )
    args = parser.parse_args()

    config = load_config()
    configure_logging(level=config.log_level, json_format=config.json_logs)
    asyncio.run(run_worker(task_queue=args.queue))


if __name__ == "__main__":
    main()
