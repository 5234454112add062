"""
Feed Sync

Pulls one date+brand from the retail feed and hands it to ingestion.
Stock rows are fetched part by part; a failing part is logged and skipped.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from connectors.feed_client import FeedClient, FeedError
from core.observability import get_logger, with_correlation

from .normalize import iter_days
from .service import IngestionService, IngestionSummary, StockIngestionSummary

logger = get_logger(__name__)


@dataclass
class SyncResult:
    sync_date: str
    brand: str
    sales: Optional[IngestionSummary] = None
    stock: Optional[StockIngestionSummary] = None
    errors: List[str] = field(default_factory=list)


class FeedSync:
    """Feed -> ingestion for one or more days."""

    def __init__(self, feed_client: FeedClient, ingestion: IngestionService, feed_parts: int = 10):
        self.feed_client = feed_client
        self.ingestion = ingestion
        self.feed_parts = max(1, feed_parts)

    async def sync_sales(self, sync_date: str, brand: str) -> IngestionSummary:
        orders = await self.feed_client.get_daily_sales(sync_date, brand)
        try:
            cash_rows = await self.feed_client.get_daily_cash(sync_date, brand)
        except FeedError as e:
            logger.warning(f"Cash feed unavailable for {brand} {sync_date}: {e}")
            cash_rows = []
        return await self.ingestion.ingest_sales(sync_date, brand, orders, cash_rows)

    async def sync_stock(self, sync_date: str, brand: str) -> StockIngestionSummary:
        rows = []
        failed_parts = []
        for part in range(1, self.feed_parts + 1):
            try:
                rows.extend(await self.feed_client.get_daily_stock_transfers(sync_date, brand, part))
            except FeedError as e:
                failed_parts.append(part)
                logger.warning(f"Stock feed part {part} failed for {brand} {sync_date}: {e}")

        summary = await self.ingestion.ingest_stock_transfers(sync_date, brand, rows)
        summary.errors.extend(f"stock part {part} unavailable" for part in failed_parts)
        return summary

    async def sync_date(self, sync_date: str, brand: str) -> SyncResult:
        """Sales then stock for one DDMMMYYYY date."""
        result = SyncResult(sync_date=sync_date, brand=brand)
        with with_correlation(brand=brand, sync_date=sync_date):
            try:
                result.sales = await self.sync_sales(sync_date, brand)
            except FeedError as e:
                result.errors.append(f"sales: {e}")
                logger.error(f"Sales feed failed for {brand} {sync_date}: {e}")
            result.stock = await self.sync_stock(sync_date, brand)
        return result

    async def sync_range(self, date_from: str, date_to: str, brands: List[str]) -> Dict[str, List[SyncResult]]:
        """Every day of the range for every brand.

        Raises:
            DateRangeError: if the range cannot be parsed
        """
        days = iter_days(date_from, date_to)
        results: Dict[str, List[SyncResult]] = {brand: [] for brand in brands}
        for day in days:
            for brand in brands:
                results[brand].append(await self.sync_date(day, brand))
        logger.info(f"Synced {len(days)} days for {len(brands)} brands")
        return results
