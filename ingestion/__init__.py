"""
Ingestion - retail feed normalization and persistence

- normalize: pure helpers (composite keys, dates, record construction)
- service: IngestionService (sales, stock rows, unresolved re-sync)
- sync: FeedSync (feed -> ingestion per date and brand)
"""

from .normalize import (
    StructuralInputError,
    DateRangeError,
    build_composite_key,
    parse_trans_date,
    parse_feed_date,
    parse_ddmmmyyyy,
    parse_date_range,
    format_ddmmmyyyy,
    iter_days,
    split_voucher_payment,
    build_customer,
    build_cash_records,
    build_sale_lines,
    build_stock_record,
    normalize_brand,
    normalize_customer_code,
)
from .service import (
    IngestionService,
    IngestionSummary,
    StockIngestionSummary,
    ResyncSummary,
)
from .sync import FeedSync, SyncResult

__all__ = [
    # Normalize
    "StructuralInputError",
    "DateRangeError",
    "build_composite_key",
    "parse_trans_date",
    "parse_feed_date",
    "parse_ddmmmyyyy",
    "parse_date_range",
    "format_ddmmmyyyy",
    "iter_days",
    "split_voucher_payment",
    "build_customer",
    "build_cash_records",
    "build_sale_lines",
    "build_stock_record",
    "normalize_brand",
    "normalize_customer_code",
    # Service
    "IngestionService",
    "IngestionSummary",
    "StockIngestionSummary",
    "ResyncSummary",
    # Sync
    "FeedSync",
    "SyncResult",
]
