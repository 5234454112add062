"""
Ingestion tests: normalization helpers, sales/stock persistence and feed sync.

Run with: pytest test_ingestion.py -v
"""

import asyncio
from datetime import date, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from connectors.feed_client import FeedError, rows_to_orders
from core.config import PipelineConfig
from ingestion import (
    DateRangeError,
    FeedSync,
    IngestionService,
    StructuralInputError,
    build_cash_records,
    build_composite_key,
    build_sale_lines,
    build_stock_record,
    iter_days,
    parse_ddmmmyyyy,
    parse_date_range,
    parse_feed_date,
    parse_trans_date,
    split_voucher_payment,
)
from models.records import CashRecord
from models.refs import ReferenceProduct
from reference_resolver import ReferenceResolver
from warehouse import WarehouseBatchSummary


def make_order(doc_code="SO001", sales=None, **kwargs):
    order = {
        "docCode": doc_code,
        "docDate": "2025-11-01T08:15:00",
        "branchCode": "HN01",
        "customer": {"code": "NV8480", "name": "Nguyen Van A", "mobile": "0900000000"},
        "sales": sales if sales is not None else [
            {"itemCode": "ITEM01", "ordertype": "01.Thường", "qty": 1, "revenue": 90000,
             "linetotal": 100000, "other_discamt": 10000, "producttype": "I"},
            {"itemCode": "ITEM99", "ordertype": "01.Thường", "qty": 2, "revenue": 50000,
             "linetotal": 50000, "producttype": "I"},
        ],
    }
    order.update(kwargs)
    return order


def stock_row(**kwargs):
    row = {
        "doctype": "STOCK_IO",
        "doccode": "ST001",
        "itemcode": "ITEM01",
        "stockcode": "BHN01",
        "iotype": "O",
        "qty": -2,
        "transdate": "01/11/2025 09:30",
        "branch_code": "HN01",
    }
    row.update(kwargs)
    return row


# =============================================================================
# Normalization
# =============================================================================

class TestCompositeKey:

    def test_same_content_same_key(self):
        first = build_composite_key("ST001", "ITEM01", 2, "BHN01", "O", None)
        second = build_composite_key("ST001", "ITEM01", 2.0, "BHN01", "O", "")
        assert first == second == "ST001|ITEM01|2|BHN01|O|"

    def test_fractional_quantity(self):
        assert build_composite_key("ST001", "ITEM01", 1.5, "BHN01", "I", "LOT1") == "ST001|ITEM01|1.5|BHN01|I|LOT1"

    def test_different_content_different_key(self):
        assert build_composite_key("ST001", "ITEM01", 2, "BHN01", "O", None) != \
            build_composite_key("ST001", "ITEM01", 2, "BHN01", "I", None)

    def test_stock_record_key_is_stable(self):
        assert build_stock_record(stock_row(), "01NOV2025", "menard").composite_key == \
            build_stock_record(stock_row(qty="-2.0"), "02NOV2025", "menard").composite_key


class TestDates:

    def test_trans_date(self):
        assert parse_trans_date("01/11/2025 09:30") == datetime(2025, 11, 1, 9, 30)
        assert parse_trans_date("01/11/2025") == datetime(2025, 11, 1)
        assert parse_trans_date("2025-11-01") is None
        assert parse_trans_date(None) is None

    def test_feed_date(self):
        assert parse_feed_date("2025-11-01T08:15:00Z").date() == date(2025, 11, 1)
        assert parse_feed_date("14-12-2025 10:05") == datetime(2025, 12, 14, 10, 5)
        assert parse_feed_date(date(2025, 1, 2)) == datetime(2025, 1, 2)
        assert parse_feed_date("not a date") is None

    def test_ddmmmyyyy(self):
        assert parse_ddmmmyyyy("01NOV2025") == date(2025, 11, 1)
        assert parse_ddmmmyyyy("01nov2025") == date(2025, 11, 1)

    @pytest.mark.parametrize("value", ["2025-11-01", "32NOV2025", "01XYZ2025", ""])
    def test_ddmmmyyyy_invalid(self, value):
        with pytest.raises(DateRangeError):
            parse_ddmmmyyyy(value)

    def test_range_is_inclusive(self):
        start, end = parse_date_range("01NOV2025", "02NOV2025")
        assert start == datetime(2025, 11, 1)
        assert end == datetime(2025, 11, 2, 23, 59, 59)

    def test_reversed_range(self):
        with pytest.raises(DateRangeError):
            parse_date_range("02NOV2025", "01NOV2025")

    def test_iter_days(self):
        assert iter_days("30NOV2025", "02DEC2025") == ["30NOV2025", "01DEC2025", "02DEC2025"]


class TestVoucherSplit:

    def test_nothing_paid(self):
        assert split_voucher_payment(0, [], None, None, None, "menard") == {}

    def test_ecoin_moves_to_virtual_account(self):
        cash = [CashRecord(doc_code="SO001", fop_syscode="ECOIN", total_in=30000)]
        assert split_voucher_payment(50000, cash, None, None, None, "menard") == {
            "chietKhauThanhToanTkTienAo": 30000,
        }

    def test_ecoin_without_amount_keeps_paid_amount(self):
        cash = [CashRecord(doc_code="SO001", fop_syscode="ECOIN", total_in=0)]
        assert split_voucher_payment(50000, cash, None, None, None, "menard") == {
            "chietKhauThanhToanTkTienAo": 50000,
        }

    def test_reserve(self):
        assert split_voucher_payment(20000, [], "SHOPEE", None, None, "menard") == {"chietKhauVoucherDp1": 20000}

    def test_primary(self):
        assert split_voucher_payment(20000, [], None, "KM01", "PKG", "menard") == {
            "paid_by_voucher_ecode_ecoin_bp": 20000,
        }


class TestRecordConstruction:

    def test_sale_lines(self):
        lines = build_sale_lines(make_order(), "menard", [])
        assert [l.line_no for l in lines] == [1, 2]
        first = lines[0]
        assert first.doc_date == date(2025, 11, 1)
        assert first.customer_code == "8480"
        assert first.brand == "menard"
        assert first.discounts == {"other_discamt": 10000}

    def test_no_sales_is_structural(self):
        with pytest.raises(StructuralInputError):
            build_sale_lines(make_order(sales=[]), "menard", [])

    def test_bad_date_is_structural(self):
        with pytest.raises(StructuralInputError):
            build_sale_lines(make_order(docDate="someday"), "menard", [])

    def test_cash_records_match_document(self):
        rows = [
            {"so_code": "SO001", "fop_syscode": "ecoin", "total_in": 30000},
            {"master_code": "SO001", "fop_syscode": "VOUCHER", "refno": "V1", "total_in": 5000},
            {"so_code": "SO002", "fop_syscode": "ECOIN", "total_in": 1},
        ]
        records = build_cash_records("SO001", rows)
        assert [r.fop_syscode for r in records] == ["ECOIN", "VOUCHER"]

    def test_stock_record(self):
        record = build_stock_record(stock_row(so_code="SO9"), "01NOV2025", "FacialBar")
        assert record.doc_code == "ST001"
        assert record.io_type == "O"
        assert record.trans_date == datetime(2025, 11, 1, 9, 30)
        assert record.so_code == "SO9"
        assert record.brand == "f3"


class TestRowsToOrders:

    def test_groups_by_code(self):
        rows = [
            {"code": "SO001", "docdate": "2025-11-01", "itemcode": "A", "qty": 1, "revenue": 10,
             "partner_code": "KH1", "branch_code": "HN01", "v_paid": 5},
            {"code": "SO001", "itemcode": "B", "qty": 2, "revenue": 20},
            {"code": "SO002", "itemcode": "C", "qty": 1, "revenue": 30},
            {"code": "SO003", "doctype": "RETURN", "itemcode": "D"},
        ]
        orders = rows_to_orders(rows)
        assert [o["docCode"] for o in orders] == ["SO001", "SO002"]
        assert [s["itemCode"] for s in orders[0]["sales"]] == ["A", "B"]
        assert orders[0]["customer"]["code"] == "KH1"
        assert orders[0]["sales"][0]["paid_by_voucher_ecode_ecoin_bp"] == 5


# =============================================================================
# Sales ingestion
# =============================================================================

class TestIngestSales:

    def test_creates_lines_and_customer(self, repos, resolver):
        service = IngestionService(repos, resolver)

        summary = asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order()]))

        assert summary.created == 2
        assert summary.updated == 0
        assert summary.customers_created == 1
        assert summary.doc_codes == ["SO001"]
        assert summary.unresolved_items == ["ITEM99"]

        lines = repos.sales.list_by_doc_code("SO001")
        assert [l.resolved for l in lines] == [True, False]
        customer = repos.customers.get("8480")
        assert customer.name == "Nguyen Van A"
        assert customer.brand == "menard"

    def test_repeat_ingest_updates(self, repos, resolver):
        service = IngestionService(repos, resolver)
        asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order()]))

        changed = make_order()
        changed["customer"]["name"] = "Nguyen Van B"
        changed["sales"][0]["revenue"] = 80000
        summary = asyncio.run(service.ingest_sales("01NOV2025", "menard", [changed]))

        assert summary.created == 0
        assert summary.updated == 2
        assert summary.customers_created == 0
        assert len(repos.sales.list_by_doc_code("SO001")) == 2
        assert repos.sales.find_by_natural_key("SO001", 1).revenue == 80000
        assert repos.customers.get("8480").name == "Nguyen Van B"

    def test_reingest_keeps_processed_flag(self, repos, resolver):
        service = IngestionService(repos, resolver)
        asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order()]))
        repos.sales.mark_processed("SO001")

        asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order()]))

        assert all(l.processed for l in repos.sales.list_by_doc_code("SO001"))

    def test_structural_failure_does_not_stop_batch(self, repos, resolver):
        service = IngestionService(repos, resolver)
        orders = [make_order("SO001"), make_order("SO002", sales=[]), make_order("SO003", docDate="bad")]

        summary = asyncio.run(service.ingest_sales("01NOV2025", "menard", orders))

        assert summary.doc_codes == ["SO001"]
        assert summary.failed == 2
        assert summary.errors[0] == "SO002: order has no sale lines"
        assert repos.sales.list_by_doc_code("SO002") == []

    def test_cash_records_and_ecoin_split(self, repos, resolver):
        service = IngestionService(repos, resolver)
        order = make_order(sales=[
            {"itemCode": "ITEM01", "ordertype": "01.Thường", "qty": 1, "revenue": 0,
             "linetotal": 30000, "paid_by_voucher_ecode_ecoin_bp": 30000},
        ])
        cash = [{"so_code": "SO001", "fop_syscode": "ECOIN", "total_in": 30000}]

        asyncio.run(service.ingest_sales("01NOV2025", "menard", [order], cash))

        line = repos.sales.find_by_natural_key("SO001", 1)
        assert line.discounts == {"chietKhauThanhToanTkTienAo": 30000}
        assert [r.fop_syscode for r in repos.cash.list_by_doc_code("SO001")] == ["ECOIN"]

    def test_numeric_item_code_is_unresolved_not_fatal(self, repos, resolver):
        service = IngestionService(repos, resolver)
        numeric = make_order("SO002", sales=[
            {"itemCode": 12345, "ordertype": "01.Thường", "qty": 1, "revenue": 50000, "linetotal": 50000},
        ])

        summary = asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order(), numeric]))

        assert summary.doc_codes == ["SO001", "SO002"]
        assert summary.failed == 0
        assert "12345" in summary.unresolved_items
        assert repos.sales.find_by_natural_key("SO002", 1).item_code == "12345"

    def test_lookup_failure_becomes_summary_error(self, repos):
        resolver = MagicMock()
        resolver.resolve_products = AsyncMock(side_effect=RuntimeError("reference down"))
        resolver.resolve_departments = AsyncMock(return_value={})
        service = IngestionService(repos, resolver)

        summary = asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order()]))

        assert summary.doc_codes == ["SO001"]
        assert summary.errors == ["product lookup failed: reference down"]
        assert summary.unresolved_items == ["ITEM01", "ITEM99"]
        assert not any(l.resolved for l in repos.sales.list_by_doc_code("SO001"))

    def test_malformed_reference_payload_leaves_line_unresolved(self, repos):
        lookup = MagicMock()
        lookup.get_product_by_code = AsyncMock(
            side_effect=lambda code: ReferenceProduct(code=code, material_code=90011),
        )
        lookup.get_product_by_legacy_code = AsyncMock(return_value=None)
        lookup.get_department = AsyncMock(return_value=None)
        service = IngestionService(repos, ReferenceResolver(lookup))

        summary = asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order()]))

        assert summary.doc_codes == ["SO001"]
        assert summary.unresolved_items == ["ITEM01", "ITEM99"]

    def test_resync_unresolved(self, repos, resolver, lookup):
        service = IngestionService(repos, resolver)
        asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order()]))

        lookup.get_product_by_code.side_effect = lambda code: ReferenceProduct(code=code, material_code="M-" + code)
        resolver.clear_cache()
        summary = asyncio.run(service.resync_unresolved())

        assert summary.checked == 1
        assert summary.resolved == 1
        assert summary.still_unresolved == []
        assert repos.sales.list_unresolved() == []

    def test_resync_still_unresolved(self, repos, resolver):
        service = IngestionService(repos, resolver)
        asyncio.run(service.ingest_sales("01NOV2025", "menard", [make_order()]))

        summary = asyncio.run(service.resync_unresolved("SO001"))

        assert summary.resolved == 0
        assert summary.still_unresolved == ["ITEM99"]


# =============================================================================
# Stock ingestion
# =============================================================================

class TestIngestStock:

    def test_chunks_and_material_codes(self, repos, resolver):
        service = IngestionService(repos, resolver, config=PipelineConfig(stock_chunk_size=2))
        rows = [stock_row(doccode=f"ST00{i}") for i in range(1, 6)]

        summary = asyncio.run(service.ingest_stock_transfers("01NOV2025", "menard", rows))

        assert summary.received == 5
        assert summary.saved == 5
        assert summary.failed == 0
        assert summary.doc_codes == ["ST001", "ST002", "ST003", "ST004", "ST005"]
        assert repos.stock_transfers.list_effective_by_doc_code("ST001")[0].material_code == "MAT01"

    def test_duplicates_are_stored_but_read_once(self, repos, resolver):
        service = IngestionService(repos, resolver)
        asyncio.run(service.ingest_stock_transfers("01NOV2025", "menard", [stock_row()]))
        asyncio.run(service.ingest_stock_transfers("01NOV2025", "menard", [stock_row()]))

        record = build_stock_record(stock_row(), "01NOV2025", "menard")
        assert len(repos.stock_transfers.find_by_natural_key(record.composite_key)) == 2
        assert len(repos.stock_transfers.list_effective_by_doc_code("ST001")) == 1

    def test_warehouse_runs_on_touched_documents(self, repos, resolver):
        tracker = MagicMock()
        tracker.process_documents = AsyncMock(return_value=WarehouseBatchSummary(processed=2, success=1, failed=1))
        service = IngestionService(repos, resolver, warehouse_tracker=tracker)

        summary = asyncio.run(service.ingest_stock_transfers(
            "01NOV2025", "menard", [stock_row(), stock_row(doccode="ST002")],
        ))

        tracker.process_documents.assert_awaited_once_with(["ST001", "ST002"])
        assert summary.warehouse_processed == 1
        assert summary.warehouse_failed == 1

    def test_lookup_failure_still_persists_rows(self, repos):
        resolver = MagicMock()
        resolver.resolve_products = AsyncMock(side_effect=RuntimeError("reference down"))
        service = IngestionService(repos, resolver)

        summary = asyncio.run(service.ingest_stock_transfers(
            "01NOV2025", "menard", [stock_row(), stock_row(doccode="ST002", itemcode=4711)],
        ))

        assert summary.saved == 2
        assert summary.errors == ["product lookup failed: reference down"]
        rows = repos.stock_transfers.list_effective_by_doc_code("ST002")
        assert rows[0].item_code == "4711"
        assert rows[0].material_code is None

    def test_warehouse_error_does_not_fail_ingest(self, repos, resolver):
        tracker = MagicMock()
        tracker.process_documents = AsyncMock(side_effect=RuntimeError("erp down"))
        service = IngestionService(repos, resolver, warehouse_tracker=tracker)

        summary = asyncio.run(service.ingest_stock_transfers("01NOV2025", "menard", [stock_row()]))

        assert summary.saved == 1
        assert summary.warehouse_error == "erp down"


# =============================================================================
# Feed sync
# =============================================================================

class TestFeedSync:

    @pytest.fixture
    def feed(self):
        client = MagicMock()
        client.get_daily_sales = AsyncMock(return_value=[make_order()])
        client.get_daily_cash = AsyncMock(side_effect=FeedError("cash feed down", 503))

        async def stock_part(sync_date, brand, part):
            if part == 2:
                raise FeedError("part unavailable", 500)
            return [stock_row(doccode=f"ST{part:03d}")]

        client.get_daily_stock_transfers = AsyncMock(side_effect=stock_part)
        return client

    def test_sync_date(self, repos, resolver, feed):
        sync = FeedSync(feed, IngestionService(repos, resolver), feed_parts=3)

        result = asyncio.run(sync.sync_date("01NOV2025", "menard"))

        assert result.sales.created == 2
        assert result.stock.saved == 2
        assert result.stock.doc_codes == ["ST001", "ST003"]
        assert result.stock.errors == ["stock part 2 unavailable"]
        assert result.errors == []

    def test_sales_feed_failure_is_reported(self, repos, resolver, feed):
        feed.get_daily_sales.side_effect = FeedError("sales feed down", 502)
        sync = FeedSync(feed, IngestionService(repos, resolver), feed_parts=1)

        result = asyncio.run(sync.sync_date("01NOV2025", "menard"))

        assert result.sales is None
        assert result.errors == ["sales: sales feed down"]
        assert result.stock.saved == 1

    def test_sync_range(self, repos, resolver, feed):
        sync = FeedSync(feed, IngestionService(repos, resolver), feed_parts=1)

        results = asyncio.run(sync.sync_range("01NOV2025", "02NOV2025", ["menard", "f3"]))

        assert [r.sync_date for r in results["menard"]] == ["01NOV2025", "02NOV2025"]
        assert len(results["f3"]) == 2

    def test_sync_range_rejects_bad_dates(self, repos, resolver, feed):
        sync = FeedSync(feed, IngestionService(repos, resolver))
        with pytest.raises(DateRangeError):
            asyncio.run(sync.sync_range("2025-11-01", "02NOV2025", ["menard"]))
