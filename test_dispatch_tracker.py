"""
Tests for idempotent invoice dispatch.

Covers:
1. Cached success short-circuits without an ERP call
2. Duplicate-key rejection counts as success
3. Failure, then force_retry
4. Processed flags and attempt counters
5. Unexpected errors never escape process_order

Run with: pytest test_dispatch_tracker.py -v
"""

import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from connectors.erp_client import ERPApiError, ERPServerError
from derivation_engine import DerivationEngine
from dispatch import DispatchTracker
from models.records import CustomerRef, DispatchRecord, DispatchStatus, SaleLine
from storage.repositories import utc_now


SUCCESS_BODY = [{"status": 1, "message": "OK", "guid": ["3f2c-01"]}]


def seed_order(repos, doc_code="SO001", lines=2):
    repos.customers.upsert(CustomerRef(code="NV8480", name="Nguyen Van A", brand="menard"))
    for line_no in range(1, lines + 1):
        repos.sales.upsert(SaleLine(
            doc_code=doc_code,
            line_no=line_no,
            doc_date=date(2025, 11, 1),
            branch_code="HN01",
            brand="menard",
            customer_code="NV8480",
            order_type_name="01.Thường",
            item_code=f"ITEM0{line_no}",
            product_type="I",
            qty=1,
            revenue=100000,
            line_total=100000,
        ))


@pytest.fixture
def erp():
    client = MagicMock()
    client.submit_sales_invoice = AsyncMock(return_value=SUCCESS_BODY)
    return client


@pytest.fixture
def tracker(repos, resolver, erp):
    return DispatchTracker(repos, resolver, DerivationEngine(), erp)


class TestFirstDispatch:

    def test_success_records_and_marks_processed(self, repos, tracker, erp):
        seed_order(repos)

        result = asyncio.run(tracker.process_order("SO001"))

        assert result.success
        assert not result.already_exists
        erp.submit_sales_invoice.assert_awaited_once()

        record = repos.dispatch.get("SO001")
        assert record.status == DispatchStatus.SUCCESS
        assert record.guid == "3f2c-01"
        assert record.attempts == 1
        assert record.customer_code == "8480"
        assert record.unit_code == "MN01"
        assert record.doc_date == date(2025, 11, 1)
        assert all(line.processed for line in repos.sales.list_by_doc_code("SO001"))

    def test_updated_at_is_naive_utc(self, repos, tracker):
        seed_order(repos)

        asyncio.run(tracker.process_order("SO001"))

        updated_at = repos.dispatch.get("SO001").updated_at
        assert updated_at.tzinfo is None
        assert abs(utc_now() - updated_at) < timedelta(minutes=1)

    def test_payload_sent_to_erp(self, repos, tracker, erp):
        seed_order(repos)

        asyncio.run(tracker.process_order("SO001"))

        payload = erp.submit_sales_invoice.await_args.args[0]
        assert payload["so_ct"] == "SO001"
        assert payload["ma_kh"] == "8480"
        assert payload["ma_dvcs"] == "MN01"
        assert [d["ma_vt"] for d in payload["detail"]] == ["MAT01", "MAT02"]
        assert payload["detail"][0]["ma_kho"] == "BHN01"

    def test_unresolved_lines_are_not_looked_up(self, repos, tracker, lookup):
        seed_order(repos, lines=1)
        line = repos.sales.find_by_natural_key("SO001", 1)
        repos.sales.set_resolved([line.id], False)

        result = asyncio.run(tracker.process_order("SO001"))

        assert result.success
        lookup.get_product_by_code.assert_not_awaited()

    def test_no_lines_fails(self, repos, tracker, erp):
        result = asyncio.run(tracker.process_order("SO404"))

        assert result.status == DispatchStatus.FAILED
        assert result.message == "No sale lines for SO404"
        erp.submit_sales_invoice.assert_not_awaited()
        assert repos.dispatch.get("SO404").status == DispatchStatus.FAILED


class TestCachedSuccess:

    def test_success_short_circuits(self, repos, tracker, erp):
        seed_order(repos)
        repos.dispatch.upsert(DispatchRecord(
            doc_code="SO001", status=DispatchStatus.SUCCESS, message="OK", attempts=1,
        ))

        result = asyncio.run(tracker.process_order("SO001"))

        assert result.success
        assert result.already_exists
        erp.submit_sales_invoice.assert_not_awaited()
        assert repos.dispatch.get("SO001").attempts == 1

    def test_repeat_calls_submit_once(self, repos, tracker, erp):
        seed_order(repos)

        async def run():
            first = await tracker.process_order("SO001")
            second = await tracker.process_order("SO001")
            return first, second

        first, second = asyncio.run(run())

        assert first.success and not first.already_exists
        assert second.success and second.already_exists
        assert erp.submit_sales_invoice.await_count == 1

    def test_concurrent_calls_submit_once(self, repos, tracker, erp):
        seed_order(repos)

        async def run():
            return await asyncio.gather(
                tracker.process_order("SO001"),
                tracker.process_order("SO001"),
            )

        results = asyncio.run(run())

        assert all(r.success for r in results)
        assert sum(1 for r in results if r.already_exists) == 1
        assert erp.submit_sales_invoice.await_count == 1

    def test_locks_released_after_dispatch(self, repos, tracker, erp):
        seed_order(repos, "SO001")
        seed_order(repos, "SO002")

        async def run():
            return await asyncio.gather(
                tracker.process_order("SO001"),
                tracker.process_order("SO001"),
                tracker.process_order("SO002"),
            )

        asyncio.run(run())

        assert tracker._locks == {}
        assert tracker._lock_users == {}

    def test_force_retry_resubmits(self, repos, tracker, erp):
        seed_order(repos)
        asyncio.run(tracker.process_order("SO001"))

        result = asyncio.run(tracker.process_order("SO001", force_retry=True))

        assert result.success
        assert not result.already_exists
        assert erp.submit_sales_invoice.await_count == 2
        assert repos.dispatch.get("SO001").attempts == 2


class TestDuplicates:

    def test_duplicate_exception_is_success(self, repos, tracker, erp):
        seed_order(repos)
        erp.submit_sales_invoice.side_effect = ERPApiError(
            "Chứng từ SO001 đã tồn tại", 400, '{"message": "đã tồn tại"}',
        )

        result = asyncio.run(tracker.process_order("SO001"))

        assert result.success
        assert result.duplicate
        assert result.message == "Chứng từ SO001 đã tồn tại"
        record = repos.dispatch.get("SO001")
        assert record.status == DispatchStatus.SUCCESS
        assert record.message == "Chứng từ SO001 đã tồn tại"
        assert all(line.processed for line in repos.sales.list_by_doc_code("SO001"))

    def test_duplicate_response_body_is_success(self, repos, tracker, erp):
        seed_order(repos)
        erp.submit_sales_invoice.return_value = [
            {"status": 0, "message": "Violation of PRIMARY KEY constraint 'PK_D81'"},
        ]

        result = asyncio.run(tracker.process_order("SO001"))

        assert result.success
        assert result.duplicate
        assert repos.dispatch.get("SO001").status == DispatchStatus.SUCCESS


class TestFailures:

    def test_rejection_is_failed_and_retryable(self, repos, tracker, erp):
        seed_order(repos)
        erp.submit_sales_invoice.return_value = [{"status": 0, "message": "Mã khách hàng không hợp lệ"}]

        first = asyncio.run(tracker.process_order("SO001"))

        assert first.status == DispatchStatus.FAILED
        assert first.message == "Mã khách hàng không hợp lệ"
        record = repos.dispatch.get("SO001")
        assert record.status == DispatchStatus.FAILED
        assert record.response_payload == [{"status": 0, "message": "Mã khách hàng không hợp lệ"}]
        assert not any(line.processed for line in repos.sales.list_by_doc_code("SO001"))

        erp.submit_sales_invoice.return_value = SUCCESS_BODY
        second = asyncio.run(tracker.process_order("SO001", force_retry=True))

        assert second.success
        record = repos.dispatch.get("SO001")
        assert record.status == DispatchStatus.SUCCESS
        assert record.attempts == 2

    def test_failed_record_is_not_cached(self, repos, tracker, erp):
        seed_order(repos)
        erp.submit_sales_invoice.return_value = [{"status": 0, "message": "rejected"}]
        asyncio.run(tracker.process_order("SO001"))

        asyncio.run(tracker.process_order("SO001"))

        assert erp.submit_sales_invoice.await_count == 2

    def test_server_error_is_recorded(self, repos, tracker, erp):
        seed_order(repos)
        erp.submit_sales_invoice.side_effect = ERPServerError("Server error 502", 502)

        result = asyncio.run(tracker.process_order("SO001"))

        assert result.status == DispatchStatus.FAILED
        assert result.message == "Server error 502"
        assert repos.dispatch.get("SO001").message == "Server error 502"

    def test_unexpected_exception_never_escapes(self, repos, tracker, erp):
        seed_order(repos)
        erp.submit_sales_invoice.side_effect = RuntimeError("connection reset")

        result = asyncio.run(tracker.process_order("SO001"))

        assert result.status == DispatchStatus.FAILED
        assert result.message == "connection reset"


class TestBatch:

    def test_process_orders_summary(self, repos, tracker, erp):
        seed_order(repos, "SO001")
        seed_order(repos, "SO002")
        repos.dispatch.upsert(DispatchRecord(doc_code="SO002", status=DispatchStatus.SUCCESS))

        summary = asyncio.run(tracker.process_orders(["SO001", "SO002", "SO001", "SO404"]))

        assert summary.processed == 3
        assert summary.success == 1
        assert summary.cached == 1
        assert summary.failed == 1
        assert summary.errors == ["SO404: No sale lines for SO404"]

    def test_process_pending(self, repos, tracker, erp):
        seed_order(repos, "SO001")
        seed_order(repos, "SO002")

        summary = asyncio.run(tracker.process_pending())

        assert summary.success == 2
        assert repos.sales.list_unprocessed_doc_codes() == []
