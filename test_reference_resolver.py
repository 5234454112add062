"""
Reference resolution and ERP response handling tests.

Run with: pytest test_reference_resolver.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from connectors.erp_client import (
    ERPApiError,
    ERPClient,
    is_duplicate_error,
    is_success_response,
    response_guid,
    response_message,
)
from models.refs import DepartmentRef, ReferenceProduct
from reference_resolver import (
    ReferenceResolver,
    ReferenceServiceClient,
    ReferenceServiceError,
    parse_department,
    parse_product,
)


def product(code, **kwargs):
    return ReferenceProduct(code=code, material_code=f"M-{code}", **kwargs)


class TestParsing:

    def test_data_item_envelope(self):
        body = {"data": {"item": {"id": 7, "materialCode": "MAT01", "productType": "TPCN",
                                  "unit": "Hộp", "trackBatch": True, "trackSerial": False}}}
        parsed = parse_product(body, "ITEM01")
        assert parsed.material_code == "MAT01"
        assert parsed.product_type == "TPCN"
        assert parsed.track_batch is True
        assert parsed.track_serial is False
        assert parsed.source == "code"

    def test_data_envelope_lowercase_fields(self):
        body = {"data": {"code": "ITEM01", "materialcode": "MAT01", "producttype": "SKIN",
                         "trackinventory": "true", "trackserial": 1}}
        parsed = parse_product(body, "ITEM01", source="legacy")
        assert parsed.material_code == "MAT01"
        assert parsed.track_inventory is True
        assert parsed.track_serial is True
        assert parsed.source == "legacy"

    def test_bare_object(self):
        assert parse_product({"id": 1, "materialCode": "MAT01"}, "ITEM01").material_code == "MAT01"

    def test_missing_identity_is_none(self):
        assert parse_product({"data": {"materialCode": "MAT01"}}, "ITEM01") is None
        assert parse_product([], "ITEM01") is None

    def test_department(self):
        body = {"data": {"items": [{"ma_bp": "HN01", "ma_dvcs": "MN01", "brand": "menard"}]}}
        department = parse_department(body, "HN01")
        assert department.department_code == "HN01"
        assert department.unit_code == "MN01"
        assert department.brand == "menard"

    def test_department_empty(self):
        assert parse_department({"data": {"items": []}}, "HN01") is None

    def test_numeric_fields_become_strings(self):
        body = {"data": {"item": {"id": 1, "materialCode": 90011, "unit": {"name": "Hộp"}}}}
        parsed = parse_product(body, "ITEM01")
        assert parsed.material_code == "90011"
        assert parsed.unit is None

        department = parse_department({"data": {"items": [{"ma_bp": 101, "ma_dvcs": 7}]}}, "HN01")
        assert department.department_code == "101"
        assert department.unit_code == "7"

    def test_department_item_not_an_object(self):
        assert parse_department({"data": {"items": ["HN01"]}}, "HN01") is None


class TestResolver:

    def test_code_lookup_first(self, resolver, lookup):
        result = asyncio.run(resolver.resolve_product("ITEM01"))
        assert result.material_code == "MAT01"
        lookup.get_product_by_legacy_code.assert_not_awaited()

    def test_legacy_fallback(self):
        lookup = MagicMock()
        lookup.get_product_by_code = AsyncMock(return_value=None)
        lookup.get_product_by_legacy_code = AsyncMock(return_value=product("OLD01", source="legacy"))
        resolver = ReferenceResolver(lookup)

        result = asyncio.run(resolver.resolve_product("OLD01"))

        assert result.source == "legacy"
        lookup.get_product_by_legacy_code.assert_awaited_once_with("OLD01")

    def test_service_errors_degrade_to_none(self):
        lookup = MagicMock()
        lookup.get_product_by_code = AsyncMock(side_effect=ReferenceServiceError("boom", 503))
        lookup.get_product_by_legacy_code = AsyncMock(side_effect=ReferenceServiceError("boom", 503))
        lookup.get_department = AsyncMock(side_effect=ReferenceServiceError("boom", 503))
        resolver = ReferenceResolver(lookup)

        assert asyncio.run(resolver.resolve_product("ITEM01")) is None
        assert asyncio.run(resolver.resolve_department("HN01")) is None
        assert asyncio.run(resolver.resolve_products(["ITEM01", "ITEM02"])) == {}

    def test_malformed_payload_degrades_to_none(self):
        lookup = MagicMock()
        lookup.get_product_by_code = AsyncMock(
            side_effect=lambda code: ReferenceProduct(code=code, material_code=90011),
        )
        lookup.get_product_by_legacy_code = AsyncMock(return_value=None)
        resolver = ReferenceResolver(lookup)

        assert asyncio.run(resolver.resolve_products(["ITEM01", "ITEM02"])) == {}
        assert lookup.get_product_by_legacy_code.await_count == 2

    def test_numeric_codes_are_looked_up_as_text(self, resolver, lookup):
        found = asyncio.run(resolver.resolve_products([12345, "ITEM01"]))
        assert set(found) == {"ITEM01"}
        lookup.get_product_by_code.assert_any_await("12345")

    def test_unresolved_codes_absent(self, resolver):
        found = asyncio.run(resolver.resolve_products(["ITEM01", "ITEM99", None, " ", "ITEM01"]))
        assert set(found) == {"ITEM01"}

    def test_cache(self, resolver, lookup):
        asyncio.run(resolver.resolve_products(["ITEM01", "ITEM99"]))
        asyncio.run(resolver.resolve_products(["ITEM01", "ITEM99"]))
        assert lookup.get_product_by_code.await_count == 2

    def test_departments(self, resolver):
        found = asyncio.run(resolver.resolve_departments(["HN01", "HCM01"]))
        assert list(found) == ["HN01"]
        assert found["HN01"].unit_code == "MN01"

    def test_waves_bound_concurrency(self):
        in_flight = {"now": 0, "max": 0}

        async def lookup_code(code):
            in_flight["now"] += 1
            in_flight["max"] = max(in_flight["max"], in_flight["now"])
            await asyncio.sleep(0)
            in_flight["now"] -= 1
            return product(code)

        lookup = MagicMock()
        lookup.get_product_by_code = AsyncMock(side_effect=lookup_code)
        resolver = ReferenceResolver(lookup, batch_size=3)

        found = asyncio.run(resolver.resolve_products([f"ITEM{i:02d}" for i in range(10)]))

        assert len(found) == 10
        assert in_flight["max"] == 3

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            ReferenceResolver(MagicMock(), batch_size=0)


class TestERPResponses:

    def test_success_shapes(self):
        assert is_success_response({"status": 1})
        assert is_success_response([{"status": "1", "message": "OK"}])
        assert not is_success_response([{"status": 0}])
        assert not is_success_response([])
        assert not is_success_response("OK")

    def test_message_and_guid(self):
        body = [{"status": 1, "message": "Thành công", "guid": ["g-1", "g-2"]}]
        assert response_message(body) == "Thành công"
        assert response_guid(body) == "g-1"
        assert response_guid({"guid": "g-3"}) == "g-3"
        assert response_guid({"status": 1}) is None

    @pytest.mark.parametrize("text", [
        "Chứng từ SO001 đã tồn tại",
        "Violation of PRIMARY KEY constraint 'PK_D81'",
        "Duplicate entry",
    ])
    def test_duplicate_markers(self, text):
        assert is_duplicate_error(text)

    def test_not_duplicate(self):
        assert not is_duplicate_error("Mã khách hàng không hợp lệ")
        assert not is_duplicate_error(None)


class TestERPClient:

    def test_requires_connect(self):
        client = ERPClient("http://erp.local/api/")
        with pytest.raises(ERPApiError):
            asyncio.run(client.submit_sales_invoice({"so_ct": "SO001"}))

    def test_headers(self):
        headers = ERPClient("http://erp.local/api", token="abc")._get_headers()
        assert headers["Authorization"] == "Bearer abc"
        assert "Authorization" not in ERPClient("http://erp.local/api")._get_headers()

    def test_stock_io_endpoint_by_direction(self):
        client = ERPClient("http://erp.local/api")
        client._request = AsyncMock(return_value={"status": 1})

        asyncio.run(client.submit_stock_io({"so_ct": "ST001", "ma_nx": "1112"}))
        asyncio.run(client.submit_stock_io({"so_ct": "ST002", "ma_nx": "1111"}))
        asyncio.run(client.submit_stock_transfer({"so_ct": "ST003"}))

        endpoints = [call.args[1] for call in client._request.await_args_list]
        assert endpoints == ["warehouseReceipt", "warehouseRelease", "warehouseTransfer"]


class TestReferenceClient:

    def test_payload_with_numeric_fields(self):
        client = ReferenceServiceClient("http://ref.local")
        client._get = AsyncMock(return_value={"data": {"item": {"id": 1, "materialCode": 90011}}})

        product = asyncio.run(client.get_product_by_code("ITEM01"))

        assert product.material_code == "90011"
        assert product.source == "code"

    def test_invalid_payload_is_service_error(self):
        with pytest.raises(ReferenceServiceError):
            ReferenceServiceClient._parse(lambda body: ReferenceProduct(code=body), 42)

    def test_empty_body_is_miss(self):
        client = ReferenceServiceClient("http://ref.local")
        client._get = AsyncMock(return_value=None)
        assert asyncio.run(client.get_department("HN01")) is None
