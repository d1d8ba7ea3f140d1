import httpx
import pytest

from agrocart.catalog_client import CatalogClient
from agrocart.exceptions import CatalogSourceError
from agrocart.models import UnitProduct, WeightProduct


def make_client(handler):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CatalogClient(base_url="http://catalog.test/api", http_client=http_client)


class TestCatalogClient:

    @pytest.mark.asyncio
    async def test_list_products_unwraps_envelope(self, unit_record, variant_record):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={
                "success": True,
                "data": {
                    "products": [unit_record, variant_record],
                    "pagination": {"page": 2, "limit": 10, "total": 12},
                },
            })

        records, pagination = await make_client(handler).list_products(page=2, limit=10)

        assert seen["path"] == "/api/product"
        assert seen["params"] == {"page": "2", "limit": "10"}
        assert [r.id for r in records] == ["p-unit", "p-seeds"]
        assert all(isinstance(r, UnitProduct) for r in records)
        assert pagination["total"] == 12

    @pytest.mark.asyncio
    async def test_fish_listing_is_weight_priced(self, weight_record):
        def handler(request):
            assert request.url.path == "/api/fish-product"
            return httpx.Response(200, json={"data": {"fishProducts": [weight_record, {"_id": "bare"}]}})

        records, pagination = await make_client(handler).list_fish_products()

        assert all(isinstance(r, WeightProduct) for r in records)
        assert [r.id for r in records] == ["p-fish", "bare"]
        assert pagination == {}

    @pytest.mark.asyncio
    async def test_unwrapped_listing_with_flat_pagination(self, unit_record):
        def handler(request):
            return httpx.Response(200, json={"products": [unit_record], "total": 1, "currentPage": 1, "totalPages": 1})

        records, pagination = await make_client(handler).list_products()

        assert len(records) == 1
        assert pagination == {"total": 1, "currentPage": 1, "totalPages": 1}

    @pytest.mark.asyncio
    async def test_missing_products_key_is_empty(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "data": {"message": "ok"}})

        records, _ = await make_client(handler).list_products()

        assert records == []

    @pytest.mark.asyncio
    async def test_list_normalized(self, weight_record):
        def handler(request):
            return httpx.Response(200, json={"data": {"fishProducts": [weight_record]}})

        products = await make_client(handler).list_normalized("weight")

        assert products[0].is_weight_based is True
        assert products[0].total_stock == 5
        assert products[0].display_price == 500

    @pytest.mark.asyncio
    async def test_unknown_kind_is_rejected(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(ValueError):
            await client.list_normalized("bundle")

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(CatalogSourceError) as exc_info:
            await make_client(handler).list_products()

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(CatalogSourceError) as exc_info:
            await make_client(handler).list_fish_products()

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        with pytest.raises(CatalogSourceError):
            await make_client(handler).list_products()
