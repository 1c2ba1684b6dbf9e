import json
from unittest.mock import AsyncMock

import httpx
import pytest

from marketplace_shipping.core.exceptions import ResolutionGap
from marketplace_shipping.modules.shipping.providers.webkul import (
    WebkulClient,
    parse_variant_dimensions,
    pick_primary_location,
)
from marketplace_shipping.modules.shipping.types import OriginSource


def make_client(routes, token_store=None):
    """routes: path -> callable(request) -> httpx.Response"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        route = routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        return route(request)

    client = WebkulClient(
        base_url="https://webkul.test",
        access_token="wk-access",
        refresh_token="wk-refresh",
        max_retries=0,
        token_store=token_store,
        transport=httpx.MockTransport(handler),
    )
    return client, calls


def test_parse_variant_dimensions():
    assert parse_variant_dimensions('{"length": "10", "width": 5, "height": 2.5}') == (10.0, 5.0, 2.5)
    assert parse_variant_dimensions("not json") == (0.0, 0.0, 0.0)
    assert parse_variant_dimensions(None) == (0.0, 0.0, 0.0)


def test_pick_primary_location_prefers_flagged_entry():
    candidates = [{"id": 1}, {"id": 2, "primary": "1"}]
    assert pick_primary_location(candidates)["id"] == 2
    assert pick_primary_location([{"id": 3}])["id"] == 3
    assert pick_primary_location([]) is None


@pytest.mark.asyncio
async def test_resolve_variant_walks_variant_product_seller():
    client, _ = make_client({
        "/api/v2/products/variant-by-shopify-id/1001.json": lambda r: httpx.Response(200, json={
            "variant": {"id": 77, "product_id": 55, "weight": "450", "dimension": '{"length": 30, "width": 20, "height": 1}'},
        }),
        "/api/v2/products/55.json": lambda r: httpx.Response(200, json={"product": {"id": 55, "seller_id": 9}}),
    })

    mapping = await client.resolve_variant("1001")
    await client.close()

    assert mapping.seller_id == "9"
    assert mapping.product_id == "55"
    assert mapping.directory_variant_id == "77"
    assert mapping.weight_grams == 450
    assert (mapping.length_cm, mapping.width_cm, mapping.height_cm) == (30, 20, 1)


@pytest.mark.asyncio
async def test_resolve_variant_without_product_raises_resolution_gap():
    client, _ = make_client({
        "/api/v2/products/variant-by-shopify-id/1001.json": lambda r: httpx.Response(200, json={"variant": {"id": 77}}),
    })
    with pytest.raises(ResolutionGap):
        await client.resolve_variant("1001")
    await client.close()


@pytest.mark.asyncio
async def test_origin_falls_back_to_unfiltered_locations():
    def locations(request: httpx.Request) -> httpx.Response:
        if "filter" in request.url.params:
            return httpx.Response(200, json={"locations": []})
        return httpx.Response(200, json={"locations": [
            {"zipcode": "40 111", "city": "Bandung", "state": "JB", "address": "Jl. Braga", "latitude": "-6.9"},
        ]})

    client, calls = make_client({"/api/v2/sellers/9/locations.json": locations})
    origin = await client.resolve_seller_origin("9")
    await client.close()

    assert origin.postal_code == "40111"
    assert origin.city == "Bandung"
    assert origin.latitude == -6.9
    assert origin.source == OriginSource.LIVE
    filters = [json.loads(c.url.params["filter"]) for c in calls if "filter" in c.url.params]
    assert filters == [{"primary": "true"}]


@pytest.mark.asyncio
async def test_origin_uses_seller_profile_when_locations_unavailable():
    client, _ = make_client({
        "/api/v2/sellers/9/locations.json": lambda r: httpx.Response(422, json={"error": "unsupported"}),
        "/api/v2/sellers/9.json": lambda r: httpx.Response(200, json={"seller": {
            "id": 9,
            "zipcode": "12190",
            "city": "Jakarta",
            "id_state": {"iso_code": "JK"},
            "id_country": {"iso_code": "ID"},
            "store_address": "Jl. Sudirman 1",
            "sp_store_name": "Toko Sembilan",
            "contact": 811000009,
            "email": "nine@example.com",
        }}),
    })

    origin = await client.resolve_seller_origin("9")
    await client.close()

    assert origin.postal_code == "12190"
    assert origin.state == "JK"
    assert origin.contact_name == "Toko Sembilan"
    assert origin.contact_phone == "811000009"


@pytest.mark.asyncio
async def test_origin_without_zipcode_is_resolution_gap():
    client, _ = make_client({
        "/api/v2/sellers/9/locations.json": lambda r: httpx.Response(200, json={"locations": []}),
        "/api/v2/sellers/9.json": lambda r: httpx.Response(200, json={"seller": {"id": 9}}),
    })
    with pytest.raises(ResolutionGap):
        await client.resolve_seller_origin("9")
    await client.close()


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_persisted():
    def seller(request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") != "Bearer rotated-access":
            return httpx.Response(401, json={"error": "expired"})
        return httpx.Response(200, json={"seller": {"id": 9}})

    def token(request: httpx.Request) -> httpx.Response:
        assert "Authorization" not in request.headers
        body = json.loads(request.content)
        assert body == {"access_token": "wk-access", "refresh_token": "wk-refresh"}
        return httpx.Response(200, json={"access_token": "rotated-access", "refresh_token": "rotated-refresh"})

    token_store = AsyncMock()
    token_store.load = AsyncMock(return_value=None)
    client, _ = make_client({"/api/v2/sellers/9.json": seller, "/authorize/token.json": token}, token_store=token_store)

    assert (await client.get_seller("9"))["id"] == 9
    await client.close()

    token_store.save.assert_awaited_once_with("webkul", "rotated-access", "rotated-refresh")
