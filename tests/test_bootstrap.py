import json

import httpx
import pytest

from marketplace_shipping.bootstrap import build_container
from tests.helpers import make_settings


def upstream_handler(request: httpx.Request) -> httpx.Response:
    host, path = request.url.host, request.url.path
    if host == "webkul.test":
        if path == "/api/v2/products/variant-by-shopify-id/1001.json":
            return httpx.Response(200, json={"variant": {"id": 77, "product_id": 55, "weight": 400}})
        if path == "/api/v2/products/55.json":
            return httpx.Response(200, json={"product": {"id": 55, "seller_id": 9}})
        if path == "/api/v2/sellers/9/locations.json":
            return httpx.Response(200, json={"locations": [{"zipcode": "12190", "city": "Jakarta", "primary": True}]})
    if host == "biteship.test" and path == "/v1/rates/couriers":
        body = json.loads(request.content)
        assert body["origin_postal_code"] == "12190"
        return httpx.Response(200, json={"pricing": [
            {"courier_code": "jne", "courier_service_code": "reg", "courier_name": "JNE",
             "courier_service_name": "Reguler", "price": 22000, "shipment_duration_range": "1 - 2",
             "shipment_duration_unit": "days"},
        ]})
    return httpx.Response(404, json={"error": "unexpected", "path": path})


@pytest.mark.asyncio
async def test_container_quotes_end_to_end(engine):
    container = build_container(make_settings(), engine=engine, transport=httpx.MockTransport(upstream_handler))
    await container.start()
    try:
        result = await container.shipping.calculate_quote({
            "destination": {"postal_code": "10110"},
            "currency": "IDR",
            "items": [{"variant_id": 1001, "quantity": 1, "price": 2500000}],
        })
        origin = await container.resolver.resolve_origin("9")
        logged = await container.quote_log.list()
    finally:
        await container.close()

    assert [r["total_price"] for r in result.rates] == ["2200000"]
    assert result.rates[0]["service_name"] == "Marketplace JNE Reguler"
    assert origin.source.value == "cached"
    assert logged[0]["quote_id"] == result.debug["quote_id"]
