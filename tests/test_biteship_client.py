import json

import httpx
import pytest

from marketplace_shipping.core.exceptions import UpstreamRejected
from marketplace_shipping.modules.shipping.providers.biteship import (
    BiteshipClient,
    extract_booking_summary,
    extract_duration_days,
    normalize_rate,
)


def make_client(handler, **kwargs):
    return BiteshipClient(
        base_url="https://biteship.test",
        api_key="biteship-key",
        couriers=["jne", "sicepat"],
        max_retries=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_hour_durations_convert_to_fractional_days():
    min_day, max_day = extract_duration_days({"shipment_duration_range": "1 - 2", "shipment_duration_unit": "hours"})
    assert min_day == pytest.approx(1 / 24)
    assert max_day == pytest.approx(2 / 24)


def test_day_durations_and_explicit_fields():
    assert extract_duration_days({"shipment_duration_range": "2 - 3", "shipment_duration_unit": "days"}) == (2, 3)
    assert extract_duration_days({"duration": "4 days"}) == (4, 4)
    assert extract_duration_days({"min_day": 1, "max_day": 0}) == (1, 1)
    assert extract_duration_days({}) == (0.0, 0.0)


def test_normalize_rate_reads_camel_case_variants():
    quote = normalize_rate({
        "courierCode": "JNE",
        "courierServiceCode": "REG",
        "courierName": "JNE",
        "courierServiceName": "Reguler",
        "price": "22000",
    })
    assert quote.key == ("jne", "reg")
    assert quote.price == 22000.0


def test_booking_summary_from_nested_courier():
    summary = extract_booking_summary({
        "id": "bk_123",
        "status": "confirmed",
        "courier": {"waybill_id": "WB-9"},
    })
    assert summary.booking_id == "bk_123"
    assert summary.tracking_number == "WB-9"
    assert summary.status == "confirmed"

    empty = extract_booking_summary("not a dict")
    assert empty.booking_id == ""
    assert empty.status == "created"


@pytest.mark.asyncio
async def test_get_rates_posts_payload_and_drops_non_positive_prices():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"pricing": [
            {"courier_code": "jne", "courier_service_code": "reg", "price": 22000, "duration": "2 - 3 days"},
            {"courier_code": "sicepat", "courier_service_code": "best", "price": 0},
        ]})

    client = make_client(handler)
    rates = await client.get_rates(
        items=[{"name": "Comic", "value": 50000, "weight": 500, "quantity": 1}],
        origin_postal_code="12190",
        destination_postal_code="60111",
        origin_latitude=None,
    )
    await client.close()

    assert captured["path"] == "/v1/rates/couriers"
    assert captured["auth"] == "biteship-key"
    assert captured["body"]["couriers"] == "jne,sicepat"
    assert captured["body"]["origin_postal_code"] == "12190"
    assert "origin_latitude" not in captured["body"]
    assert [r.key for r in rates] == [("jne", "reg")]
    assert (rates[0].min_day, rates[0].max_day) == (2, 3)


@pytest.mark.asyncio
async def test_get_rates_accepts_legacy_rates_key():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"rates": [{"courier_code": "jne", "courier_service_code": "yes", "price": 30000}]})

    client = make_client(handler)
    rates = await client.get_rates(items=[], destination_postal_code="60111", couriers=["jne"])
    await client.close()

    assert rates[0].service_code == "yes"


@pytest.mark.asyncio
async def test_create_order_rejection_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid courier"})

    client = make_client(handler)
    with pytest.raises(UpstreamRejected) as exc_info:
        await client.create_order({"courier_company": "jne"})
    await client.close()

    assert exc_info.value.response_body == {"error": "invalid courier"}
