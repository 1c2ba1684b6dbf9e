import pytest
from sqlalchemy.exc import IntegrityError

from marketplace_shipping.modules.shipping.types import OrderSyncRecord, OriginSource, SellerOrigin, Shipment


@pytest.mark.asyncio
async def test_seller_origin_upsert_and_list(origin_store):
    origin = SellerOrigin(seller_id="42", postal_code="12190", city="Jakarta", contact_phone="0811")
    saved = await origin_store.upsert(origin, source="flow_webhook")
    assert saved.source == OriginSource.PERSISTED

    await origin_store.upsert(SellerOrigin(seller_id="42", postal_code="40111", city="Bandung"))
    loaded = await origin_store.get("42")

    assert loaded.postal_code == "40111"
    assert loaded.city == "Bandung"
    assert loaded.source == OriginSource.PERSISTED
    assert [o.seller_id for o in await origin_store.list()] == ["42"]
    assert await origin_store.get("missing") is None


@pytest.mark.asyncio
async def test_order_sync_record_preserves_created_at(sync_store):
    record = OrderSyncRecord(order_id="5001", status="processing", order_name="#1001")
    first = await sync_store.save_record(record)
    created_at = first.created_at

    record.status = "completed"
    record.shipments.append(Shipment(seller_id="A", status="created", booking_id="bk_1"))
    second = await sync_store.save_record(record)

    loaded = await sync_store.get("5001")
    assert second.created_at == created_at
    assert loaded.created_at == created_at
    assert loaded.status == "completed"
    assert loaded.shipments[0].booking_id == "bk_1"
    assert loaded.shipments[0].is_created


@pytest.mark.asyncio
async def test_order_sync_list_is_newest_first(sync_store):
    await sync_store.save_record(OrderSyncRecord(order_id="1", status="completed"))
    await sync_store.save_record(OrderSyncRecord(order_id="2", status="completed"))
    await sync_store.save_record(OrderSyncRecord(order_id="1", status="partial_failed"))

    records = await sync_store.list(limit=10)
    assert [r.order_id for r in records] == ["1", "2"]


@pytest.mark.asyncio
async def test_quote_log_is_trimmed_to_max_entries(quote_log):
    for index in range(5):
        await quote_log.append({"n": index}, quote_id=f"qt_{index}")

    entries = await quote_log.list(limit=10)
    assert [entry["quote_id"] for entry in entries] == ["qt_4", "qt_3", "qt_2"]
    assert await quote_log.get("qt_0") is None
    assert (await quote_log.get("qt_4"))["payload"] == {"n": 4}


@pytest.mark.asyncio
async def test_failed_write_leaves_prior_state(quote_log):
    await quote_log.append({"n": 1}, quote_id="qt_dup")
    with pytest.raises(IntegrityError):
        await quote_log.append({"n": 2}, quote_id="qt_dup")

    entries = await quote_log.list()
    assert len(entries) == 1
    assert entries[0]["payload"] == {"n": 1}


@pytest.mark.asyncio
async def test_token_store_round_trip(token_store):
    assert await token_store.load("webkul") is None

    await token_store.save("webkul", "access-1", "refresh-1")
    await token_store.save("webkul", "access-2", "refresh-2")

    stored = await token_store.load("webkul")
    assert stored["access_token"] == "access-2"
    assert stored["refresh_token"] == "refresh-2"
