import pytest

from marketplace_shipping.core.exceptions import ShippingValidationError
from marketplace_shipping.modules.shipping.types import ManualOverride
from marketplace_shipping.services.order_plan import (
    OrderPlanBuilder,
    build_address,
    parse_courier_from_service_code,
    resolve_shipping_selection,
)
from tests.helpers import ORDER, FakeCourierProvider, make_settings, order, rate


def make_builder(resolver, courier=None, **overrides):
    return OrderPlanBuilder(resolver, courier or FakeCourierProvider(), settings=make_settings(**overrides))


@pytest.mark.parametrize("code, expected", [
    ("BSH_JNE_REG", (False, "jne", "reg")),
    ("bsh_sicepat_best_plus", (False, "sicepat", "best_plus")),
    ("BSH_MULTI_CHEAPEST", (True, "", "")),
])
def test_parse_courier_from_service_code(code, expected):
    assert tuple(parse_courier_from_service_code(code)) == expected


@pytest.mark.parametrize("code", ["", "FREE_SHIPPING", "BSH_JNE", "BSH__REG"])
def test_unparseable_service_codes(code):
    assert parse_courier_from_service_code(code) is None


def test_manual_override_takes_precedence_over_shipping_line():
    selection = resolve_shipping_selection(order(), ManualOverride(courier_company=" SiCepat ", courier_type="BEST"))
    assert selection.source == "manual_override"
    assert (selection.courier_company, selection.courier_type) == ("sicepat", "best")


def test_incomplete_override_is_ignored():
    selection = resolve_shipping_selection(order(), ManualOverride(courier_company="jne"))
    assert selection.source == "shopify_shipping_line"
    assert selection.service_code == "BSH_JNE_REG"


def test_no_shipping_line_means_no_selection():
    assert resolve_shipping_selection(order(shipping_lines=[{"code": "Standard"}])).source == "none"


def test_build_address_skips_blank_parts():
    assert build_address({"address1": "Jl. A", "address2": " ", "city": "Bandung", "country": "ID"}) == "Jl. A, Bandung, ID"


def test_destination_fallbacks(resolver):
    builder = make_builder(resolver)
    address = dict(ORDER["shipping_address"], phone="", first_name="", last_name="")

    destination = builder.extract_destination(order(shipping_address=address, email=""))

    assert destination.phone == "0812000111"
    assert destination.email == "customer@example.com"
    assert destination.name == "Budi"
    assert destination.postal_code == "10110"
    assert destination.address == "Jl. Melati 5, Jakarta Pusat, DKI Jakarta, Indonesia"


def test_booking_item_uses_major_unit_price(resolver):
    builder = make_builder(resolver)

    item = builder.build_booking_item(ORDER["line_items"][1], None)

    assert item == {
        "name": "Comic B",
        "description": "SKU-B",
        "value": 75001,
        "quantity": 1,
        "weight": 800,
    }


@pytest.mark.asyncio
async def test_plan_groups_line_items_by_seller_with_shipping_line_courier(resolver):
    courier = FakeCourierProvider()
    builder = make_builder(resolver, courier)

    plan = await builder.build_plan(order())

    assert [g.seller_id for g in plan.seller_groups] == ["A", "B"]
    group_a = plan.seller_groups[0]
    assert group_a.origin.postal_code == "12190"
    assert group_a.identity.name == "Toko A"
    assert group_a.line_items == [
        {"line_item_id": "501", "variant_id": "1001", "quantity": 2, "title": "Comic A", "sku": "SKU-A"},
    ]
    assert group_a.courier_selection.courier_company == "jne"
    assert group_a.courier_selection.source == "shopify_shipping_line"
    assert group_a.shipping_service_code == "BSH_JNE_REG"
    assert plan.order["id"] == "5001"
    assert courier.rate_calls == []


@pytest.mark.asyncio
async def test_mixed_cheapest_requotes_each_group(resolver):
    courier = FakeCourierProvider({
        "12190": [rate("jne", "reg", 22000), rate("sicepat", "best", 19000)],
        "60111": [rate("ide", "std", 15000), rate("jne", "reg", 18000)],
    })
    builder = make_builder(resolver, courier)

    plan = await builder.build_plan(order(shipping_lines=[{"title": "Cheapest", "code": "BSH_MULTI_CHEAPEST"}]))

    selections = {g.seller_id: g.courier_selection for g in plan.seller_groups}
    assert (selections["A"].courier_company, selections["A"].courier_type) == ("sicepat", "best")
    assert (selections["B"].courier_company, selections["B"].courier_type) == ("ide", "std")
    assert selections["A"].source == "cheapest_requote"
    assert plan.selected_shipping.is_mixed_fallback
    assert courier.rate_calls[0]["destination_postal_code"] == "10110"


@pytest.mark.asyncio
async def test_requote_without_rates_records_selection_error(resolver):
    courier = FakeCourierProvider({"12190": [rate("jne", "reg", 22000)]})
    builder = make_builder(resolver, courier)

    plan = await builder.build_plan(order(shipping_lines=[]))

    group_b = plan.seller_groups[1]
    assert plan.seller_groups[0].courier_selection is not None
    assert group_b.courier_selection is None
    assert "No available Biteship rate for seller B" in group_b.selection_error


@pytest.mark.asyncio
async def test_unresolved_variants_are_skipped(resolver):
    line_items = ORDER["line_items"] + [{"id": 503, "variant_id": 9999, "quantity": 1, "price": "1000"}]
    plan = await make_builder(resolver).build_plan(order(line_items=line_items))

    assert len(plan.seller_groups) == 2
    assert plan.skipped_items == [{"line_item_id": "503", "variant_id": "9999", "reason": "variant_mapping_not_found"}]


@pytest.mark.asyncio
async def test_missing_postal_code_is_rejected(resolver):
    address = dict(ORDER["shipping_address"], zip="")
    with pytest.raises(ShippingValidationError):
        await make_builder(resolver).build_plan(order(shipping_address=address))


@pytest.mark.asyncio
async def test_order_without_shippable_lines_is_rejected(resolver):
    line_items = [dict(item, requires_shipping=False) for item in ORDER["line_items"]]
    with pytest.raises(ShippingValidationError) as exc_info:
        await make_builder(resolver).build_plan(order(line_items=line_items))
    assert "shippable" in exc_info.value.message


@pytest.mark.asyncio
async def test_order_without_resolvable_sellers_is_rejected(resolver):
    line_items = [{"id": 1, "variant_id": 9999, "quantity": 1}]
    with pytest.raises(ShippingValidationError) as exc_info:
        await make_builder(resolver).build_plan(order(line_items=line_items))
    assert exc_info.value.details["skipped_items"][0]["reason"] == "variant_mapping_not_found"
