from marketplace_shipping.services.fulfillment_allocator import FulfillmentAllocator


def fulfillment_orders():
    return [
        {
            "id": 9001,
            "line_items": [
                {"id": 1, "line_item_id": 501, "fulfillable_quantity": 2, "quantity": 2},
                {"id": 2, "line_item_id": 502, "fulfillable_quantity": 1, "quantity": 1},
            ],
        },
        {
            "id": 9002,
            "line_items": [
                {"id": 3, "line_item_id": 502, "fulfillable_quantity": 2, "quantity": 2},
            ],
        },
    ]


def test_partial_request_leaves_remaining_quantity():
    allocator = FulfillmentAllocator(fulfillment_orders())

    allocation = allocator.allocate([{"line_item_id": "501", "quantity": 1}])

    assert allocation.unallocated == []
    assert allocation.line_items_by_fulfillment_order == [
        {"fulfillment_order_id": "9001", "fulfillment_order_line_items": [{"id": "1", "quantity": 1}]},
    ]
    assert allocator.remaining("501") == 1


def test_request_spills_over_candidates_in_listing_order():
    allocator = FulfillmentAllocator(fulfillment_orders())

    allocation = allocator.allocate([{"line_item_id": "502", "quantity": 3}])

    assert allocation.line_items_by_fulfillment_order == [
        {"fulfillment_order_id": "9001", "fulfillment_order_line_items": [{"id": "2", "quantity": 1}]},
        {"fulfillment_order_id": "9002", "fulfillment_order_line_items": [{"id": "3", "quantity": 2}]},
    ]
    assert allocation.unallocated == []
    assert allocator.remaining("502") == 0


def test_state_carries_across_calls_and_remainder_is_reported():
    allocator = FulfillmentAllocator(fulfillment_orders())

    first = allocator.allocate([{"line_item_id": "501", "quantity": 2}])
    second = allocator.allocate([{"line_item_id": "501", "quantity": 1}, {"line_item_id": "999", "quantity": 1}])

    assert first.unallocated == []
    assert second.is_empty
    assert second.unallocated == [
        {"line_item_id": "501", "quantity": 1},
        {"line_item_id": "999", "quantity": 1},
    ]


def test_quantity_falls_back_when_fulfillable_quantity_missing():
    allocator = FulfillmentAllocator([
        {"id": "fo1", "line_items": [{"id": "li1", "line_item_id": "700", "quantity": 3}]},
    ])
    assert allocator.remaining("700") == 3
