"""
Fulfillment Allocator

Maps requested (line item, quantity) pairs onto Shopify fulfillment-order
line items. Candidates are consumed greedily in listing order and remaining
quantities carry over between allocate() calls, so one allocator is shared
by every seller group of a sync run.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List

from marketplace_shipping.core.utils import to_positive_int


@dataclass
class _Candidate:
    fulfillment_order_id: str
    fulfillment_order_line_item_id: str
    remaining: int


@dataclass
class Allocation:
    line_items_by_fulfillment_order: List[Dict[str, Any]] = field(default_factory=list)
    unallocated: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.line_items_by_fulfillment_order


class FulfillmentAllocator:
    def __init__(self, fulfillment_orders: List[Dict[str, Any]]):
        self._by_line_item: Dict[str, List[_Candidate]] = {}

        for fulfillment_order in fulfillment_orders or []:
            fulfillment_order_id = str(fulfillment_order.get("id") or "")
            for line_item in fulfillment_order.get("line_items") or []:
                line_item_id = str(line_item.get("line_item_id") or "")
                if not line_item_id:
                    continue
                remaining = to_positive_int(
                    line_item.get("fulfillable_quantity"),
                    to_positive_int(line_item.get("quantity"), 0),
                )
                self._by_line_item.setdefault(line_item_id, []).append(_Candidate(
                    fulfillment_order_id=fulfillment_order_id,
                    fulfillment_order_line_item_id=str(line_item.get("id") or ""),
                    remaining=remaining,
                ))

    def remaining(self, line_item_id: str) -> int:
        return sum(candidate.remaining for candidate in self._by_line_item.get(str(line_item_id), []))

    def allocate(self, requests: List[Dict[str, Any]]) -> Allocation:
        """
        Args:
            requests: [{"line_item_id": ..., "quantity": ...}]

        Returns:
            Allocation with Shopify's line_items_by_fulfillment_order shape
            and whatever could not be placed.
        """
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        unallocated: List[Dict[str, Any]] = []

        for request in requests:
            line_item_id = str(request.get("line_item_id") or "")
            wanted = to_positive_int(request.get("quantity"), 0)
            if not line_item_id or wanted <= 0:
                continue

            for candidate in self._by_line_item.get(line_item_id, []):
                if wanted <= 0:
                    break
                take = min(wanted, candidate.remaining)
                if take <= 0:
                    continue
                candidate.remaining -= take
                wanted -= take
                grouped.setdefault(candidate.fulfillment_order_id, []).append({
                    "id": candidate.fulfillment_order_line_item_id,
                    "quantity": take,
                })

            if wanted > 0:
                unallocated.append({"line_item_id": line_item_id, "quantity": wanted})

        return Allocation(
            line_items_by_fulfillment_order=[
                {"fulfillment_order_id": fo_id, "fulfillment_order_line_items": items}
                for fo_id, items in grouped.items()
            ],
            unallocated=unallocated,
        )
