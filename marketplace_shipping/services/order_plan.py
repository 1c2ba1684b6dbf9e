"""
Order Plan Builder

Re-derives seller groups for a placed Shopify order and decides which
courier each group is booked with.

Shipping selection precedence:
    1. Manual override (courier company + type) from the caller
    2. The order's shipping line code: BSH_<COURIER>_<SERVICE>, or
       BSH_MULTI_CHEAPEST meaning cheapest per seller
    3. None: cheapest live re-quote per seller group
"""
import logging
from typing import Any, Dict, List, NamedTuple, Optional

from marketplace_shipping.core.exceptions import ResolutionGap, ShippingValidationError, UpstreamError
from marketplace_shipping.core.utils import (
    normalize_postal_code,
    round_half_up,
    strip_empty,
    to_finite_number,
    to_number,
    to_positive_int,
    truthy,
)
from marketplace_shipping.modules.shipping.providers.base import CourierRateProvider
from marketplace_shipping.modules.shipping.types import (
    FALLBACK_SERVICE_CODE,
    SERVICE_CODE_PREFIX,
    CourierSelection,
    Destination,
    ManualOverride,
    OrderPlan,
    PlannedGroup,
    SellerOrigin,
    ShippingSelection,
    VariantMapping,
)
from marketplace_shipping.services.origin_resolver import SellerOriginResolver
from marketplace_shipping.services.rate_aggregator import item_variant_id

logger = logging.getLogger(__name__)


class ParsedServiceCode(NamedTuple):
    is_mixed_fallback: bool
    courier_company: str = ""
    courier_type: str = ""


def parse_courier_from_service_code(code: Any) -> Optional[ParsedServiceCode]:
    """
    Courier/service from a checkout service code.

    The courier is everything up to the first underscore after the prefix:
    BSH_JNE_REG -> (jne, reg), BSH_SICEPAT_BEST_PLUS -> (sicepat, best_plus).
    """
    normalized = str(code or "").strip().upper()
    if not normalized.startswith(SERVICE_CODE_PREFIX):
        return None
    if normalized == FALLBACK_SERVICE_CODE:
        return ParsedServiceCode(is_mixed_fallback=True)

    rest = normalized[len(SERVICE_CODE_PREFIX):]
    separator = rest.find("_")
    if separator < 1 or separator >= len(rest) - 1:
        return None
    return ParsedServiceCode(
        is_mixed_fallback=False,
        courier_company=rest[:separator].lower(),
        courier_type=rest[separator + 1:].lower(),
    )


def fulfillable_quantity(line_item: Dict[str, Any]) -> int:
    return to_positive_int(line_item.get("fulfillable_quantity"), 0) or to_positive_int(line_item.get("quantity"), 0)


def is_shippable_line_item(line_item: Any) -> bool:
    if not isinstance(line_item, dict):
        return False
    requires_shipping = line_item.get("requires_shipping")
    if requires_shipping is not None and not truthy(requires_shipping):
        return False
    return fulfillable_quantity(line_item) > 0


def build_address(address: Dict[str, Any]) -> str:
    parts = [
        address.get("address1"),
        address.get("address2"),
        address.get("district"),
        address.get("city"),
        address.get("province"),
        address.get("country"),
    ]
    return ", ".join(str(part).strip() for part in parts if part and str(part).strip())


def resolve_shipping_selection(order: Dict[str, Any], override: Optional[ManualOverride] = None) -> ShippingSelection:
    if override is not None and override.is_set:
        return ShippingSelection(
            source="manual_override",
            title="Manual override",
            courier_company=override.courier_company.strip().lower(),
            courier_type=override.courier_type.strip().lower(),
        )

    for line in order.get("shipping_lines") or []:
        if not isinstance(line, dict):
            continue
        raw_code = line.get("code") or line.get("source") or line.get("carrier_identifier") or ""
        parsed = parse_courier_from_service_code(raw_code)
        if parsed is None:
            continue
        return ShippingSelection(
            source="shopify_shipping_line",
            title=line.get("title") or "",
            service_code=str(raw_code),
            courier_company=parsed.courier_company,
            courier_type=parsed.courier_type,
            is_mixed_fallback=parsed.is_mixed_fallback,
        )

    return ShippingSelection(source="none")


class OrderPlanBuilder:
    def __init__(
        self,
        resolver: SellerOriginResolver,
        courier_provider: CourierRateProvider,
        settings=None,
    ):
        if settings is None:
            from marketplace_shipping.core.config import settings
        self.settings = settings
        self.resolver = resolver
        self.courier_provider = courier_provider

    def extract_destination(self, order: Dict[str, Any]) -> Destination:
        address = order.get("shipping_address") or {}
        customer = order.get("customer") or {}
        billing = order.get("billing_address") or {}

        full_name = " ".join(part for part in (address.get("first_name"), address.get("last_name")) if part).strip()
        phone = address.get("phone") or order.get("phone") or customer.get("phone") or billing.get("phone") or ""

        return Destination(
            name=address.get("name") or full_name or customer.get("first_name") or "Customer",
            phone=str(phone).strip(),
            email=order.get("contact_email") or order.get("email") or customer.get("email") or "",
            postal_code=normalize_postal_code(
                address.get("zip") or address.get("postal_code"), self.settings.POSTAL_CODE_LENGTH
            ),
            address=build_address(address),
            latitude=to_finite_number(address.get("latitude")),
            longitude=to_finite_number(address.get("longitude")),
            city=address.get("city") or "",
            province=address.get("province") or "",
            country=address.get("country_code") or address.get("country") or self.settings.DEFAULT_ORIGIN_COUNTRY,
        )

    def build_booking_item(self, line_item: Dict[str, Any], mapping: Optional[VariantMapping]) -> Dict[str, Any]:
        """Biteship item from an order line (price already in major units)."""
        grams = (
            to_positive_int(line_item.get("grams"), 0)
            or to_positive_int(mapping.weight_grams if mapping else 0, 0)
            or self.settings.SHIPPING_DEFAULT_ITEM_WEIGHT_GRAMS
        )
        return strip_empty({
            "name": line_item.get("name") or line_item.get("title") or line_item.get("sku") or "Product",
            "description": line_item.get("sku") or line_item.get("vendor") or "",
            "value": max(1, round_half_up(to_number(line_item.get("price")))),
            "quantity": fulfillable_quantity(line_item),
            "weight": grams,
            "length": (mapping.length_cm if mapping else 0) or None,
            "width": (mapping.width_cm if mapping else 0) or None,
            "height": (mapping.height_cm if mapping else 0) or None,
        })

    async def requote_cheapest(self, seller_id: str, origin: SellerOrigin, items: List[Dict[str, Any]], destination: Destination) -> CourierSelection:
        rates = await self.courier_provider.get_rates(
            items=items,
            origin_postal_code=origin.postal_code,
            destination_postal_code=destination.postal_code,
            origin_latitude=origin.latitude,
            origin_longitude=origin.longitude,
            destination_latitude=destination.latitude,
            destination_longitude=destination.longitude,
        )
        if not rates:
            raise ResolutionGap(
                f"No available Biteship rate for seller {seller_id} "
                f"(origin {origin.postal_code or '-'}, destination {destination.postal_code or '-'})"
            )
        cheapest = min(rates, key=lambda rate: rate.price)
        return CourierSelection(
            courier_company=cheapest.courier_code.lower(),
            courier_type=cheapest.service_code.lower(),
            source="cheapest_requote",
            preview_price=cheapest.price,
        )

    async def build_plan(self, order: Dict[str, Any], override: Optional[ManualOverride] = None) -> OrderPlan:
        """
        Raises:
            ShippingValidationError: no destination postal code, no shippable
                lines, no variant ids, or no seller group left after resolution
        """
        destination = self.extract_destination(order)
        if not destination.postal_code:
            raise ShippingValidationError("Order destination postal code is required")

        line_items = [item for item in order.get("line_items") or [] if is_shippable_line_item(item)]
        if not line_items:
            raise ShippingValidationError("Order has no shippable fulfillable line items")

        variant_ids = list(dict.fromkeys(vid for vid in (item_variant_id(item) for item in line_items) if vid))
        if not variant_ids:
            raise ShippingValidationError("Order line items do not contain variant IDs")

        mappings: Dict[str, VariantMapping] = {}
        for variant_id in variant_ids:
            try:
                mappings[variant_id] = await self.resolver.resolve_variant(variant_id)
            except (ResolutionGap, UpstreamError) as e:
                logger.warning(f"[PLAN] Order {order.get('id')}: variant {variant_id} unresolved: {e.message}")

        skipped_items: List[Dict[str, Any]] = []
        grouped: Dict[str, Dict[str, Any]] = {}
        unresolved_sellers = set()

        for line_item in line_items:
            variant_id = item_variant_id(line_item)
            mapping = mappings.get(variant_id)
            if mapping is None:
                skipped_items.append({
                    "line_item_id": str(line_item.get("id") or ""),
                    "variant_id": variant_id,
                    "reason": "variant_mapping_not_found",
                })
                continue

            seller_id = mapping.seller_id
            if seller_id in unresolved_sellers:
                continue
            if seller_id not in grouped:
                try:
                    origin = await self.resolver.resolve_origin(seller_id)
                except (ResolutionGap, UpstreamError) as e:
                    logger.warning(f"[PLAN] Order {order.get('id')}: origin for seller {seller_id} unresolved: {e.message}")
                    origin = None
                if origin is None or not origin.postal_code:
                    unresolved_sellers.add(seller_id)
                    skipped_items.append({"seller_id": seller_id, "reason": "seller_origin_not_found"})
                    continue
                grouped[seller_id] = {"origin": origin, "items": [], "line_items": []}

            group = grouped[seller_id]
            group["items"].append(self.build_booking_item(line_item, mapping))
            group["line_items"].append({
                "line_item_id": str(line_item.get("id") or ""),
                "variant_id": variant_id,
                "quantity": fulfillable_quantity(line_item),
                "title": line_item.get("title") or line_item.get("name") or "",
                "sku": line_item.get("sku") or "",
            })

        selection = resolve_shipping_selection(order, override)
        planned: List[PlannedGroup] = []

        for seller_id, group in grouped.items():
            origin = group["origin"]
            identity = await self.resolver.resolve_seller_identity(seller_id, origin)
            planned_group = PlannedGroup(
                seller_id=seller_id,
                origin=origin,
                identity=identity,
                items=group["items"],
                line_items=group["line_items"],
                shipping_service_code=selection.service_code,
            )

            if selection.has_courier:
                planned_group.courier_selection = CourierSelection(
                    courier_company=selection.courier_company,
                    courier_type=selection.courier_type,
                    source=selection.source,
                )
            else:
                try:
                    planned_group.courier_selection = await self.requote_cheapest(
                        seller_id, origin, group["items"], destination
                    )
                except (ResolutionGap, UpstreamError) as e:
                    logger.warning(f"[PLAN] Order {order.get('id')}: re-quote failed for seller {seller_id}: {e.message}")
                    planned_group.selection_error = e.message

            planned.append(planned_group)

        if not planned:
            raise ShippingValidationError(
                "No valid seller group found for this order",
                details={"skipped_items": skipped_items},
            )

        return OrderPlan(
            order={
                "id": str(order.get("id")),
                "name": order.get("name") or "",
                "currency": order.get("currency") or self.settings.SHIPPING_CURRENCY,
                "financial_status": order.get("financial_status") or "",
                "fulfillment_status": order.get("fulfillment_status") or "",
                "created_at": order.get("created_at"),
                "total_price": order.get("total_price") or "0",
            },
            destination=destination,
            selected_shipping=selection,
            seller_groups=planned,
            skipped_items=skipped_items,
        )
