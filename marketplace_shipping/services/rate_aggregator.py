"""
Multi-Seller Rate Aggregation Service

Turns a Shopify carrier-service rate request into checkout rates:
- Group cart items by seller origin (variant -> seller -> origin)
- One concurrent Biteship rate request per seller group
- Dedupe per group by (courier, service), keeping the cheaper quote
- Combine courier/service pairs offered to every group (prices summed,
  slowest leg bounds the delivery window)
- Fall back to a single "mixed cheapest" rate when no pair is common
- Handling fee, free-shipping threshold, sort, cap, minor units, cache

Usage:
    service = ShippingService(resolver, biteship, rate_cache, quote_log)
    result = await service.calculate_quote(request_body["rate"])
"""
import asyncio
import logging
import re
import secrets
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from marketplace_shipping.core.cache import TTLCache
from marketplace_shipping.core.exceptions import QuoteFailedError, ResolutionGap, UpstreamError
from marketplace_shipping.core.utils import (
    from_minor_units,
    iso_days_from_now,
    normalize_postal_code,
    round_half_up,
    sha256_hex,
    stable_stringify,
    to_finite_number,
    to_minor_units,
    to_number,
    to_positive_int,
    truthy,
)
from marketplace_shipping.modules.shipping.providers.base import CourierRateProvider
from marketplace_shipping.modules.shipping.types import (
    FALLBACK_SERVICE_CODE,
    SERVICE_CODE_PREFIX,
    AggregatedRate,
    QuoteResult,
    RateQuote,
    SellerGroup,
    SellerOrigin,
    VariantMapping,
)
from marketplace_shipping.services.origin_resolver import SellerOriginResolver
from marketplace_shipping.services.stores import QuoteLogStore

logger = logging.getLogger(__name__)

MAX_SERVICE_CODE_LENGTH = 60
_UNSAFE_CODE_CHARS = re.compile(r"[^A-Z0-9_]")


# =============================================================================
# Pure helpers
# =============================================================================

def sanitize_service_code(raw: str) -> str:
    """Checkout-safe token: [A-Z0-9_], at most 60 chars."""
    return _UNSAFE_CODE_CHARS.sub("_", str(raw or "RATE").upper())[:MAX_SERVICE_CODE_LENGTH]


def is_shippable(item: Dict[str, Any]) -> bool:
    value = item.get("requires_shipping")
    if value is None:
        return True
    return truthy(value)


def item_variant_id(item: Dict[str, Any]) -> str:
    variant_id = item.get("variant_id")
    if variant_id is None or variant_id == "":
        variant_id = item.get("variantId")
    if variant_id is None or variant_id == "":
        return ""
    return str(variant_id)


def dedupe_rates(rates: List[RateQuote]) -> Dict[Tuple[str, str], RateQuote]:
    """Lowest price per (courier, service); first-seen order is kept."""
    by_key: Dict[Tuple[str, str], RateQuote] = {}
    for rate in rates:
        existing = by_key.get(rate.key)
        if existing is None or rate.price < existing.price:
            by_key[rate.key] = rate
    return by_key


def last_named(legs: List[RateQuote], attr: str, default: str) -> str:
    """Last non-blank name across legs; a blank leg does not erase an earlier one."""
    for leg in reversed(legs):
        if getattr(leg, attr):
            return getattr(leg, attr)
    return default


def aggregate_group_rates(
    group_rates: List[List[RateQuote]],
    subtotal: float = 0.0,
    handling_fee: float = 0.0,
    free_threshold: float = 0.0,
) -> List[AggregatedRate]:
    """
    Combine per-group quotes into whole-cart rates.

    Every common (courier, service) key yields one rate whose price is the
    sum across groups. With no common key, a single fallback rate sums each
    group's cheapest quote; if any group has no quote at all, nothing is
    returned. Prices are in major units; the order is unsorted.
    """
    if not group_rates:
        return []

    handling_fee = max(0.0, handling_fee or 0.0)
    free_threshold = max(0.0, free_threshold or 0.0)
    free_shipping = free_threshold > 0 and subtotal >= free_threshold

    deduped = [dedupe_rates(rates) for rates in group_rates]

    common_keys = list(deduped[0].keys())
    for by_key in deduped[1:]:
        common_keys = [key for key in common_keys if key in by_key]

    aggregated: List[AggregatedRate] = []
    for key in common_keys:
        legs = [by_key[key] for by_key in deduped]
        total = sum(leg.price for leg in legs) + handling_fee
        last = legs[-1]
        aggregated.append(AggregatedRate(
            service_code=sanitize_service_code(f"{SERVICE_CODE_PREFIX}{last.courier_code}_{last.service_code}"),
            courier_code=last.courier_code,
            courier_name=last_named(legs, "courier_name", "Biteship"),
            service_name=last_named(legs, "service_name", "Regular"),
            total_price=0.0 if free_shipping else total,
            min_day=max(leg.min_day or 0 for leg in legs),
            max_day=max(leg.max_day or 0 for leg in legs),
        ))

    if aggregated:
        return aggregated

    cheapest: List[RateQuote] = []
    for by_key in deduped:
        if not by_key:
            return []
        cheapest.append(min(by_key.values(), key=lambda rate: rate.price))

    total = sum(leg.price for leg in cheapest) + handling_fee
    return [AggregatedRate(
        service_code=FALLBACK_SERVICE_CODE,
        courier_code="mixed",
        courier_name="Mixed",
        service_name="Cheapest",
        total_price=0.0 if free_shipping else total,
        min_day=max(leg.min_day or 0 for leg in cheapest),
        max_day=max(leg.max_day or 0 for leg in cheapest),
        is_fallback=True,
    )]


class ShippingService:
    """
    Checkout-time quote calculation.

    Upstream failures during the rate fan-out return an empty rate list
    (checkout fails open) unless QUOTE_FAIL_CLOSED is set.
    """

    def __init__(
        self,
        resolver: SellerOriginResolver,
        courier_provider: CourierRateProvider,
        rate_cache: TTLCache,
        quote_log: Optional[QuoteLogStore] = None,
        settings=None,
    ):
        if settings is None:
            from marketplace_shipping.core.config import settings
        self.settings = settings
        self.resolver = resolver
        self.courier_provider = courier_provider
        self.rate_cache = rate_cache
        self.quote_log = quote_log

    # =========================================================================
    # Request normalization
    # =========================================================================

    def _destination(self, payload: Dict[str, Any]) -> Tuple[str, Optional[float], Optional[float]]:
        destination = payload.get("destination") if isinstance(payload.get("destination"), dict) else {}
        postal_code = normalize_postal_code(
            destination.get("postal_code") or destination.get("zip") or destination.get("postalCode"),
            self.settings.POSTAL_CODE_LENGTH,
        )
        return (
            postal_code,
            to_finite_number(destination.get("latitude")),
            to_finite_number(destination.get("longitude")),
        )

    def build_cache_key(self, payload: Dict[str, Any]) -> str:
        postal_code, latitude, longitude = self._destination(payload)
        items = payload.get("items") if isinstance(payload.get("items"), list) else []
        normalized = sorted(
            (
                {
                    "variant_id": item_variant_id(item),
                    "quantity": to_positive_int(item.get("quantity"), 1),
                    "grams": to_positive_int(item.get("grams"), 0),
                    "price": to_positive_int(item.get("price"), 0),
                    "requires_shipping": truthy(item.get("requires_shipping")),
                }
                for item in items
                if isinstance(item, dict)
            ),
            key=lambda entry: entry["variant_id"],
        )
        return sha256_hex(stable_stringify({
            "destination_postal_code": postal_code,
            "destination_latitude": latitude,
            "destination_longitude": longitude,
            "currency": payload.get("currency") or self.settings.SHIPPING_CURRENCY,
            "couriers": list(self.settings.BITESHIP_COURIERS),
            "items": normalized,
        }))

    def build_rate_item(self, item: Dict[str, Any], mapping: Optional[VariantMapping]) -> Dict[str, Any]:
        """Biteship item from a cart line (price in storefront subunits)."""
        grams = (
            to_positive_int(item.get("grams"), 0)
            or to_positive_int(mapping.weight_grams if mapping else 0, 0)
            or self.settings.SHIPPING_DEFAULT_ITEM_WEIGHT_GRAMS
        )
        payload: Dict[str, Any] = {
            "name": item.get("name") or item.get("sku") or "Product",
            "value": max(1, round_half_up(from_minor_units(item.get("price")))),
            "weight": grams,
            "quantity": to_positive_int(item.get("quantity"), 1),
        }

        dimensions = {
            "length": to_number(item.get("length")) or (mapping.length_cm if mapping else 0),
            "width": to_number(item.get("width")) or (mapping.width_cm if mapping else 0),
            "height": to_number(item.get("height")) or (mapping.height_cm if mapping else 0),
        }
        payload.update({name: value for name, value in dimensions.items() if value > 0})

        if item.get("description"):
            payload["description"] = str(item["description"])
        return payload

    def to_checkout_rate(self, rate: AggregatedRate, currency: str, group_count: int) -> Dict[str, Any]:
        prefix = self.settings.SHIPPING_SERVICE_NAME_PREFIX
        if rate.is_fallback:
            service_name = f"{prefix} Multi Seller (Cheapest)"
            description = f"Cheapest mixed courier ({group_count} origin seller)"
        else:
            service_name = f"{prefix} {rate.courier_name} {rate.service_name}"
            description = f"Biteship {rate.courier_name} {rate.service_name} ({group_count} origin seller)"

        checkout_rate = {
            "service_name": service_name,
            "service_code": rate.service_code,
            "total_price": str(to_minor_units(rate.total_price)),
            "currency": currency,
            "description": description,
            "phone_required": self.settings.SHOPIFY_PHONE_REQUIRED,
        }
        min_date = iso_days_from_now(rate.min_day)
        max_date = iso_days_from_now(rate.max_day)
        if min_date:
            checkout_rate["min_delivery_date"] = min_date
        if max_date:
            checkout_rate["max_delivery_date"] = max_date
        return checkout_rate

    # =========================================================================
    # Resolution
    # =========================================================================

    async def _resolve_variants(self, variant_ids: List[str]) -> Dict[str, VariantMapping]:
        mappings: Dict[str, VariantMapping] = {}
        for variant_id in variant_ids:
            try:
                mappings[variant_id] = await self.resolver.resolve_variant(variant_id)
            except (ResolutionGap, UpstreamError) as e:
                logger.warning(f"[QUOTE] Variant {variant_id} unresolved: {e.message}")
        return mappings

    async def _resolve_origins(self, seller_ids: List[str]) -> Dict[str, SellerOrigin]:
        origins: Dict[str, SellerOrigin] = {}
        for seller_id in seller_ids:
            try:
                origins[seller_id] = await self.resolver.resolve_origin(seller_id)
            except (ResolutionGap, UpstreamError) as e:
                logger.warning(f"[QUOTE] Origin for seller {seller_id} unresolved: {e.message}")
        return origins

    # =========================================================================
    # Quote
    # =========================================================================

    async def calculate_quote(self, payload: Any) -> QuoteResult:
        quote_id = f"qt_{secrets.token_hex(5)}"
        try:
            return await self._calculate(quote_id, payload)
        except UpstreamError as e:
            logger.error(f"[QUOTE] {quote_id} failed upstream: {e.message} (status={e.status})")
            return self._quote_failure(quote_id, "upstream_error", e.message, e, e.details)
        except Exception as e:
            # Store or resolver failures obey the same fail-open/fail-closed switch
            logger.exception(f"[QUOTE] {quote_id} failed: {e}")
            return self._quote_failure(
                quote_id, "internal_error", str(e) or type(e).__name__, e, {"error_type": type(e).__name__}
            )

    def _quote_failure(
        self,
        quote_id: str,
        reason: str,
        message: str,
        error: Exception,
        details: Dict[str, Any],
    ) -> QuoteResult:
        if self.settings.QUOTE_FAIL_CLOSED:
            raise QuoteFailedError(
                f"Quote {quote_id} failed: {message}",
                details={"quote_id": quote_id, **details},
            ) from error
        return QuoteResult(rates=[], debug={
            "quote_id": quote_id,
            "reason": reason,
            "error": message,
        })

    async def _calculate(self, quote_id: str, payload: Any) -> QuoteResult:
        if not isinstance(payload, dict):
            return QuoteResult(rates=[], debug={"quote_id": quote_id, "reason": "invalid_payload"})

        items = payload.get("items") if isinstance(payload.get("items"), list) else []
        shippable = [item for item in items if isinstance(item, dict) and is_shippable(item)]
        if not shippable:
            return QuoteResult(rates=[], debug={"quote_id": quote_id, "reason": "no_shippable_items"})

        postal_code, latitude, longitude = self._destination(payload)
        has_coordinates = latitude is not None and longitude is not None
        if not postal_code and not has_coordinates:
            return QuoteResult(rates=[], debug={"quote_id": quote_id, "reason": "missing_destination_location"})

        logger.info(
            f"[QUOTE] {quote_id}: destination={postal_code or '-'} "
            f"coords={latitude},{longitude} items={len(shippable)}"
        )

        cache_key = self.build_cache_key(payload)
        cached = self.rate_cache.get(cache_key)
        if cached is not None:
            logger.info(f"[QUOTE] {quote_id}: rate cache hit")
            return QuoteResult(rates=cached, debug={"quote_id": quote_id, "source": "rate_cache"})

        variant_ids = list(dict.fromkeys(vid for vid in (item_variant_id(item) for item in shippable) if vid))
        if not variant_ids:
            return QuoteResult(rates=[], debug={"quote_id": quote_id, "reason": "missing_variant_ids"})

        mappings = await self._resolve_variants(variant_ids)
        seller_ids = list(dict.fromkeys(mapping.seller_id for mapping in mappings.values()))
        origins = await self._resolve_origins(seller_ids)

        groups: Dict[str, SellerGroup] = {}
        skipped_items: List[Dict[str, Any]] = []
        for item in shippable:
            variant_id = item_variant_id(item)
            mapping = mappings.get(variant_id)
            if mapping is None:
                skipped_items.append({"variant_id": variant_id, "reason": "variant_mapping_not_found"})
                continue

            origin = origins.get(mapping.seller_id)
            if origin is None or not origin.is_routable:
                skipped_items.append({
                    "variant_id": variant_id,
                    "seller_id": mapping.seller_id,
                    "reason": "seller_origin_not_found",
                })
                continue

            group = groups.get(mapping.seller_id)
            if group is None:
                group = groups[mapping.seller_id] = SellerGroup(seller_id=mapping.seller_id, origin=origin)
            group.items.append(self.build_rate_item(item, mapping))

        seller_groups = list(groups.values())
        if not seller_groups:
            return QuoteResult(rates=[], debug={
                "quote_id": quote_id,
                "reason": "no_valid_seller_groups",
                "skipped_items": skipped_items,
            })

        group_rates = await asyncio.gather(*[
            self.courier_provider.get_rates(
                items=group.items,
                origin_postal_code=group.origin.postal_code,
                destination_postal_code=postal_code,
                origin_latitude=group.origin.latitude,
                origin_longitude=group.origin.longitude,
                destination_latitude=latitude,
                destination_longitude=longitude,
            )
            for group in seller_groups
        ])

        subtotal = sum(
            from_minor_units(item.get("price")) * to_positive_int(item.get("quantity"), 1)
            for item in shippable
        )

        aggregated = aggregate_group_rates(
            list(group_rates),
            subtotal=subtotal,
            handling_fee=self.settings.SHIPPING_HANDLING_FEE,
            free_threshold=self.settings.SHIPPING_FREE_THRESHOLD,
        )
        aggregated.sort(key=lambda rate: rate.total_price)
        aggregated = aggregated[: self.settings.SHIPPING_MAX_RATES]

        currency = payload.get("currency") or self.settings.SHIPPING_CURRENCY
        rates = [self.to_checkout_rate(rate, currency, len(seller_groups)) for rate in aggregated]

        self.rate_cache.set(cache_key, rates, self.settings.RATE_CACHE_TTL_SECONDS)
        logger.info(
            f"[QUOTE] {quote_id}: {len(rates)} rates for {len(seller_groups)} seller groups "
            f"({len(skipped_items)} items skipped)"
        )

        debug = {
            "quote_id": quote_id,
            "source": "live",
            "destination_postal_code": postal_code,
            "destination_latitude": latitude,
            "destination_longitude": longitude,
            "subtotal": subtotal,
            "seller_groups": [
                {
                    "seller_id": group.seller_id,
                    "origin_postal_code": group.origin.postal_code,
                    "origin_latitude": group.origin.latitude,
                    "origin_longitude": group.origin.longitude,
                    "origin_source": group.origin.source.value,
                    "item_count": len(group.items),
                }
                for group in seller_groups
            ],
            "skipped_items": skipped_items,
        }
        await self._log_quote(quote_id, payload, rates, debug)
        return QuoteResult(rates=rates, debug=debug)

    async def _log_quote(self, quote_id: str, payload: Dict[str, Any], rates: List[Dict[str, Any]], debug: Dict[str, Any]) -> None:
        if self.quote_log is None:
            return
        try:
            await self.quote_log.append({"request": payload, "rates": rates, "debug": debug}, quote_id=quote_id)
        except SQLAlchemyError as e:
            logger.error(f"[QUOTE] {quote_id}: audit log write failed: {e}")
