"""
Seller / Origin Resolver

Variant -> seller and seller -> ship-from origin for both the checkout quote
and the order sync.

Origin resolution order:
    1. Persisted override (operator-controlled, written only by origin events)
    2. In-memory seller cache
    3. Live seller directory lookup (cached, never persisted)
    4. DEFAULT_ORIGIN_POSTAL_CODE, with a logged downgrade
"""
import logging
from typing import Any, Dict, List, Optional

from marketplace_shipping.core.cache import TTLCache
from marketplace_shipping.core.exceptions import ResolutionGap, ShippingValidationError, UpstreamError
from marketplace_shipping.core.utils import first_present, normalize_postal_code, to_finite_number
from marketplace_shipping.modules.shipping.providers.base import SellerDirectoryProvider
from marketplace_shipping.modules.shipping.types import OriginSource, SellerIdentity, SellerOrigin, VariantMapping
from marketplace_shipping.services.stores import SellerOriginStore

logger = logging.getLogger(__name__)


def parse_origin_event(body: Dict[str, Any], postal_code_length: int = 5, default_country: str = "ID") -> SellerOrigin:
    """
    Normalize a seller-origin sync event (Shopify Flow / admin API).

    Fields may be top level or nested under `metaobject`, with the historical
    naming variants of each.
    """
    body = body if isinstance(body, dict) else {}
    meta = body.get("metaobject") if isinstance(body.get("metaobject"), dict) else {}
    system = meta.get("system") if isinstance(meta.get("system"), dict) else {}

    seller_id = first_present(
        body.get("seller_id"), body.get("sellerId"), body.get("id"),
        meta.get("seller_id"), meta.get("sellerId"), meta.get("webkulSellerId"), system.get("id"),
    )
    postal_code = normalize_postal_code(
        first_present(
            body.get("postal_code"), body.get("postalCode"), body.get("zipcode"), body.get("zip"),
            meta.get("postalCode"), meta.get("zipcode"), meta.get("zip"), meta.get("postal_code"),
        ),
        postal_code_length,
    )

    return SellerOrigin(
        seller_id=str(seller_id) if seller_id else "",
        postal_code=postal_code,
        city=first_present(body.get("city"), meta.get("city")),
        state=first_present(body.get("state"), body.get("province"), meta.get("state"), meta.get("province")),
        country=first_present(body.get("country"), body.get("countryCode"), meta.get("country"), default=default_country),
        address=first_present(
            body.get("address1"), body.get("store_address"), body.get("storeAddress"),
            meta.get("storeAddress"), meta.get("store_address"),
        ),
        latitude=to_finite_number(first_present(body.get("latitude"), meta.get("latitude"), default=None)),
        longitude=to_finite_number(first_present(body.get("longitude"), meta.get("longitude"), default=None)),
        contact_name=first_present(
            body.get("spStoreName"), body.get("storeName"), meta.get("spStoreName"), meta.get("storeName"),
        ),
        contact_phone=str(first_present(body.get("contact"), body.get("phone"), meta.get("contact"), meta.get("phone"))),
        contact_email=first_present(body.get("sellerEmail"), body.get("email"), meta.get("sellerEmail"), meta.get("email")),
        store_name_handle=first_present(
            body.get("storeNameHandle"), meta.get("storeNameHandle"), meta.get("store_name_handle"),
        ),
        shop_domain=first_present(body.get("spShopName"), body.get("shopDomain"), meta.get("spShopName"), meta.get("shopDomain")),
        source=OriginSource.PERSISTED,
    )


class SellerOriginResolver:
    def __init__(
        self,
        directory: SellerDirectoryProvider,
        origin_store: SellerOriginStore,
        variant_cache: TTLCache,
        seller_cache: TTLCache,
        settings=None,
    ):
        if settings is None:
            from marketplace_shipping.core.config import settings
        self.settings = settings
        self.directory = directory
        self.origin_store = origin_store
        self.variant_cache = variant_cache
        self.seller_cache = seller_cache

    async def resolve_variant(self, variant_id: str) -> VariantMapping:
        key = str(variant_id)
        cached = self.variant_cache.get(key)
        if cached is not None:
            return cached

        mapping = await self.directory.resolve_variant(key)
        self.variant_cache.set(key, mapping, self.settings.VARIANT_CACHE_TTL_SECONDS)
        logger.debug(f"[RESOLVER] Variant {key} -> seller {mapping.seller_id}")
        return mapping

    def _default_origin(self, seller_id: str) -> Optional[SellerOrigin]:
        postal_code = normalize_postal_code(
            self.settings.DEFAULT_ORIGIN_POSTAL_CODE, self.settings.POSTAL_CODE_LENGTH
        )
        if not postal_code:
            return None
        return SellerOrigin(
            seller_id=seller_id,
            postal_code=postal_code,
            country=self.settings.DEFAULT_ORIGIN_COUNTRY,
            source=OriginSource.DEFAULT,
        )

    async def resolve_origin(self, seller_id: str) -> SellerOrigin:
        key = str(seller_id)

        persisted = await self.origin_store.get(key)
        if persisted and persisted.postal_code:
            return persisted

        cached = self.seller_cache.get(key)
        if cached is not None and cached.postal_code:
            return cached.with_source(OriginSource.CACHED)

        try:
            origin = await self.directory.resolve_seller_origin(key)
        except (ResolutionGap, UpstreamError) as e:
            fallback = self._default_origin(key)
            if fallback is None:
                raise
            logger.warning(
                f"[RESOLVER] Using default origin {fallback.postal_code} for seller {key}: {e.message}"
            )
            return fallback

        # Live results are cached only; the persisted store is operator-controlled
        self.seller_cache.set(key, origin, self.settings.SELLER_CACHE_TTL_SECONDS)
        return origin.with_source(OriginSource.LIVE)

    async def resolve_seller_identity(self, seller_id: str, origin: Optional[SellerOrigin]) -> SellerIdentity:
        """Booking contact: origin fields first, live seller record for gaps."""
        name = (origin.contact_name if origin else "") or ""
        phone = (origin.contact_phone if origin else "") or ""
        email = (origin.contact_email if origin else "") or ""
        fallback_name = name or f"Seller {seller_id}"

        if name and phone:
            return SellerIdentity(name=name, phone=phone, email=email)

        try:
            seller = await self.directory.get_seller(str(seller_id))
        except (ResolutionGap, UpstreamError) as e:
            logger.warning(f"[RESOLVER] Seller identity lookup failed for {seller_id}: {e.message}")
            return SellerIdentity(name=fallback_name, phone=phone, email=email)

        return SellerIdentity(
            name=name or seller.get("sp_store_name") or fallback_name,
            phone=phone or str(seller.get("contact") or ""),
            email=email or seller.get("email") or "",
        )

    async def record_origin(self, origin: SellerOrigin, source: str = "flow_webhook") -> SellerOrigin:
        """Apply an explicit origin-sync event: persist and refresh the cache."""
        if not origin.seller_id or not origin.postal_code:
            raise ShippingValidationError(
                "sellerId and postalCode are required",
                details={"seller_id": origin.seller_id, "postal_code": origin.postal_code},
            )

        saved = await self.origin_store.upsert(origin, source=source)
        self.seller_cache.set(origin.seller_id, saved, self.settings.SELLER_CACHE_TTL_SECONDS)
        return saved

    async def list_origins(self) -> List[SellerOrigin]:
        return await self.origin_store.list()
