"""
Webkul Multi-Vendor Seller Directory Client

Resolves storefront variants to sellers and sellers to ship-from locations.

Auth is a bearer access token with a refresh token. On 401 the shared
BearerTokenAuth refreshes once (single-flight) via POST /authorize/token.json
and the request is replayed; the rotated pair is persisted to the token store.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from marketplace_shipping.core.exceptions import ResolutionGap, TokenRefreshError, UpstreamError
from marketplace_shipping.core.http_client import BearerTokenAuth, ResilientHTTPClient, RetryConfig
from marketplace_shipping.core.utils import normalize_postal_code, to_finite_number, to_number, truthy
from marketplace_shipping.modules.shipping.providers.base import SellerDirectoryProvider
from marketplace_shipping.modules.shipping.types import OriginSource, SellerOrigin, VariantMapping

logger = logging.getLogger(__name__)

TOKEN_PROVIDER = "webkul"
LOCATION_PAGE_LIMIT = 250
# Stores without a primary-location filter answer these instead of an empty list
TOLERATED_LOCATION_STATUSES = (404, 422)


def parse_variant_dimensions(raw: Any) -> Tuple[float, float, float]:
    """(length, width, height) in cm from Webkul's JSON-encoded dimension field."""
    parsed = raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
    if not isinstance(parsed, dict):
        return 0.0, 0.0, 0.0
    return (
        to_number(parsed.get("length")),
        to_number(parsed.get("width")),
        to_number(parsed.get("height")),
    )


def location_candidates(response: Any) -> List[Dict[str, Any]]:
    """Locations from either `location` (object or list) or `locations`."""
    if not isinstance(response, dict):
        return []
    candidates: List[Dict[str, Any]] = []
    location = response.get("location")
    if isinstance(location, dict):
        candidates.append(location)
    elif isinstance(location, list):
        candidates.extend(entry for entry in location if isinstance(entry, dict))
    locations = response.get("locations")
    if isinstance(locations, list):
        candidates.extend(entry for entry in locations if isinstance(entry, dict))
    return candidates


def _iso_code(value: Any) -> str:
    return (value.get("iso_code") or "") if isinstance(value, dict) else ""


def pick_primary_location(candidates: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for entry in candidates:
        if truthy(entry.get("primary")) or truthy(entry.get("seller_default_location")) or truthy(entry.get("is_primary")):
            return entry
    return candidates[0] if candidates else None


class WebkulClient(SellerDirectoryProvider):
    name = "webkul"

    def __init__(
        self,
        base_url: str,
        access_token: str,
        refresh_token: str,
        timeout: float = 10.0,
        max_retries: int = 4,
        retry_delay: float = 0.4,
        postal_code_length: int = 5,
        default_country: str = "ID",
        token_store=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.postal_code_length = postal_code_length
        self.default_country = default_country
        self.auth = BearerTokenAuth(
            provider=TOKEN_PROVIDER,
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_func=self._request_token_refresh,
            token_store=token_store,
        )
        self.http = ResilientHTTPClient(
            base_url=base_url,
            name="webkul",
            retry_config=RetryConfig(max_retries=max_retries, base_delay=retry_delay),
            timeout=timeout,
            auth=self.auth,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, token_store=None, transport=None) -> "WebkulClient":
        return cls(
            base_url=settings.WEBKUL_BASE_URL,
            access_token=settings.WEBKUL_ACCESS_TOKEN,
            refresh_token=settings.WEBKUL_REFRESH_TOKEN,
            timeout=settings.WEBKUL_TIMEOUT_SECONDS,
            max_retries=settings.WEBKUL_MAX_RETRIES,
            retry_delay=settings.WEBKUL_RETRY_DELAY_SECONDS,
            postal_code_length=settings.POSTAL_CODE_LENGTH,
            default_country=settings.DEFAULT_ORIGIN_COUNTRY,
            token_store=token_store,
            transport=transport,
        )

    async def close(self) -> None:
        await self.http.close()

    async def _request_token_refresh(self, access_token: str, refresh_token: str) -> Tuple[str, Optional[str]]:
        body = await self.http.post(
            "/authorize/token.json",
            json={"access_token": access_token, "refresh_token": refresh_token},
            authenticate=False,
        )
        if not isinstance(body, dict) or not body.get("access_token"):
            raise TokenRefreshError("webkul token refresh response missing access_token", response_body=body)
        return body["access_token"], body.get("refresh_token") or None

    # =========================================================================
    # Raw lookups
    # =========================================================================

    async def get_variant(self, variant_id: str) -> Dict[str, Any]:
        body = await self.http.get(f"/api/v2/products/variant-by-shopify-id/{variant_id}.json")
        variant = body.get("variant") if isinstance(body, dict) else None
        if not variant:
            raise ResolutionGap(f"Variant not found for shopify variant id: {variant_id}")
        return variant

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        body = await self.http.get(f"/api/v2/products/{product_id}.json")
        product = body.get("product") if isinstance(body, dict) else None
        if not product:
            raise ResolutionGap(f"Product not found: {product_id}")
        return product

    async def get_seller(self, seller_id: str) -> Dict[str, Any]:
        body = await self.http.get(f"/api/v2/sellers/{seller_id}.json")
        seller = body.get("seller") if isinstance(body, dict) else None
        if not seller:
            raise ResolutionGap(f"Seller not found: {seller_id}")
        return seller

    async def _list_locations(self, seller_id: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            body = await self.http.get(f"/api/v2/sellers/{seller_id}/locations.json", params=params)
        except UpstreamError as e:
            if e.status in TOLERATED_LOCATION_STATUSES:
                return []
            raise
        return location_candidates(body)

    async def get_primary_location(self, seller_id: str) -> Optional[Dict[str, Any]]:
        candidates = await self._list_locations(
            seller_id,
            {"limit": LOCATION_PAGE_LIMIT, "filter": json.dumps({"primary": "true"})},
        )
        # Some stores return nothing for the primary filter even when locations exist
        if not candidates:
            candidates = await self._list_locations(seller_id, {"limit": LOCATION_PAGE_LIMIT})
        return pick_primary_location(candidates)

    # =========================================================================
    # SellerDirectoryProvider
    # =========================================================================

    async def resolve_variant(self, variant_id: str) -> VariantMapping:
        variant = await self.get_variant(variant_id)
        product_id = variant.get("product_id")
        if not product_id:
            raise ResolutionGap(f"Missing product_id in Webkul variant for shopify variant id {variant_id}")

        product = await self.get_product(product_id)
        seller_id = product.get("seller_id")
        if not seller_id:
            raise ResolutionGap(f"Missing seller_id in Webkul product {product.get('id') or product_id}")

        length, width, height = parse_variant_dimensions(variant.get("dimension"))
        return VariantMapping(
            variant_id=str(variant_id),
            seller_id=str(seller_id),
            product_id=str(product.get("id") or product_id),
            directory_variant_id=str(variant.get("id") or ""),
            weight_grams=to_number(variant.get("weight")),
            length_cm=length,
            width_cm=width,
            height_cm=height,
        )

    async def resolve_seller_origin(self, seller_id: str) -> SellerOrigin:
        seller_id = str(seller_id)
        try:
            location = await self.get_primary_location(seller_id)
        except UpstreamError as e:
            logger.warning(f"[WEBKUL] Location lookup failed for seller {seller_id}, using profile: {e.message}")
            location = None

        if location:
            postal_code = normalize_postal_code(location.get("zipcode"), self.postal_code_length)
            if postal_code:
                return SellerOrigin(
                    seller_id=seller_id,
                    postal_code=postal_code,
                    city=location.get("city") or "",
                    state=location.get("state") or "",
                    country=location.get("country") or self.default_country,
                    address=location.get("address") or location.get("street") or "",
                    latitude=to_finite_number(location.get("latitude")),
                    longitude=to_finite_number(location.get("longitude")),
                    source=OriginSource.LIVE,
                )

        seller = await self.get_seller(seller_id)
        postal_code = normalize_postal_code(seller.get("zipcode"), self.postal_code_length)
        if not postal_code:
            raise ResolutionGap(f"Seller {seller_id} does not have zipcode in Webkul")

        return SellerOrigin(
            seller_id=seller_id,
            postal_code=postal_code,
            city=seller.get("city") or "",
            state=_iso_code(seller.get("id_state")),
            country=_iso_code(seller.get("id_country")) or self.default_country,
            address=seller.get("store_address") or "",
            contact_name=seller.get("sp_store_name") or "",
            contact_phone=str(seller.get("contact") or ""),
            contact_email=seller.get("email") or "",
            source=OriginSource.LIVE,
        )
