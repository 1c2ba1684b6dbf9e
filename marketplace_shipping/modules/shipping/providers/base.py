"""
Upstream Provider Interfaces

The resolver, aggregator and order sync depend only on these contracts:
- SellerDirectoryProvider: variant -> product -> seller, seller locations
- CourierRateProvider: per-leg courier rates and booking creation
- StorefrontAdminProvider: orders, fulfillment orders, fulfillments

Implementations normalize upstream JSON into the dataclasses in
modules.shipping.types before returning.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from marketplace_shipping.modules.shipping.types import RateQuote, SellerOrigin, VariantMapping


class SellerDirectoryProvider(ABC):
    """Marketplace seller directory (Webkul Multi-Vendor)."""

    name: str = "seller_directory"

    @abstractmethod
    async def resolve_variant(self, variant_id: str) -> VariantMapping:
        """
        Map a storefront variant id to its seller.

        Raises:
            ResolutionGap: variant, product or seller id missing upstream
        """
        pass

    @abstractmethod
    async def resolve_seller_origin(self, seller_id: str) -> SellerOrigin:
        """
        Live ship-from location: primary location, any location, then profile.

        Raises:
            ResolutionGap: no postal code anywhere for this seller
        """
        pass

    @abstractmethod
    async def get_seller(self, seller_id: str) -> Dict[str, Any]:
        """Raw seller profile (store name, contact, email)."""
        pass

    async def close(self) -> None:
        pass


class CourierRateProvider(ABC):
    """Courier aggregation provider (Biteship)."""

    name: str = "courier_rates"

    @abstractmethod
    async def get_rates(
        self,
        items: List[Dict[str, Any]],
        origin_postal_code: str = "",
        destination_postal_code: str = "",
        origin_latitude: Optional[float] = None,
        origin_longitude: Optional[float] = None,
        destination_latitude: Optional[float] = None,
        destination_longitude: Optional[float] = None,
        couriers: Optional[List[str]] = None,
    ) -> List[RateQuote]:
        """
        Rates for one origin -> destination leg.

        Zero-priced rates are never returned.
        """
        pass

    @abstractmethod
    async def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a booking; returns the raw provider response."""
        pass

    async def close(self) -> None:
        pass


class StorefrontAdminProvider(ABC):
    """Storefront admin API (Shopify)."""

    name: str = "storefront_admin"

    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    async def list_orders(
        self,
        limit: int = 20,
        status: str = "open",
        fulfillment_status: str = "unfulfilled",
        financial_status: str = "paid",
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_fulfillment_orders(self, order_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create_fulfillment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    async def close(self) -> None:
        pass
