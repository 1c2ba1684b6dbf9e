"""
Shipping Module

- Provider-agnostic dataclasses (types)
- SellerDirectoryProvider / CourierRateProvider / StorefrontAdminProvider
  interfaces with Webkul, Biteship and Shopify implementations
"""
from marketplace_shipping.modules.shipping.providers import (
    BiteshipClient,
    ShopifyAdminClient,
    WebkulClient,
)

__all__ = [
    "BiteshipClient",
    "ShopifyAdminClient",
    "WebkulClient",
]
