from marketplace_shipping.modules.shipping.providers.base import (
    CourierRateProvider,
    SellerDirectoryProvider,
    StorefrontAdminProvider,
)
from marketplace_shipping.modules.shipping.providers.biteship import BiteshipClient
from marketplace_shipping.modules.shipping.providers.shopify import ShopifyAdminClient
from marketplace_shipping.modules.shipping.providers.webkul import WebkulClient

__all__ = [
    "CourierRateProvider",
    "SellerDirectoryProvider",
    "StorefrontAdminProvider",
    "BiteshipClient",
    "ShopifyAdminClient",
    "WebkulClient",
]
