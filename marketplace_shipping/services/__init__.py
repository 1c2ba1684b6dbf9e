# Services layer: quote aggregation, order planning and sync
from marketplace_shipping.services.fulfillment_allocator import FulfillmentAllocator
from marketplace_shipping.services.order_plan import OrderPlanBuilder
from marketplace_shipping.services.order_sync import OrderSyncService
from marketplace_shipping.services.origin_resolver import SellerOriginResolver
from marketplace_shipping.services.rate_aggregator import ShippingService
from marketplace_shipping.services.stores import OrderSyncStore, QuoteLogStore, SellerOriginStore, TokenStore

__all__ = [
    "FulfillmentAllocator",
    "OrderPlanBuilder",
    "OrderSyncService",
    "SellerOriginResolver",
    "ShippingService",
    "OrderSyncStore",
    "QuoteLogStore",
    "SellerOriginStore",
    "TokenStore",
]
