from marketplace_shipping.models.seller_origin import SellerOriginRecord
from marketplace_shipping.models.order_sync import OrderSyncRow
from marketplace_shipping.models.quote_log import QuoteLogEntry
from marketplace_shipping.models.provider_token import ProviderToken

__all__ = [
    "SellerOriginRecord",
    "OrderSyncRow",
    "QuoteLogEntry",
    "ProviderToken",
]
