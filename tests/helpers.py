"""Builders and fakes shared by the test modules."""
import copy
from typing import Any, Dict, List, Optional

from marketplace_shipping.core.config import Settings
from marketplace_shipping.modules.shipping.types import RateQuote


def make_settings(**overrides) -> Settings:
    values = {
        "WEBKUL_BASE_URL": "https://webkul.test",
        "WEBKUL_ACCESS_TOKEN": "wk-access",
        "WEBKUL_REFRESH_TOKEN": "wk-refresh",
        "BITESHIP_BASE_URL": "https://biteship.test",
        "BITESHIP_API_KEY": "biteship-key",
        "BITESHIP_COURIERS": "jne,sicepat,ide",
        "SHOPIFY_SHOP_DOMAIN": "test-shop.myshopify.com",
        "SHOPIFY_ADMIN_ACCESS_TOKEN": "shpat_test",
        "SHIPPING_CURRENCY": "IDR",
        "SHIPPING_MAX_RATES": 5,
        "SHIPPING_HANDLING_FEE": 0.0,
        "SHIPPING_FREE_THRESHOLD": 0.0,
        "DEFAULT_ORIGIN_POSTAL_CODE": "",
        "QUOTE_FAIL_CLOSED": False,
        "AUTO_FULFILL_ON_CREATE": False,
        "NOTIFY_CUSTOMER_ON_FULFILL": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def rate(courier: str, service: str, price: float, min_day: float = 1, max_day: float = 2) -> RateQuote:
    return RateQuote(
        courier_code=courier,
        service_code=service,
        courier_name=courier.upper(),
        service_name=service.upper(),
        price=price,
        min_day=min_day,
        max_day=max_day,
    )


class FakeCourierProvider:
    """Rates keyed by origin postal code; bookings answered in order."""

    def __init__(self, rates_by_origin: Optional[Dict[str, Any]] = None):
        self.rates_by_origin = rates_by_origin or {}
        self.rate_calls: List[Dict[str, Any]] = []
        self.bookings: List[Dict[str, Any]] = []
        self.booking_results: List[Any] = []

    async def get_rates(self, items, origin_postal_code="", destination_postal_code="", **kwargs):
        self.rate_calls.append({
            "items": items,
            "origin_postal_code": origin_postal_code,
            "destination_postal_code": destination_postal_code,
            **kwargs,
        })
        result = self.rates_by_origin.get(origin_postal_code, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def create_order(self, payload):
        self.bookings.append(payload)
        result = self.booking_results.pop(0) if self.booking_results else {"id": f"bk_{len(self.bookings)}"}
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        return None


ORDER = {
    "id": 5001,
    "name": "#1001",
    "currency": "IDR",
    "financial_status": "paid",
    "email": "buyer@example.com",
    "customer": {"first_name": "Budi", "phone": "0812000111", "email": "customer@example.com"},
    "shipping_address": {
        "first_name": "Budi",
        "last_name": "Santoso",
        "phone": "0812000999",
        "address1": "Jl. Melati 5",
        "city": "Jakarta Pusat",
        "province": "DKI Jakarta",
        "country": "Indonesia",
        "country_code": "ID",
        "zip": "10110",
    },
    "shipping_lines": [{"title": "JNE REG", "code": "BSH_JNE_REG"}],
    "line_items": [
        {
            "id": 501, "variant_id": 1001, "title": "Comic A", "sku": "SKU-A", "quantity": 2,
            "fulfillable_quantity": 2, "price": "50000.00", "grams": 500, "requires_shipping": True,
        },
        {
            "id": 502, "variant_id": 2002, "title": "Comic B", "sku": "SKU-B", "quantity": 1,
            "fulfillable_quantity": 1, "price": "75000.50", "grams": 800,
        },
    ],
}


def order(**changes) -> Dict[str, Any]:
    """Deep copy of ORDER with top-level fields replaced."""
    data = copy.deepcopy(ORDER)
    data.update(changes)
    return data
