"""
Biteship Courier Aggregation Client

- POST /v1/rates/couriers: rates for one origin -> destination leg
- POST /v1/orders: booking creation

Rate entries come back under `pricing` (current API) or `rates` (older
accounts) with camelCase/snake_case field variants; normalize_rate() is the
only place those variants are read.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from marketplace_shipping.core.http_client import ResilientHTTPClient, RetryConfig
from marketplace_shipping.core.utils import first_present, to_number
from marketplace_shipping.modules.shipping.providers.base import CourierRateProvider
from marketplace_shipping.modules.shipping.types import BookingSummary, RateQuote

logger = logging.getLogger(__name__)

_NUMBERS = re.compile(r"\d+")

HOURS_PER_DAY = 24
MINUTES_PER_DAY = 24 * 60


def duration_unit_factor(item: Dict[str, Any]) -> float:
    """Fraction of a day one duration unit represents."""
    unit = str(item.get("shipment_duration_unit") or "").lower() or str(item.get("duration") or "").lower()
    if "hour" in unit:
        return 1 / HOURS_PER_DAY
    if "minute" in unit:
        return 1 / MINUTES_PER_DAY
    return 1.0


def extract_duration_days(item: Dict[str, Any]) -> Tuple[float, float]:
    """
    (min_day, max_day) as fractional days.

    Explicit min_day/max_day win. Otherwise the first two integers of
    shipment_duration_range (or duration) are scaled by the unit, so
    "1 - 2" hours is (1/24, 2/24).
    """
    direct_min = to_number(first_present(item.get("min_day"), item.get("minDay"), default=0))
    direct_max = to_number(first_present(item.get("max_day"), item.get("maxDay"), default=0))
    if direct_min > 0 or direct_max > 0:
        return (
            direct_min if direct_min > 0 else direct_max,
            direct_max if direct_max > 0 else direct_min,
        )

    duration_range = str(item.get("shipment_duration_range") or item.get("duration") or "").strip()
    numbers = _NUMBERS.findall(duration_range)
    if not numbers:
        return 0.0, 0.0

    factor = duration_unit_factor(item)
    low = int(numbers[0])
    if len(numbers) == 1:
        return low * factor, low * factor
    high = int(numbers[1]) or low
    return low * factor, high * factor


def normalize_rate(item: Dict[str, Any]) -> RateQuote:
    min_day, max_day = extract_duration_days(item)
    return RateQuote(
        courier_name=item.get("courier_name") or item.get("courierName") or "Unknown",
        courier_code=str(item.get("courier_code") or item.get("courierCode") or "unknown").lower(),
        service_name=item.get("courier_service_name") or item.get("courierServiceName") or "Service",
        service_code=str(item.get("courier_service_code") or item.get("courierServiceCode") or "service").lower(),
        type=item.get("type") or "",
        price=to_number(item.get("price") or item.get("shipping_fee")),
        min_day=min_day,
        max_day=max_day,
        description=item.get("description") or item.get("shipment_duration_range") or "",
    )


def extract_booking_summary(response: Any) -> BookingSummary:
    """Booking id, waybill and status from a /v1/orders response."""
    payload: Dict[str, Any] = {}
    if isinstance(response, dict):
        payload = response.get("order") or response.get("data") or response.get("shipment") or response
    courier = payload.get("courier") if isinstance(payload.get("courier"), dict) else {}

    booking_id = (
        payload.get("id")
        or payload.get("order_id")
        or payload.get("shipment_id")
        or courier.get("tracking_id")
        or ""
    )
    tracking_number = (
        payload.get("waybill_id")
        or payload.get("waybill")
        or courier.get("waybill_id")
        or courier.get("waybill")
        or payload.get("tracking_id")
        or payload.get("trackingId")
        or ""
    )
    status = payload.get("status") or courier.get("status") or courier.get("tracking_status") or "created"
    return BookingSummary(
        booking_id=str(booking_id),
        tracking_number=str(tracking_number),
        status=str(status),
    )


class BiteshipClient(CourierRateProvider):
    name = "biteship"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        couriers: Optional[List[str]] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.couriers = list(couriers or [])
        self.http = ResilientHTTPClient(
            base_url=base_url,
            name="biteship",
            retry_config=RetryConfig(max_retries=max_retries, base_delay=retry_delay),
            timeout=timeout,
            default_headers={"Authorization": api_key},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, transport=None) -> "BiteshipClient":
        return cls(
            base_url=settings.BITESHIP_BASE_URL,
            api_key=settings.BITESHIP_API_KEY,
            couriers=settings.BITESHIP_COURIERS,
            timeout=settings.BITESHIP_TIMEOUT_SECONDS,
            max_retries=settings.BITESHIP_MAX_RETRIES,
            retry_delay=settings.BITESHIP_RETRY_DELAY_SECONDS,
            transport=transport,
        )

    async def close(self) -> None:
        await self.http.close()

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
        payload: Dict[str, Any] = {
            "couriers": ",".join(couriers or self.couriers),
            "items": items,
        }
        optional = {
            "origin_postal_code": origin_postal_code,
            "destination_postal_code": destination_postal_code,
            "origin_latitude": origin_latitude,
            "origin_longitude": origin_longitude,
            "destination_latitude": destination_latitude,
            "destination_longitude": destination_longitude,
        }
        payload.update({key: value for key, value in optional.items() if value not in (None, "")})

        body = await self.http.post("/v1/rates/couriers", json=payload)

        pricing: List[Any] = []
        if isinstance(body, dict):
            if isinstance(body.get("pricing"), list):
                pricing = body["pricing"]
            elif isinstance(body.get("rates"), list):
                pricing = body["rates"]

        rates = [normalize_rate(entry) for entry in pricing if isinstance(entry, dict)]
        rates = [rate for rate in rates if rate.price > 0]
        logger.debug(
            f"[BITESHIP] {len(rates)} rates for {origin_postal_code or '-'} -> {destination_postal_code or '-'}"
        )
        return rates

    async def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self.http.post("/v1/orders", json=payload)
        return body if isinstance(body, dict) else {"raw": body}
