"""
Provider-Agnostic Shipping Data Classes

Everything the resolver, aggregator and order sync pass between each other.
Provider JSON is normalized into these at the client boundary; nothing past
the providers package reads raw upstream field-name variants.
"""
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class OriginSource(str, Enum):
    """Where a SellerOrigin was resolved from."""
    PERSISTED = "persisted"
    CACHED = "cached"
    LIVE = "live"
    DEFAULT = "default"


class SyncStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL_FAILED = "partial_failed"


class ShipmentStatus(str, Enum):
    CREATED = "created"
    FAILED = "failed"


FALLBACK_SERVICE_CODE = "BSH_MULTI_CHEAPEST"
SERVICE_CODE_PREFIX = "BSH_"


# =============================================================================
# Seller directory
# =============================================================================

@dataclass(frozen=True)
class VariantMapping:
    """Storefront variant -> seller, with shipping dimensions."""
    variant_id: str
    seller_id: str
    product_id: str = ""
    directory_variant_id: str = ""
    weight_grams: float = 0.0
    length_cm: float = 0.0
    width_cm: float = 0.0
    height_cm: float = 0.0


@dataclass
class SellerOrigin:
    """Physical ship-from location of one seller."""
    seller_id: str
    postal_code: str
    city: str = ""
    state: str = ""
    country: str = "ID"
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    contact_name: str = ""   # store name
    contact_phone: str = ""
    contact_email: str = ""
    store_name_handle: str = ""
    shop_domain: str = ""
    source: OriginSource = OriginSource.LIVE

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_routable(self) -> bool:
        return bool(self.postal_code) or self.has_coordinates

    def with_source(self, source: OriginSource) -> "SellerOrigin":
        return replace(self, source=source)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        return data


@dataclass(frozen=True)
class SellerIdentity:
    """Contact used as shipper/origin on a booking."""
    name: str
    phone: str = ""
    email: str = ""


# =============================================================================
# Rates
# =============================================================================

@dataclass(frozen=True)
class RateQuote:
    """
    One courier/service price for one origin -> destination leg.

    price is in major currency units, as the courier provider returns it.
    """
    courier_code: str
    service_code: str
    courier_name: str
    service_name: str
    price: float
    min_day: float = 0.0
    max_day: float = 0.0
    description: str = ""
    type: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.courier_code, self.service_code)


@dataclass(frozen=True)
class AggregatedRate:
    """Combined price for a whole multi-origin cart."""
    service_code: str
    courier_code: str
    courier_name: str
    service_name: str
    total_price: float
    min_day: float = 0.0
    max_day: float = 0.0
    is_fallback: bool = False


@dataclass
class SellerGroup:
    """Items of one cart/order attributable to a single seller."""
    seller_id: str
    origin: SellerOrigin
    items: List[Dict[str, Any]] = field(default_factory=list)
    line_items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class QuoteResult:
    rates: List[Dict[str, Any]]
    debug: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"rates": self.rates, "debug": self.debug}


# =============================================================================
# Order plan
# =============================================================================

@dataclass(frozen=True)
class ManualOverride:
    courier_company: str = ""
    courier_type: str = ""

    @property
    def is_set(self) -> bool:
        return bool(self.courier_company.strip() and self.courier_type.strip())


@dataclass
class ShippingSelection:
    """The shipping method the order was placed with (or an override)."""
    source: str  # manual_override, shopify_shipping_line, none
    title: str = ""
    service_code: str = ""
    courier_company: str = ""
    courier_type: str = ""
    is_mixed_fallback: bool = False

    @property
    def has_courier(self) -> bool:
        return bool(self.courier_company and self.courier_type)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CourierSelection:
    courier_company: str
    courier_type: str
    source: str
    preview_price: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Destination:
    name: str
    phone: str
    email: str
    postal_code: str
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: str = ""
    province: str = ""
    country: str = "ID"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PlannedGroup:
    """A SellerGroup with identity and courier resolved for booking."""
    seller_id: str
    origin: SellerOrigin
    identity: SellerIdentity
    items: List[Dict[str, Any]]
    line_items: List[Dict[str, Any]]
    shipping_service_code: str = ""
    courier_selection: Optional[CourierSelection] = None
    selection_error: Optional[str] = None

    def to_summary(self) -> Dict[str, Any]:
        return {
            "seller_id": self.seller_id,
            "origin": self.origin.to_dict(),
            "seller_identity": asdict(self.identity),
            "item_count": len(self.items),
            "line_items": self.line_items,
            "courier_selection": self.courier_selection.to_dict() if self.courier_selection else None,
            "selection_error": self.selection_error,
        }


@dataclass
class OrderPlan:
    order: Dict[str, Any]
    destination: Destination
    selected_shipping: ShippingSelection
    seller_groups: List[PlannedGroup]
    skipped_items: List[Dict[str, Any]] = field(default_factory=list)

    def to_summary(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "selected_shipping": self.selected_shipping.to_dict(),
            "destination": self.destination.to_dict(),
            "seller_groups": [group.to_summary() for group in self.seller_groups],
            "skipped_items": self.skipped_items,
        }


# =============================================================================
# Order sync
# =============================================================================

@dataclass(frozen=True)
class BookingSummary:
    booking_id: str
    tracking_number: str
    status: str = "created"


@dataclass
class Shipment:
    """One seller group's booking attempt within a sync record."""
    seller_id: str
    status: str
    origin_postal_code: str = ""
    destination_postal_code: str = ""
    courier_company: str = ""
    courier_type: str = ""
    booking_id: str = ""
    tracking_number: str = ""
    response_status: str = ""
    line_items: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    fulfillment_id: Optional[str] = None
    fulfillment_status: Optional[str] = None
    requested_at: Optional[str] = None

    @property
    def is_created(self) -> bool:
        return self.status == ShipmentStatus.CREATED.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Shipment":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class OrderSyncRecord:
    order_id: str
    status: str
    order_name: str = ""
    source: str = ""
    auto_fulfill: bool = False
    destination_postal_code: str = ""
    selected_shipping: Dict[str, Any] = field(default_factory=dict)
    skipped_items: List[Dict[str, Any]] = field(default_factory=list)
    shipments: List[Shipment] = field(default_factory=list)
    last_error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def find_shipment(self, seller_id: str) -> Optional[Shipment]:
        for shipment in self.shipments:
            if str(shipment.seller_id) == str(seller_id):
                return shipment
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["shipments"] = [shipment.to_dict() for shipment in self.shipments]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderSyncRecord":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["shipments"] = [Shipment.from_dict(s) for s in data.get("shipments") or []]
        return cls(**values)


@dataclass
class SyncOptions:
    """
    Options for one sync run.

    auto_fulfill / notify_customer of None fall back to settings.
    """
    auto_fulfill: Optional[bool] = None
    notify_customer: Optional[bool] = None
    force: bool = False
    manual_override: Optional[ManualOverride] = None
    source: str = "admin_dashboard"


@dataclass
class SyncResult:
    ok: bool
    skipped: bool
    record: OrderSyncRecord
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "skipped": self.skipped,
            "reason": self.reason,
            "record": self.record.to_dict(),
        }
