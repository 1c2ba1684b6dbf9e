"""
Order Sync Orchestrator

Paid Shopify order -> one Biteship booking per seller group -> optional
partial Shopify fulfillments -> idempotent sync record.

Order Flow:
1. Existing completed record and no force: return it untouched
2. Build the plan, persist a `processing` record
3. With auto-fulfill, load fulfillment orders once into one allocator
4. Per seller group, sequentially:
   - reuse a previously created shipment unless forced
   - build + validate booking payload, submit, parse the booking summary
   - optionally allocate and create a partial fulfillment
   - any failure becomes a `failed` shipment; siblings continue
   - persist the record
5. `completed` iff nothing failed this run, else `partial_failed`

Two concurrent syncs of the same order can both pass step 1; there is no
cross-process lock.
"""
import logging
from typing import Any, Dict, List, Optional

from marketplace_shipping.core.exceptions import (
    BookingValidationError,
    ConfigurationError,
    PartialSyncFailure,
    ShippingBridgeError,
)
from marketplace_shipping.core.utils import iso_now, normalize_postal_code, strip_empty
from marketplace_shipping.modules.shipping.providers.base import CourierRateProvider, StorefrontAdminProvider
from marketplace_shipping.modules.shipping.providers.biteship import extract_booking_summary
from marketplace_shipping.modules.shipping.providers.shopify import NOT_CONFIGURED_MESSAGE
from marketplace_shipping.modules.shipping.types import (
    Destination,
    ManualOverride,
    OrderPlan,
    OrderSyncRecord,
    PlannedGroup,
    Shipment,
    ShipmentStatus,
    SyncOptions,
    SyncResult,
    SyncStatus,
)
from marketplace_shipping.services.fulfillment_allocator import FulfillmentAllocator
from marketplace_shipping.services.order_plan import OrderPlanBuilder, build_address
from marketplace_shipping.services.stores import OrderSyncStore

logger = logging.getLogger(__name__)

SHIPMENT_FAILURE_MESSAGE = "One or more seller shipments failed"


def tracking_company_label(courier_company: str) -> str:
    return str(courier_company or "").strip().upper() or "Biteship"


class OrderSyncService:
    def __init__(
        self,
        storefront: StorefrontAdminProvider,
        courier_provider: CourierRateProvider,
        plan_builder: OrderPlanBuilder,
        sync_store: OrderSyncStore,
        settings=None,
    ):
        if settings is None:
            from marketplace_shipping.core.config import settings
        self.settings = settings
        self.storefront = storefront
        self.courier_provider = courier_provider
        self.plan_builder = plan_builder
        self.sync_store = sync_store

    def _require_storefront(self) -> None:
        if not self.storefront.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

    # =========================================================================
    # Booking payload
    # =========================================================================

    def build_booking_payload(self, plan: OrderPlan, group: PlannedGroup, source: str) -> Dict[str, Any]:
        """
        Biteship /v1/orders body for one seller group.

        Raises:
            BookingValidationError: a mandatory contact/address field is empty
        """
        order = plan.order
        destination: Destination = plan.destination
        origin = group.origin
        identity = group.identity
        selection = group.courier_selection

        payload = strip_empty({
            "shipper_contact_name": identity.name,
            "shipper_contact_phone": identity.phone,
            "shipper_contact_email": identity.email,
            "shipper_organization": identity.name,
            "origin_contact_name": identity.name,
            "origin_contact_phone": identity.phone,
            "origin_address": build_address({
                "address1": origin.address,
                "city": origin.city,
                "province": origin.state,
                "country": origin.country,
            }),
            "origin_note": f"seller_id:{group.seller_id}",
            "origin_postal_code": origin.postal_code,
            "destination_contact_name": destination.name,
            "destination_contact_phone": destination.phone,
            "destination_contact_email": destination.email,
            "destination_address": destination.address,
            "destination_note": f"{destination.city} {destination.province}".strip(),
            "destination_postal_code": destination.postal_code,
            "courier_company": selection.courier_company if selection else "",
            "courier_type": selection.courier_type if selection else "",
            "delivery_type": self.settings.BITESHIP_DELIVERY_TYPE,
            "order_note": f"Shopify {order.get('name') or ''} | seller {group.seller_id}",
            "metadata": {
                "source": source,
                "shopify_order_id": str(order.get("id")),
                "shopify_order_name": order.get("name") or "",
                "shopify_order_currency": order.get("currency") or self.settings.SHIPPING_CURRENCY,
                "seller_id": str(group.seller_id),
                "shipping_service_code": group.shipping_service_code or "",
            },
            "items": group.items,
        }) or {}

        order_id = order.get("id")
        if not payload.get("origin_contact_phone"):
            raise BookingValidationError(
                f"Origin contact phone missing for seller {group.seller_id}",
                seller_id=group.seller_id, field="origin_contact_phone",
            )
        if not payload.get("destination_contact_phone"):
            raise BookingValidationError(
                f"Destination phone missing for order {order_id}",
                seller_id=group.seller_id, field="destination_contact_phone",
            )
        if not payload.get("origin_address"):
            raise BookingValidationError(
                f"Origin address missing for seller {group.seller_id}",
                seller_id=group.seller_id, field="origin_address",
            )
        if not payload.get("destination_address"):
            raise BookingValidationError(
                f"Destination address missing for order {order_id}",
                seller_id=group.seller_id, field="destination_address",
            )
        if not payload.get("origin_postal_code") or not payload.get("destination_postal_code"):
            raise BookingValidationError(
                f"Origin/Destination postal code is required (seller {group.seller_id})",
                seller_id=group.seller_id, field="postal_code",
            )
        return payload

    # =========================================================================
    # Fulfillment
    # =========================================================================

    async def _create_fulfillment(
        self,
        allocator: FulfillmentAllocator,
        group: PlannedGroup,
        shipment: Shipment,
        notify_customer: bool,
    ) -> Optional[Dict[str, Any]]:
        allocation = allocator.allocate(group.line_items)
        if allocation.unallocated:
            logger.warning(
                f"[SYNC] Seller {group.seller_id}: line items not allocatable for fulfillment: "
                f"{allocation.unallocated}"
            )
        if allocation.is_empty:
            return None

        tracking_number = shipment.tracking_number or shipment.booking_id
        payload = strip_empty({
            "notify_customer": bool(notify_customer),
            "line_items_by_fulfillment_order": allocation.line_items_by_fulfillment_order,
            "tracking_info": {
                "company": tracking_company_label(shipment.courier_company),
                "number": tracking_number,
            } if tracking_number else None,
            "message": f"Created from Biteship order {shipment.booking_id or '(pending)'}",
        })
        return await self.storefront.create_fulfillment(payload)

    # =========================================================================
    # Sync
    # =========================================================================

    async def _sync_group(
        self,
        plan: OrderPlan,
        group: PlannedGroup,
        source: str,
        allocator: Optional[FulfillmentAllocator],
        notify_customer: bool,
    ) -> Shipment:
        selection = group.courier_selection
        if selection is None:
            raise PartialSyncFailure(
                group.selection_error or f"No courier selected for seller {group.seller_id}",
                seller_id=group.seller_id,
            )

        payload = self.build_booking_payload(plan, group, source)
        response = await self.courier_provider.create_order(payload)
        summary = extract_booking_summary(response)

        shipment = Shipment(
            seller_id=group.seller_id,
            status=ShipmentStatus.CREATED.value,
            origin_postal_code=group.origin.postal_code,
            destination_postal_code=plan.destination.postal_code,
            courier_company=selection.courier_company,
            courier_type=selection.courier_type,
            booking_id=summary.booking_id,
            tracking_number=summary.tracking_number,
            response_status=summary.status,
            line_items=group.line_items,
            requested_at=iso_now(),
        )

        if allocator is not None:
            # The booking already exists; a fulfillment failure must not mark it failed
            try:
                fulfillment = await self._create_fulfillment(allocator, group, shipment, notify_customer)
            except ShippingBridgeError as e:
                logger.error(f"[SYNC] Seller {group.seller_id}: fulfillment failed: {e.message}")
                shipment.fulfillment_status = "failed"
                shipment.details = {"fulfillment_error": e.to_dict()}
            except Exception as e:
                logger.exception(f"[SYNC] Seller {group.seller_id}: fulfillment crashed: {e}")
                shipment.fulfillment_status = "failed"
                shipment.details = {"fulfillment_error": {"error_type": type(e).__name__, "message": str(e)}}
            else:
                if fulfillment:
                    shipment.fulfillment_id = str(fulfillment.get("id") or "")
                    shipment.fulfillment_status = fulfillment.get("status") or "success"

        return shipment

    @staticmethod
    def _failed_shipment(plan: OrderPlan, group: PlannedGroup, failure: PartialSyncFailure) -> Shipment:
        selection = group.courier_selection
        return Shipment(
            seller_id=group.seller_id,
            status=ShipmentStatus.FAILED.value,
            origin_postal_code=group.origin.postal_code,
            destination_postal_code=plan.destination.postal_code,
            courier_company=selection.courier_company if selection else "",
            courier_type=selection.courier_type if selection else "",
            line_items=group.line_items,
            error=failure.message,
            details=failure.to_dict(),
            requested_at=iso_now(),
        )

    async def sync_order(self, order_id: str, options: Optional[SyncOptions] = None) -> SyncResult:
        options = options or SyncOptions()
        if not self.settings.ORDER_SYNC_ENABLED:
            raise ConfigurationError("Order sync is disabled (ORDER_SYNC_ENABLED=false)")
        self._require_storefront()

        auto_fulfill = self.settings.AUTO_FULFILL_ON_CREATE if options.auto_fulfill is None else bool(options.auto_fulfill)
        notify_customer = (
            self.settings.NOTIFY_CUSTOMER_ON_FULFILL if options.notify_customer is None else bool(options.notify_customer)
        )

        order = await self.storefront.get_order(order_id)
        sync_key = str(order.get("id"))
        existing = await self.sync_store.get(sync_key)

        if not options.force and existing is not None and existing.status == SyncStatus.COMPLETED.value:
            logger.info(f"[SYNC] Order {sync_key} already completed, skipping")
            return SyncResult(ok=True, skipped=True, reason="already_completed", record=existing)

        plan = await self.plan_builder.build_plan(order, options.manual_override)

        record = OrderSyncRecord(
            order_id=sync_key,
            order_name=order.get("name") or "",
            source=options.source,
            auto_fulfill=auto_fulfill,
            status=SyncStatus.PROCESSING.value,
            destination_postal_code=plan.destination.postal_code,
            selected_shipping=plan.selected_shipping.to_dict(),
            skipped_items=plan.skipped_items,
        )
        record = await self.sync_store.save_record(record)

        allocator = None
        if auto_fulfill:
            allocator = FulfillmentAllocator(await self.storefront.get_fulfillment_orders(sync_key))

        has_failure = False
        for group in plan.seller_groups:
            previous = existing.find_shipment(group.seller_id) if existing else None
            if not options.force and previous is not None and previous.is_created:
                record.shipments.append(previous)
                logger.info(f"[SYNC] Order {sync_key}: reusing shipment for seller {group.seller_id}")
                record = await self.sync_store.save_record(record)
                continue

            try:
                shipment = await self._sync_group(plan, group, options.source, allocator, notify_customer)
                logger.info(
                    f"[SYNC] Order {sync_key}: seller {group.seller_id} booked "
                    f"{shipment.courier_company}/{shipment.courier_type} -> {shipment.booking_id}"
                )
            except ShippingBridgeError as e:
                has_failure = True
                failure = e if isinstance(e, PartialSyncFailure) else PartialSyncFailure(
                    e.message, seller_id=group.seller_id, details={"cause": e.to_dict()}
                )
                shipment = self._failed_shipment(plan, group, failure)
                logger.error(f"[SYNC] Order {sync_key}: seller {group.seller_id} booking failed: {e.message}")
            except Exception as e:
                has_failure = True
                failure = PartialSyncFailure(
                    str(e) or type(e).__name__,
                    seller_id=group.seller_id,
                    details={"cause": {"error_type": type(e).__name__, "message": str(e)}},
                )
                shipment = self._failed_shipment(plan, group, failure)
                logger.exception(f"[SYNC] Order {sync_key}: seller {group.seller_id} booking crashed: {e}")

            record.shipments.append(shipment)
            record = await self.sync_store.save_record(record)

        record.status = SyncStatus.PARTIAL_FAILED.value if has_failure else SyncStatus.COMPLETED.value
        record.last_error = SHIPMENT_FAILURE_MESSAGE if has_failure else None
        record = await self.sync_store.save_record(record)

        logger.info(f"[SYNC] Order {sync_key}: {record.status} ({len(record.shipments)} shipments)")
        return SyncResult(ok=not has_failure, skipped=False, record=record)

    # =========================================================================
    # Dashboard views
    # =========================================================================

    async def inspect_order(self, order_id: str, override: Optional[ManualOverride] = None) -> Dict[str, Any]:
        self._require_storefront()
        order = await self.storefront.get_order(order_id)
        plan = await self.plan_builder.build_plan(order, override)
        existing = await self.sync_store.get(str(order.get("id")))

        summary = plan.to_summary()
        summary["sync_record"] = existing.to_dict() if existing else None
        return summary

    async def list_pending_orders(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        self._require_storefront()
        orders = await self.storefront.list_orders(
            limit=limit or self.settings.DASHBOARD_MAX_ORDERS,
            status="open",
            fulfillment_status="unfulfilled",
            financial_status="paid",
        )

        summaries = []
        for order in orders:
            shipping_lines = order.get("shipping_lines") or []
            shipping_line = shipping_lines[0] if shipping_lines else {}
            record = await self.sync_store.get(str(order.get("id")))
            summaries.append({
                "id": str(order.get("id")),
                "name": order.get("name") or "",
                "created_at": order.get("created_at"),
                "total_price": order.get("total_price") or "0",
                "currency": order.get("currency") or self.settings.SHIPPING_CURRENCY,
                "financial_status": order.get("financial_status") or "",
                "fulfillment_status": order.get("fulfillment_status") or "",
                "shipping_service_title": shipping_line.get("title") or "",
                "shipping_service_code": shipping_line.get("code") or "",
                "line_item_count": len(order.get("line_items") or []),
                "destination_postal_code": normalize_postal_code(
                    (order.get("shipping_address") or {}).get("zip"), self.settings.POSTAL_CODE_LENGTH
                ),
                "sync_status": record.status if record else "not_synced",
                "updated_at": record.updated_at if record else None,
            })
        return summaries
