"""Order placement and the admin order workflow."""

from __future__ import annotations

import structlog
from ulid import ULID

from fishstore.database import StoreDatabase
from fishstore.errors import NotFoundError, SoldOutError, ValidationError
from fishstore.logging import log_time
from fishstore.notifications import Notifier
from fishstore.pricing import calculate_total
from fishstore.types import (
    CreateOrderRequest,
    CreateOrderResponse,
    FishermanProfileOut,
    FulfillmentType,
    OrderOut,
    OrderStatus,
    UserOut,
)

log = structlog.get_logger(__name__)


def order_total(order: OrderOut) -> float:
    """Items total plus the delivery fee, which only applies to home delivery."""
    return calculate_total(order.items, order.fulfillment_type, order.final_delivery_fee)


class OrderService:
    def __init__(self, database: StoreDatabase, notifier: Notifier) -> None:
        self._database = database
        self._notifier = notifier

    # --- customer side ---
    def place_order(self, user: UserOut, request: CreateOrderRequest) -> CreateOrderResponse:
        """Validate a checkout request and write the order.

        The fisherman is the owner of the first cart line's product; the
        delivery fee is that fisherman's default fee for home delivery and zero
        for pickup. Stock is decremented in the same transaction as the order
        write, so a shortfall raises `SoldOutError` and leaves nothing behind.
        The fisherman is then told by email; a failed email never fails the
        order.
        """
        if not request.cart_items:
            raise ValidationError("Cart is empty")

        product_ids = list(dict.fromkeys(line.product_id for line in request.cart_items))
        products = self._database.get_products(product_ids)
        if len(products) != len(product_ids):
            raise ValidationError("Some products not found")

        if request.fulfillment_type == FulfillmentType.delivery and not (request.customer_address or "").strip():
            raise ValidationError("Delivery address is required for home delivery")

        profile = self._database.get_profile(products[0].fisherman_id)
        if profile is None:
            raise ValidationError("Fisherman not found")

        if request.fulfillment_slot_id is not None:
            slot = self._database.get_slot(request.fulfillment_slot_id)
            if slot is None or slot.fisherman_id != profile.id:
                raise ValidationError("Fulfillment slot not found")

        delivery_fee = profile.default_delivery_fee if request.fulfillment_type == FulfillmentType.delivery else 0.0

        try:
            with log_time("order_write", lines=len(request.cart_items)):
                order = self._database.place_order(user.id, profile.id, delivery_fee, request)
        except SoldOutError as e:
            log.warning("order_sold_out", user_id=str(user.id), product_ids=e.sold_out_product_ids)
            raise

        log.info(
            "order_placed",
            order_id=str(order.id),
            user_id=str(user.id),
            fulfillment_type=str(order.fulfillment_type),
            total=order.total,
        )
        self._notify_fisherman(order, profile)
        return CreateOrderResponse(order_id=order.id)

    def _notify_fisherman(self, order: OrderOut, profile: FishermanProfileOut) -> None:
        try:
            fisherman = self._database.get_user(profile.user_id)
            if fisherman is None or not self._notifier.notify_new_order(order, fisherman):
                log.warning("order_notification_not_sent", order_id=str(order.id))
        except Exception:
            log.exception("order_notification_failed", order_id=str(order.id))

    def list_customer_orders(self, user: UserOut) -> list[OrderOut]:
        return self._database.list_customer_orders(user.id)

    # --- admin side ---
    def _profile(self, admin: UserOut) -> FishermanProfileOut:
        profile = self._database.get_profile_for_user(admin.id)
        if profile is None:
            raise NotFoundError("Fisherman profile not found")
        return profile

    def list_orders(self, admin: UserOut, status: OrderStatus | None = None) -> list[OrderOut]:
        return self._database.list_orders(self._profile(admin).id, status)

    def new_order_count(self, admin: UserOut) -> int:
        return self._database.count_orders(self._profile(admin).id, OrderStatus.new)

    def confirm_order(self, admin: UserOut, order_id: ULID, delivery_fee: float | None = None) -> OrderOut:
        """Confirm a new order, optionally adjusting its delivery fee, and email the customer."""
        profile = self._profile(admin)
        order = self._database.set_order_status(
            order_id, OrderStatus.confirmed, fisherman_profile_id=profile.id, delivery_fee=delivery_fee
        )
        log.info("order_status_changed", order_id=str(order_id), status=str(order.status))

        self._notify_customer(order, profile)
        return order

    def _notify_customer(self, order: OrderOut, profile: FishermanProfileOut) -> None:
        try:
            customer = self._database.get_user(order.customer_id)
            if customer is None or not self._notifier.send_order_confirmation(order, customer, profile):
                log.warning("order_confirmation_not_sent", order_id=str(order.id))
        except Exception:
            log.exception("order_confirmation_failed", order_id=str(order.id))

    def cancel_order(self, admin: UserOut, order_id: ULID) -> OrderOut:
        order = self._database.set_order_status(
            order_id, OrderStatus.cancelled, fisherman_profile_id=self._profile(admin).id
        )
        log.info("order_status_changed", order_id=str(order_id), status=str(order.status))
        return order

    def complete_order(self, admin: UserOut, order_id: ULID) -> OrderOut:
        order = self._database.set_order_status(
            order_id, OrderStatus.completed, fisherman_profile_id=self._profile(admin).id
        )
        log.info("order_status_changed", order_id=str(order_id), status=str(order.status))
        return order
