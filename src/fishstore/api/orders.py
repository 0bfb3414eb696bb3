from fastapi import APIRouter, Body, Depends, Query
from ulid import ULID

from fishstore.api.auth import Authenticator
from fishstore.api.type import StoreApi
from fishstore.orders import OrderService
from fishstore.types import (
    ConfirmOrderIn,
    CreateOrderRequest,
    CreateOrderResponse,
    NewOrderCount,
    OrderOut,
    OrderStatus,
    UserOut,
)

SOLD_OUT_EXAMPLE = {
    "error": "Items sold out",
    "soldOutItems": ["Kuha (Fileoitu)"],
    "soldOutProductIds": ["01K5Z8Q7J4X3M2N1P0R9S8T7V6"],
}


class OrdersApi(StoreApi):
    def __init__(
        self,
        orders: OrderService,
        auth: Authenticator,
    ) -> None:
        self._orders = orders
        self._auth = auth

    def create_router(self) -> APIRouter:
        router = APIRouter(tags=["orders"])

        customer = Depends(self._auth.user)
        admin = Depends(self._auth.admin)

        def create_order(body: CreateOrderRequest, user: UserOut = customer):
            return self._orders.place_order(user, body)

        def my_orders(user: UserOut = customer):
            return self._orders.list_customer_orders(user)

        def list_orders(status: OrderStatus | None = Query(default=None), user: UserOut = admin):
            return self._orders.list_orders(user, status)

        def new_order_count(user: UserOut = admin):
            return NewOrderCount(count=self._orders.new_order_count(user))

        def confirm_order(id: ULID, body: ConfirmOrderIn | None = Body(default=None), user: UserOut = admin):
            return self._orders.confirm_order(user, id, body.delivery_fee if body else None)

        def cancel_order(id: ULID, user: UserOut = admin):
            return self._orders.cancel_order(user, id)

        def complete_order(id: ULID, user: UserOut = admin):
            return self._orders.complete_order(user, id)

        router.add_api_route(
            path="/orders",
            endpoint=create_order,
            methods=["POST"],
            response_model=CreateOrderResponse,
            name="create_order",
            summary="Place an order for the items in the cart",
            responses={
                200: {"description": "Order created"},
                400: {"description": "Empty cart, unknown product or missing delivery address"},
                401: {"description": "Missing or invalid bearer token"},
                409: {
                    "description": "Some items are sold out",
                    "content": {"application/json": {"example": SOLD_OUT_EXAMPLE}},
                },
            },
        )

        router.add_api_route(
            path="/orders/mine",
            endpoint=my_orders,
            methods=["GET"],
            response_model=list[OrderOut],
            name="my_orders",
            summary="Orders placed by the signed-in customer",
            responses={401: {"description": "Missing or invalid bearer token"}},
        )

        router.add_api_route(
            path="/admin/orders",
            endpoint=list_orders,
            methods=["GET"],
            response_model=list[OrderOut],
            name="list_orders",
            summary="Orders received by the fisherman, newest first",
            responses={403: {"description": "Admin access required"}},
        )

        router.add_api_route(
            path="/admin/orders/$new-count",
            endpoint=new_order_count,
            methods=["GET"],
            response_model=NewOrderCount,
            name="new_order_count",
            summary="Number of orders waiting for confirmation",
        )

        router.add_api_route(
            path="/admin/orders/{id}/$confirm",
            endpoint=confirm_order,
            methods=["POST"],
            response_model=OrderOut,
            name="confirm_order",
            summary="Confirm a new order, optionally adjusting the delivery fee",
            responses={
                404: {"description": "Order not found"},
                409: {"description": "Order cannot be confirmed in its current status"},
            },
        )

        router.add_api_route(
            path="/admin/orders/{id}/$cancel",
            endpoint=cancel_order,
            methods=["POST"],
            response_model=OrderOut,
            name="cancel_order",
            summary="Cancel an order and return its items to stock",
            responses={
                404: {"description": "Order not found"},
                409: {"description": "Order is already completed or cancelled"},
            },
        )

        router.add_api_route(
            path="/admin/orders/{id}/$complete",
            endpoint=complete_order,
            methods=["POST"],
            response_model=OrderOut,
            name="complete_order",
            summary="Mark a confirmed order as handed over",
            responses={
                404: {"description": "Order not found"},
                409: {"description": "Only confirmed orders can be completed"},
            },
        )

        return router
