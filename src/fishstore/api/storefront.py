from datetime import date

from fastapi import APIRouter, Query
from ulid import ULID

from fishstore.api.type import StoreApi
from fishstore.catalog import CatalogService
from fishstore.types import (
    FishermanProfileOut,
    FulfillmentType,
    PlannedTripOut,
    ProductIdsRequest,
    ProductOut,
    SlotOut,
)


class StorefrontApi(StoreApi):
    """Public, unauthenticated reads backing the shop pages."""

    def __init__(
        self,
        catalog: CatalogService,
    ) -> None:
        self._catalog = catalog

    def create_router(self) -> APIRouter:
        router = APIRouter(tags=["storefront"])

        def list_products():
            return self._catalog.available_products()

        def products_by_ids(body: ProductIdsRequest):
            return self._catalog.products_by_ids(body.product_ids)

        def homepage_profiles():
            return self._catalog.homepage_profiles()

        def available_slots(id: ULID, type: FulfillmentType | None = Query(default=None)):
            return self._catalog.available_slots(id, type=type)

        def fisherman_trips(id: ULID, year: int, month: int):
            return self._catalog.trips_in_month(id, year, month)

        def public_trips(
            start: date | None = Query(default=None, alias="from"),
            end: date | None = Query(default=None, alias="to"),
        ):
            return self._catalog.public_trips(start, end)

        router.add_api_route(
            path="/products",
            endpoint=list_products,
            methods=["GET"],
            response_model=list[ProductOut],
            name="list_products",
            summary="List products in stock, newest catch first",
        )

        router.add_api_route(
            path="/products/$by-ids",
            endpoint=products_by_ids,
            methods=["POST"],
            response_model=list[ProductOut],
            name="products_by_ids",
            summary="Fetch current price and stock for the products in a cart",
            responses={400: {"description": "Malformed request body"}},
        )

        router.add_api_route(
            path="/fishermen/homepage",
            endpoint=homepage_profiles,
            methods=["GET"],
            response_model=list[FishermanProfileOut],
            name="homepage_profiles",
            summary="Fisherman profiles shown on the homepage",
        )

        router.add_api_route(
            path="/fishermen/{id}/slots",
            endpoint=available_slots,
            methods=["GET"],
            response_model=list[SlotOut],
            name="available_slots",
            summary="Upcoming pickup and delivery slots of a fisherman",
            responses={404: {"description": "Fisherman not found"}},
        )

        router.add_api_route(
            path="/fishermen/{id}/trips/{year}/{month}",
            endpoint=fisherman_trips,
            methods=["GET"],
            response_model=list[PlannedTripOut],
            name="fisherman_trips",
            summary="Planned fishing trips of a fisherman for one month",
            responses={400: {"description": "Invalid month"}},
        )

        router.add_api_route(
            path="/trips",
            endpoint=public_trips,
            methods=["GET"],
            response_model=list[PlannedTripOut],
            name="public_trips",
            summary="Planned fishing trips (default: the next 90 days)",
        )

        return router
