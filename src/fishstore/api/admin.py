from fastapi import APIRouter, Depends
from fastapi.responses import Response
from ulid import ULID

from fishstore.api.auth import Authenticator
from fishstore.api.type import StoreApi
from fishstore.catalog import CatalogService
from fishstore.types import (
    CatchGroup,
    CatchIn,
    DefaultPriceIn,
    DefaultPriceOut,
    DefaultPriceUpdate,
    FishermanProfileIn,
    FishermanProfileOut,
    PlannedTripOut,
    ProductOut,
    ProductUpdate,
    ScheduleIn,
    UserOut,
)

ADMIN_ONLY = {
    401: {"description": "Missing or invalid bearer token"},
    403: {"description": "Admin access required"},
}


class AdminCatalogApi(StoreApi):
    """Catch entry, inventory, default prices, trip schedule and profile of the signed-in fisherman."""

    def __init__(
        self,
        catalog: CatalogService,
        auth: Authenticator,
    ) -> None:
        self._catalog = catalog
        self._auth = auth

    def create_router(self) -> APIRouter:
        router = APIRouter(prefix="/admin", tags=["admin"], responses=ADMIN_ONLY)

        admin = Depends(self._auth.admin)

        # --- catches & products ---
        def add_catch(body: CatchIn, user: UserOut = admin):
            return self._catalog.add_catch(user, body)

        def list_catches(user: UserOut = admin):
            return self._catalog.catch_groups(user)

        def delete_catch(id: ULID, user: UserOut = admin):
            self._catalog.delete_catch(user, id)
            return Response(status_code=204)

        def update_product(id: ULID, body: ProductUpdate, user: UserOut = admin):
            return self._catalog.update_product(user, id, body)

        def delete_product(id: ULID, user: UserOut = admin):
            self._catalog.delete_product(user, id)
            return Response(status_code=204)

        router.add_api_route(
            path="/catches",
            endpoint=add_catch,
            methods=["POST"],
            response_model=CatchGroup,
            status_code=201,
            name="add_catch",
            summary="Enter a catch with its products and fulfillment slots",
            responses={
                201: {"description": "Catch created"},
                400: {"description": "Malformed entry, or an entry without price and without a default price"},
            },
        )

        router.add_api_route(
            path="/catches",
            endpoint=list_catches,
            methods=["GET"],
            response_model=list[CatchGroup],
            name="list_catches",
            summary="Catches with their products and slots, newest first",
        )

        router.add_api_route(
            path="/catches/{id}",
            endpoint=delete_catch,
            methods=["DELETE"],
            status_code=204,
            name="delete_catch",
            summary="Delete a catch together with its products and slots",
            responses={
                204: {"description": "Catch deleted"},
                404: {"description": "Catch not found"},
            },
        )

        router.add_api_route(
            path="/products/{id}",
            endpoint=update_product,
            methods=["PATCH"],
            response_model=ProductOut,
            name="update_product",
            summary="Change the price or available quantity of a product",
            responses={404: {"description": "Product not found"}},
        )

        router.add_api_route(
            path="/products/{id}",
            endpoint=delete_product,
            methods=["DELETE"],
            status_code=204,
            name="delete_product",
            summary="Delete a product",
            responses={
                204: {"description": "Product deleted"},
                404: {"description": "Product not found"},
            },
        )

        # --- default prices ---
        def list_default_prices(user: UserOut = admin):
            return self._catalog.list_default_prices(user)

        def create_default_price(body: DefaultPriceIn, user: UserOut = admin):
            return self._catalog.create_default_price(user, body)

        def update_default_price(id: ULID, body: DefaultPriceUpdate, user: UserOut = admin):
            return self._catalog.update_default_price(user, id, body.price_per_kg)

        def delete_default_price(id: ULID, user: UserOut = admin):
            self._catalog.delete_default_price(user, id)
            return Response(status_code=204)

        router.add_api_route(
            path="/default-prices",
            endpoint=list_default_prices,
            methods=["GET"],
            response_model=list[DefaultPriceOut],
            name="list_default_prices",
            summary="Default prices by species and form",
        )

        router.add_api_route(
            path="/default-prices",
            endpoint=create_default_price,
            methods=["POST"],
            response_model=DefaultPriceOut,
            status_code=201,
            name="create_default_price",
            summary="Add a default price for a species and form",
            responses={
                201: {"description": "Default price created"},
                409: {"description": "A default price for this species and form already exists"},
            },
        )

        router.add_api_route(
            path="/default-prices/{id}",
            endpoint=update_default_price,
            methods=["PATCH"],
            response_model=DefaultPriceOut,
            name="update_default_price",
            summary="Change a default price",
            responses={404: {"description": "Default price not found"}},
        )

        router.add_api_route(
            path="/default-prices/{id}",
            endpoint=delete_default_price,
            methods=["DELETE"],
            status_code=204,
            name="delete_default_price",
            summary="Delete a default price",
            responses={
                204: {"description": "Default price deleted"},
                404: {"description": "Default price not found"},
            },
        )

        # --- trip schedule ---
        def month_schedule(year: int, month: int, user: UserOut = admin):
            return self._catalog.my_trips_in_month(user, year, month)

        def save_month_schedule(year: int, month: int, body: ScheduleIn, user: UserOut = admin):
            return self._catalog.save_month_schedule(user, year, month, body.dates)

        router.add_api_route(
            path="/trips/{year}/{month}",
            endpoint=month_schedule,
            methods=["GET"],
            response_model=list[PlannedTripOut],
            name="month_schedule",
            summary="Planned fishing trips for one month",
        )

        router.add_api_route(
            path="/trips/{year}/{month}",
            endpoint=save_month_schedule,
            methods=["PUT"],
            response_model=list[PlannedTripOut],
            name="save_month_schedule",
            summary="Replace the planned trips of a month from today on",
            responses={400: {"description": "Date outside the month or in the past"}},
        )

        # --- profile ---
        def get_profile(user: UserOut = admin):
            return self._catalog.get_profile(user)

        def put_profile(body: FishermanProfileIn, user: UserOut = admin):
            return self._catalog.upsert_profile(user, body)

        router.add_api_route(
            path="/profile",
            endpoint=get_profile,
            methods=["GET"],
            response_model=FishermanProfileOut,
            name="get_profile",
            summary="The signed-in fisherman's profile",
            responses={404: {"description": "Profile not set up yet"}},
        )

        router.add_api_route(
            path="/profile",
            endpoint=put_profile,
            methods=["PUT"],
            response_model=FishermanProfileOut,
            name="put_profile",
            summary="Create or replace the fisherman profile",
        )

        return router
