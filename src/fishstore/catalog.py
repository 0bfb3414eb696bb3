"""Storefront listings and the fisherman's catalog administration."""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import structlog
from ulid import ULID

from fishstore.database import StoreDatabase
from fishstore.errors import NotFoundError, ValidationError
from fishstore.notifications import SubscriptionService
from fishstore.types import (
    BroadcastResult,
    CatchGroup,
    CatchIn,
    DefaultPriceIn,
    DefaultPriceOut,
    FishermanProfileIn,
    FishermanProfileOut,
    FulfillmentType,
    PlannedTripOut,
    ProductOut,
    ProductUpdate,
    SlotOut,
    UserOut,
)

log = structlog.get_logger(__name__)

PUBLIC_TRIP_WINDOW = timedelta(days=90)


class CatalogService:
    def __init__(
        self,
        database: StoreDatabase,
        subscriptions: SubscriptionService,
        timezone_name: str = "Europe/Helsinki",
    ) -> None:
        self._database = database
        self._subscriptions = subscriptions
        self._tz = ZoneInfo(timezone_name)

    def today(self) -> date:
        """The current date where the fisherman works."""
        return datetime.now(self._tz).date()

    def _profile(self, admin: UserOut) -> FishermanProfileOut:
        profile = self._database.get_profile_for_user(admin.id)
        if profile is None:
            raise NotFoundError("Fisherman profile not found")
        return profile

    # --- storefront ---
    def available_products(self) -> list[ProductOut]:
        return self._database.list_available_products()

    def products_by_ids(self, ids: list[ULID]) -> list[ProductOut]:
        return self._database.get_products(ids)

    def available_slots(
        self, fisherman_id: ULID, type: FulfillmentType | None = None, now: datetime | None = None
    ) -> list[SlotOut]:
        """Slots that have not started yet, earliest first."""
        if self._database.get_profile(fisherman_id) is None:
            raise NotFoundError(f"Fisherman {fisherman_id} not found")
        return self._database.list_slots(fisherman_id, after=now or datetime.now(timezone.utc), type=type)

    def homepage_profiles(self) -> list[FishermanProfileOut]:
        return self._database.list_homepage_profiles()

    def public_trips(self, start: date | None = None, end: date | None = None) -> list[PlannedTripOut]:
        start = start or self.today()
        end = end or start + PUBLIC_TRIP_WINDOW
        if end < start:
            raise ValidationError("End date must not be before start date")
        return self._database.list_trips(start, end)

    # --- catches & products ---
    def add_catch(self, admin: UserOut, catch: CatchIn) -> CatchGroup:
        """Enter a catch with its products and fulfillment slots.

        Entries without a price take the fisherman's default price for the same
        species and form; an entry with neither is rejected.
        """
        profile = self._profile(admin)

        entries = []
        for entry in catch.entries:
            if entry.price_per_kg is None:
                price = self._database.find_default_price(profile.id, entry.species, entry.form)
                if price is None:
                    raise ValidationError(f"No price given and no default price for {entry.species} ({entry.form})")
                entry = entry.model_copy(update={"price_per_kg": price})
            entries.append(entry)

        group = self._database.add_catch(profile.id, catch.catch_date, entries, catch.slots)
        log.info(
            "catch_added",
            catch_id=str(group.catch_id),
            products=len(group.products),
            slots=len(group.fulfillment_slots),
        )

        if catch.notify_subscribers:
            self._subscriptions.broadcast_new_catch()
        return group

    def catch_groups(self, admin: UserOut) -> list[CatchGroup]:
        return self._database.get_catch_groups(self._profile(admin).id)

    def delete_catch(self, admin: UserOut, catch_id: ULID) -> None:
        if not self._database.delete_catch(self._profile(admin).id, catch_id):
            raise NotFoundError(f"Catch {catch_id} not found")
        log.info("catch_deleted", catch_id=str(catch_id))

    def update_product(self, admin: UserOut, product_id: ULID, changes: ProductUpdate) -> ProductOut:
        product = self._database.update_product(self._profile(admin).id, product_id, changes)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def update_product_quantity(self, admin: UserOut, product_id: ULID, quantity: float) -> ProductOut:
        return self.update_product(admin, product_id, ProductUpdate(available_quantity=quantity))

    def update_product_price(self, admin: UserOut, product_id: ULID, price_per_kg: float) -> ProductOut:
        return self.update_product(admin, product_id, ProductUpdate(price_per_kg=price_per_kg))

    def delete_product(self, admin: UserOut, product_id: ULID) -> None:
        if not self._database.delete_product(self._profile(admin).id, product_id):
            raise NotFoundError(f"Product {product_id} not found")

    def broadcast_new_catch(self) -> BroadcastResult:
        return self._subscriptions.broadcast_new_catch()

    # --- default prices ---
    def list_default_prices(self, admin: UserOut) -> list[DefaultPriceOut]:
        return self._database.list_default_prices(self._profile(admin).id)

    def create_default_price(self, admin: UserOut, price: DefaultPriceIn) -> DefaultPriceOut:
        return self._database.add_default_price(self._profile(admin).id, price)

    def update_default_price(self, admin: UserOut, price_id: ULID, price_per_kg: float) -> DefaultPriceOut:
        updated = self._database.update_default_price(self._profile(admin).id, price_id, round(price_per_kg, 2))
        if updated is None:
            raise NotFoundError(f"Default price {price_id} not found")
        return updated

    def delete_default_price(self, admin: UserOut, price_id: ULID) -> None:
        if not self._database.delete_default_price(self._profile(admin).id, price_id):
            raise NotFoundError(f"Default price {price_id} not found")

    def default_price_for(self, admin: UserOut, species: str, form: str) -> float | None:
        return self._database.find_default_price(self._profile(admin).id, species, form)

    # --- planned trips ---
    @staticmethod
    def _month_bounds(year: int, month: int) -> tuple[date, date]:
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month: {month}")
        return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])

    def trips_in_month(self, fisherman_id: ULID, year: int, month: int) -> list[PlannedTripOut]:
        start, end = self._month_bounds(year, month)
        return self._database.list_trips(start, end, fisherman_id)

    def my_trips_in_month(self, admin: UserOut, year: int, month: int) -> list[PlannedTripOut]:
        return self.trips_in_month(self._profile(admin).id, year, month)

    def save_month_schedule(
        self, admin: UserOut, year: int, month: int, dates: list[date], today: date | None = None
    ) -> list[PlannedTripOut]:
        """Replace the fisherman's planned trips for one month.

        Past days of the month keep whatever was saved for them; only today and
        later can be changed.
        """
        profile = self._profile(admin)
        start, end = self._month_bounds(year, month)
        today = today or self.today()

        if end < today:
            raise ValidationError(f"Cannot change the schedule of a past month ({year}-{month:02d})")

        for d in dates:
            if not start <= d <= end:
                raise ValidationError(f"Date {d.isoformat()} is not in {year}-{month:02d}")
            if d < today:
                raise ValidationError(f"Date {d.isoformat()} is in the past")

        self._database.replace_trips(profile.id, max(start, today), end, dates)
        log.info("schedule_saved", fisherman_id=str(profile.id), year=year, month=month, trips=len(set(dates)))
        return self._database.list_trips(start, end, profile.id)

    # --- profile ---
    def get_profile(self, admin: UserOut) -> FishermanProfileOut:
        return self._profile(admin)

    def upsert_profile(self, admin: UserOut, profile: FishermanProfileIn) -> FishermanProfileOut:
        saved = self._database.upsert_profile(admin.id, profile)
        log.info("profile_saved", profile_id=str(saved.id))
        return saved
