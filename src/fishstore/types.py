from __future__ import annotations

import re
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError
from ulid import ULID

from fishstore.errors import ValidationError as StoreValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _round2(value: float) -> float:
    return round(value, 2)


# Money and weights are kept to two decimals, like NUMERIC(10,2)
Euros = Annotated[float, Field(ge=0), AfterValidator(_round2)]
Kilograms = Annotated[float, Field(ge=0), AfterValidator(_round2)]
# Bounds run before rounding, so ge=0.01 keeps the rounded value above zero
PricePerKg = Annotated[float, Field(ge=0.01), AfterValidator(_round2)]
PositiveKilograms = Annotated[float, Field(ge=0.01), AfterValidator(_round2)]


class UserRole(StrEnum):
    admin = "ADMIN"
    customer = "CUSTOMER"


class FulfillmentType(StrEnum):
    pickup = "PICKUP"
    delivery = "DELIVERY"


class OrderStatus(StrEnum):
    new = "NEW"
    confirmed = "CONFIRMED"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


# Allowed admin-driven status changes; anything absent is rejected
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.new: frozenset({OrderStatus.confirmed, OrderStatus.cancelled}),
    OrderStatus.confirmed: frozenset({OrderStatus.completed, OrderStatus.cancelled}),
    OrderStatus.completed: frozenset(),
    OrderStatus.cancelled: frozenset(),
}


class HealthStatus(StrEnum):
    up = "up"
    down = "down"


class HealthResponse(BaseModel):
    status: HealthStatus
    model_config = ConfigDict(extra="allow")


class ServiceInfo(BaseModel):
    display_name: str
    version: str
    site_url: str
    contact_email: EmailStr | None = None

    model_config = ConfigDict(extra="forbid")


# ---------- accounts ----------
class Identity(BaseModel):
    """An account as reported by the hosted identity provider."""

    external_id: str
    email: str
    full_name: str | None = None
    avatar_url: str | None = None


class UserOut(BaseModel):
    id: ULID
    email: str
    full_name: str | None = None
    avatar_url: str | None = None
    phone_number: str | None = None
    role: UserRole
    created_at: datetime | None = None


class UserUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1)
    phone_number: str | None = Field(default=None, min_length=1)


class EmailRequest(BaseModel):
    # Plain str so a malformed address gets the "Invalid email format" message
    email: str = ""

    def checked(self) -> str:
        """The trimmed address, or a `ValidationError` when it is missing or malformed."""
        email = self.email.strip()
        if not email:
            raise StoreValidationError("Email is required")
        if not EMAIL_PATTERN.match(email):
            raise StoreValidationError("Invalid email format")
        return email


class ActionResult(BaseModel):
    success: bool = True
    message: str


class FishermanProfileIn(BaseModel):
    pickup_address: str = Field(min_length=1)
    default_delivery_fee: Euros = 0.0
    public_phone_number: str | None = None
    signature_image_url: str | None = None
    fishermans_note: str | None = None
    display_on_homepage: bool = False


class FishermanProfileOut(FishermanProfileIn):
    id: ULID
    user_id: ULID
    full_name: str | None = None


# ---------- catalog ----------
class ProductOut(BaseModel):
    id: ULID
    catch_id: ULID
    fisherman_id: ULID
    species: str
    form: str
    price_per_kg: float
    available_quantity: float
    catch_date: date
    fisherman_name: str | None = None
    created_at: datetime | None = None


class ProductUpdate(BaseModel):
    price_per_kg: PricePerKg | None = None
    available_quantity: Kilograms | None = None


class ProductIdsRequest(BaseModel):
    product_ids: list[ULID] = Field(min_length=1)


class SlotIn(BaseModel):
    start_time: datetime
    end_time: datetime
    type: FulfillmentType

    @field_validator("start_time", "end_time")
    @classmethod
    def _naive_is_utc(cls, value: datetime) -> datetime:
        # Stored as UTC, so a time without an offset is read as UTC
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value

    @model_validator(mode="after")
    def _end_after_start(self) -> SlotIn:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SlotOut(SlotIn):
    id: ULID
    fisherman_id: ULID
    catch_id: ULID


class CatchEntryIn(BaseModel):
    species: str = Field(min_length=1)
    form: str = Field(min_length=1)
    # None means "use the default price for this species and form"
    price_per_kg: PricePerKg | None = None
    available_quantity: PositiveKilograms


class CatchIn(BaseModel):
    catch_date: date
    entries: list[CatchEntryIn] = Field(min_length=1)
    slots: list[SlotIn] = Field(min_length=1)
    notify_subscribers: bool = True


class CatchGroup(BaseModel):
    catch_id: ULID
    catch_date: date
    products: list[ProductOut] = Field(default_factory=list)
    fulfillment_slots: list[SlotOut] = Field(default_factory=list)


class DefaultPriceIn(BaseModel):
    species: str = Field(min_length=1)
    form: str = Field(min_length=1)
    price_per_kg: PricePerKg


class DefaultPriceUpdate(BaseModel):
    price_per_kg: PricePerKg


class DefaultPriceOut(DefaultPriceIn):
    id: ULID
    fisherman_id: ULID


class PlannedTripOut(BaseModel):
    id: ULID
    fisherman_id: ULID
    trip_date: date
    notes: str | None = None


class ScheduleIn(BaseModel):
    dates: list[date] = Field(default_factory=list)


# ---------- subscriptions ----------
class SubscriptionOut(BaseModel):
    id: ULID
    email: str
    subscribed_at: datetime | None = None


class SubscribeResponse(BaseModel):
    success: bool = True
    new_subscription: bool
    message: str


class BroadcastResult(BaseModel):
    message: str
    successful: int | None = None
    failed: int | None = None


# ---------- orders ----------
class CamelModel(BaseModel):
    """Accepts and emits the camelCase keys the storefront client sends."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderLine(CamelModel):
    product_id: ULID
    quantity: PositiveKilograms


class CreateOrderRequest(CamelModel):
    cart_items: list[OrderLine] = Field(default_factory=list)
    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=1)
    customer_address: str | None = None
    fulfillment_type: FulfillmentType
    fulfillment_slot_id: ULID | None = None

    @model_validator(mode="before")
    @classmethod
    def _cart_not_empty(cls, data):
        if isinstance(data, dict) and not (data.get("cartItems") or data.get("cart_items")):
            raise PydanticCustomError("empty_cart", "Cart is empty")
        return data


class CreateOrderResponse(CamelModel):
    success: bool = True
    order_id: ULID
    message: str = "Order created successfully"


class OrderItemOut(BaseModel):
    id: ULID
    product_id: ULID
    species: str
    form: str
    price_per_kg: float
    quantity: float
    line_total: float


class OrderOut(BaseModel):
    id: ULID
    customer_id: ULID
    fisherman_profile_id: ULID
    customer_name: str
    customer_phone: str
    customer_address: str | None = None
    fulfillment_type: FulfillmentType
    fulfillment_slot: SlotOut | None = None
    final_delivery_fee: float = 0.0
    status: OrderStatus
    created_at: datetime | None = None
    items: list[OrderItemOut] = Field(default_factory=list)
    items_total: float = 0.0
    total: float = 0.0


class ConfirmOrderIn(BaseModel):
    delivery_fee: Euros | None = None


class NewOrderCount(BaseModel):
    count: int
