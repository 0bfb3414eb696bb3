from __future__ import annotations

import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

import structlog
from sqlalchemy import (
    CHAR,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, selectinload
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator
from ulid import ULID

from fishstore.errors import ConflictError, InvalidTransitionError, NotFoundError, SoldOutError
from fishstore.pricing import calculate_total, items_total
from fishstore.types import (
    ORDER_TRANSITIONS,
    CatchEntryIn,
    CatchGroup,
    CreateOrderRequest,
    DefaultPriceIn,
    DefaultPriceOut,
    FishermanProfileIn,
    FishermanProfileOut,
    FulfillmentType,
    Identity,
    OrderItemOut,
    OrderOut,
    OrderStatus,
    PlannedTripOut,
    ProductOut,
    ProductUpdate,
    SlotIn,
    SlotOut,
    SubscriptionOut,
    UserOut,
    UserRole,
)

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> ULID:
    return ULID()


class ULIDType(TypeDecorator):
    """
    Custom SQLAlchemy type for ULID.
    It stores ULID as a CHAR(26) in the database.
    """

    impl = CHAR(26)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return ULID.from_str(value)
        return value


class UTCDateTime(TypeDecorator):
    """Timestamps are stored as naive UTC and handed back timezone-aware."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def _enum(enum_cls):
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16)


def _amount():
    return Numeric(10, 2, asdecimal=False)


class StoreDatabase(ABC):
    @abstractmethod
    def ping(self) -> bool: ...

    # users & profiles
    @abstractmethod
    def upsert_identity(self, identity: Identity) -> UserOut: ...
    @abstractmethod
    def get_user(self, id: ULID) -> UserOut | None: ...
    @abstractmethod
    def get_user_by_email(self, email: str) -> UserOut | None: ...
    @abstractmethod
    def update_user(self, id: ULID, *, full_name: str | None = None, phone_number: str | None = None) -> UserOut: ...
    @abstractmethod
    def set_user_role(self, id: ULID, role: UserRole) -> UserOut: ...
    @abstractmethod
    def get_profile(self, id: ULID) -> FishermanProfileOut | None: ...
    @abstractmethod
    def get_profile_for_user(self, user_id: ULID) -> FishermanProfileOut | None: ...
    @abstractmethod
    def upsert_profile(self, user_id: ULID, profile: FishermanProfileIn) -> FishermanProfileOut: ...
    @abstractmethod
    def list_homepage_profiles(self) -> list[FishermanProfileOut]: ...

    # catches, products, slots
    @abstractmethod
    def add_catch(
        self, fisherman_id: ULID, catch_date: date, entries: list[CatchEntryIn], slots: list[SlotIn]
    ) -> CatchGroup: ...
    @abstractmethod
    def get_catch_groups(self, fisherman_id: ULID) -> list[CatchGroup]: ...
    @abstractmethod
    def delete_catch(self, fisherman_id: ULID, catch_id: ULID) -> bool: ...
    @abstractmethod
    def list_available_products(self) -> list[ProductOut]: ...
    @abstractmethod
    def get_products(self, ids: list[ULID]) -> list[ProductOut]: ...
    @abstractmethod
    def get_product(self, id: ULID) -> ProductOut | None: ...
    @abstractmethod
    def update_product(self, fisherman_id: ULID, id: ULID, changes: ProductUpdate) -> ProductOut | None: ...
    @abstractmethod
    def delete_product(self, fisherman_id: ULID, id: ULID) -> bool: ...
    @abstractmethod
    def list_slots(
        self, fisherman_id: ULID, *, after: datetime | None = None, type: FulfillmentType | None = None
    ) -> list[SlotOut]: ...
    @abstractmethod
    def get_slot(self, id: ULID) -> SlotOut | None: ...

    # default prices
    @abstractmethod
    def list_default_prices(self, fisherman_id: ULID) -> list[DefaultPriceOut]: ...
    @abstractmethod
    def add_default_price(self, fisherman_id: ULID, price: DefaultPriceIn) -> DefaultPriceOut: ...
    @abstractmethod
    def update_default_price(self, fisherman_id: ULID, id: ULID, price_per_kg: float) -> DefaultPriceOut | None: ...
    @abstractmethod
    def delete_default_price(self, fisherman_id: ULID, id: ULID) -> bool: ...
    @abstractmethod
    def find_default_price(self, fisherman_id: ULID, species: str, form: str) -> float | None: ...

    # planned trips
    @abstractmethod
    def list_trips(self, start: date, end: date, fisherman_id: ULID | None = None) -> list[PlannedTripOut]: ...
    @abstractmethod
    def replace_trips(self, fisherman_id: ULID, start: date, end: date, dates: list[date]) -> list[PlannedTripOut]: ...

    # subscriptions
    @abstractmethod
    def add_subscription(self, email: str) -> tuple[SubscriptionOut, bool]: ...
    @abstractmethod
    def list_subscriptions(self) -> list[SubscriptionOut]: ...

    # orders
    @abstractmethod
    def place_order(
        self, customer_id: ULID, fisherman_profile_id: ULID, delivery_fee: float, request: CreateOrderRequest
    ) -> OrderOut: ...
    @abstractmethod
    def get_order(self, id: ULID) -> OrderOut | None: ...
    @abstractmethod
    def list_orders(self, fisherman_profile_id: ULID, status: OrderStatus | None = None) -> list[OrderOut]: ...
    @abstractmethod
    def list_customer_orders(self, customer_id: ULID) -> list[OrderOut]: ...
    @abstractmethod
    def count_orders(self, fisherman_profile_id: ULID, status: OrderStatus) -> int: ...
    @abstractmethod
    def set_order_status(
        self,
        id: ULID,
        status: OrderStatus,
        *,
        fisherman_profile_id: ULID | None = None,
        delivery_fee: float | None = None,
    ) -> OrderOut: ...


# ---------- ORM base & rows ----------
class Base(DeclarativeBase):
    id: Mapped[ULID] = mapped_column(ULIDType, primary_key=True, default=_new_id)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow)


class UserRow(Base):
    __tablename__ = "users"
    external_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(320), index=True)
    full_name: Mapped[str | None]
    avatar_url: Mapped[str | None]
    phone_number: Mapped[str | None]
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), default=UserRole.customer)
    profile: Mapped[Optional["FishermanProfileRow"]] = relationship(back_populates="user", passive_deletes=True)


class FishermanProfileRow(Base):
    __tablename__ = "fisherman_profiles"
    user_id: Mapped[ULID] = mapped_column(ULIDType, ForeignKey("users.id", ondelete="CASCADE"), unique=True)
    pickup_address: Mapped[str]
    default_delivery_fee: Mapped[float] = mapped_column(_amount(), default=0.0)
    public_phone_number: Mapped[str | None]
    signature_image_url: Mapped[str | None]
    fishermans_note: Mapped[str | None]
    display_on_homepage: Mapped[bool] = mapped_column(default=False)
    user: Mapped[UserRow] = relationship(back_populates="profile")


class CatchRow(Base):
    __tablename__ = "catches"
    fisherman_id: Mapped[ULID] = mapped_column(
        ULIDType, ForeignKey("fisherman_profiles.id", ondelete="CASCADE"), index=True
    )
    catch_date: Mapped[date] = mapped_column(Date)
    products: Mapped[list["ProductRow"]] = relationship(
        back_populates="catch", cascade="all, delete-orphan", passive_deletes=True
    )
    slots: Mapped[list["FulfillmentSlotRow"]] = relationship(
        back_populates="catch", cascade="all, delete-orphan", passive_deletes=True
    )


class ProductRow(Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("available_quantity >= 0", name="ck_products_quantity_non_negative"),)
    fisherman_id: Mapped[ULID] = mapped_column(
        ULIDType, ForeignKey("fisherman_profiles.id", ondelete="CASCADE"), index=True
    )
    catch_id: Mapped[ULID] = mapped_column(ULIDType, ForeignKey("catches.id", ondelete="CASCADE"), index=True)
    species: Mapped[str]
    form: Mapped[str]
    price_per_kg: Mapped[float] = mapped_column(_amount())
    available_quantity: Mapped[float] = mapped_column(_amount(), default=0.0)
    catch: Mapped[CatchRow] = relationship(back_populates="products")
    fisherman: Mapped[FishermanProfileRow] = relationship()


class FulfillmentSlotRow(Base):
    __tablename__ = "fulfillment_slots"
    fisherman_id: Mapped[ULID] = mapped_column(
        ULIDType, ForeignKey("fisherman_profiles.id", ondelete="CASCADE"), index=True
    )
    catch_id: Mapped[ULID] = mapped_column(ULIDType, ForeignKey("catches.id", ondelete="CASCADE"), index=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime)
    type: Mapped[FulfillmentType] = mapped_column(_enum(FulfillmentType))
    catch: Mapped[CatchRow] = relationship(back_populates="slots")


class OrderRow(Base):
    __tablename__ = "orders"
    customer_id: Mapped[ULID] = mapped_column(ULIDType, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    fisherman_profile_id: Mapped[ULID] = mapped_column(
        ULIDType, ForeignKey("fisherman_profiles.id", ondelete="CASCADE"), index=True
    )
    fulfillment_slot_id: Mapped[ULID | None] = mapped_column(
        ULIDType, ForeignKey("fulfillment_slots.id", ondelete="SET NULL"), nullable=True
    )
    fulfillment_type: Mapped[FulfillmentType] = mapped_column(_enum(FulfillmentType))
    final_delivery_fee: Mapped[float] = mapped_column(_amount(), default=0.0)
    status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus), default=OrderStatus.new, index=True)
    customer_name: Mapped[str]
    customer_phone: Mapped[str]
    customer_address: Mapped[str | None]
    items: Mapped[list["OrderItemRow"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", passive_deletes=True
    )
    slot: Mapped[Optional[FulfillmentSlotRow]] = relationship()


class OrderItemRow(Base):
    __tablename__ = "order_items"
    order_id: Mapped[ULID] = mapped_column(ULIDType, ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[ULID] = mapped_column(ULIDType, ForeignKey("products.id", ondelete="CASCADE"))
    quantity: Mapped[float] = mapped_column(_amount())
    order: Mapped[OrderRow] = relationship(back_populates="items")
    product: Mapped[ProductRow] = relationship()


class DefaultPriceRow(Base):
    __tablename__ = "default_prices"
    __table_args__ = (UniqueConstraint("fisherman_id", "species", "form", name="uq_default_prices_species_form"),)
    fisherman_id: Mapped[ULID] = mapped_column(ULIDType, ForeignKey("fisherman_profiles.id", ondelete="CASCADE"))
    species: Mapped[str]
    form: Mapped[str]
    price_per_kg: Mapped[float] = mapped_column(_amount())


class PlannedTripRow(Base):
    __tablename__ = "planned_trips"
    __table_args__ = (UniqueConstraint("fisherman_id", "trip_date", name="uq_planned_trips_fisherman_date"),)
    fisherman_id: Mapped[ULID] = mapped_column(ULIDType, ForeignKey("fisherman_profiles.id", ondelete="CASCADE"))
    trip_date: Mapped[date] = mapped_column(Date)
    notes: Mapped[str | None]


class EmailSubscriptionRow(Base):
    __tablename__ = "email_subscriptions"
    email: Mapped[str] = mapped_column(String(320), unique=True)


# ---------- helper: engine factory ----------
def make_engine(url: str) -> Engine:
    sa_url = make_url(url)

    if not sa_url.drivername.startswith("sqlite"):
        return create_engine(sa_url, echo=False, pool_pre_ping=True)

    in_memory = sa_url.database in (None, "", ":memory:")
    if not in_memory:
        os.makedirs(Path(sa_url.database).parent, exist_ok=True)

    engine = create_engine(
        sa_url,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30.0},
        # A single shared connection keeps an in-memory database alive across threads
        poolclass=StaticPool if in_memory else None,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _record) -> None:
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        # ON DELETE CASCADE between catches, products and order items relies on this
        cur.execute("PRAGMA foreign_keys=ON;")
        cur.execute("PRAGMA busy_timeout=30000;")
        cur.execute("PRAGMA temp_store=MEMORY;")
        cur.close()

    return engine


# ---------- row -> model helpers ----------
def _user_out(row: UserRow) -> UserOut:
    return UserOut(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        avatar_url=row.avatar_url,
        phone_number=row.phone_number,
        role=row.role,
        created_at=row.created_at,
    )


def _profile_out(row: FishermanProfileRow) -> FishermanProfileOut:
    return FishermanProfileOut(
        id=row.id,
        user_id=row.user_id,
        full_name=row.user.full_name if row.user else None,
        pickup_address=row.pickup_address,
        default_delivery_fee=row.default_delivery_fee or 0.0,
        public_phone_number=row.public_phone_number,
        signature_image_url=row.signature_image_url,
        fishermans_note=row.fishermans_note,
        display_on_homepage=row.display_on_homepage,
    )


def _product_out(row: ProductRow) -> ProductOut:
    return ProductOut(
        id=row.id,
        catch_id=row.catch_id,
        fisherman_id=row.fisherman_id,
        species=row.species,
        form=row.form,
        price_per_kg=row.price_per_kg,
        available_quantity=round(row.available_quantity, 2),
        catch_date=row.catch.catch_date,
        fisherman_name=row.fisherman.user.full_name if row.fisherman and row.fisherman.user else None,
        created_at=row.created_at,
    )


def _slot_out(row: FulfillmentSlotRow) -> SlotOut:
    return SlotOut(
        id=row.id,
        fisherman_id=row.fisherman_id,
        catch_id=row.catch_id,
        start_time=row.start_time,
        end_time=row.end_time,
        type=row.type,
    )


def _catch_group(row: CatchRow) -> CatchGroup:
    products = sorted(row.products, key=lambda p: (p.created_at, str(p.id)), reverse=True)
    slots = sorted(row.slots, key=lambda sl: sl.start_time)
    return CatchGroup(
        catch_id=row.id,
        catch_date=row.catch_date,
        products=[_product_out(p) for p in products],
        fulfillment_slots=[_slot_out(sl) for sl in slots],
    )


def _default_price_out(row: DefaultPriceRow) -> DefaultPriceOut:
    return DefaultPriceOut(
        id=row.id, fisherman_id=row.fisherman_id, species=row.species, form=row.form, price_per_kg=row.price_per_kg
    )


def _trip_out(row: PlannedTripRow) -> PlannedTripOut:
    return PlannedTripOut(id=row.id, fisherman_id=row.fisherman_id, trip_date=row.trip_date, notes=row.notes)


def _subscription_out(row: EmailSubscriptionRow) -> SubscriptionOut:
    return SubscriptionOut(id=row.id, email=row.email, subscribed_at=row.created_at)


def _order_out(row: OrderRow) -> OrderOut:
    # Price is read live from the product; orders carry no price snapshot
    items = [
        OrderItemOut(
            id=item.id,
            product_id=item.product_id,
            species=item.product.species,
            form=item.product.form,
            price_per_kg=item.product.price_per_kg,
            quantity=item.quantity,
            line_total=round(item.quantity * item.product.price_per_kg, 2),
        )
        for item in row.items
    ]
    return OrderOut(
        id=row.id,
        customer_id=row.customer_id,
        fisherman_profile_id=row.fisherman_profile_id,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        customer_address=row.customer_address,
        fulfillment_type=row.fulfillment_type,
        fulfillment_slot=_slot_out(row.slot) if row.slot else None,
        final_delivery_fee=row.final_delivery_fee or 0.0,
        status=row.status,
        created_at=row.created_at,
        items=items,
        items_total=items_total(items),
        total=calculate_total(items, row.fulfillment_type, row.final_delivery_fee),
    )


_ORDER_LOAD = (
    selectinload(OrderRow.items).selectinload(OrderItemRow.product),
    selectinload(OrderRow.slot),
)

_PRODUCT_LOAD = (
    selectinload(ProductRow.catch),
    selectinload(ProductRow.fisherman).selectinload(FishermanProfileRow.user),
)


# ---------- Database (per-instance engine & session) ----------
class SqlAlchemyStoreDatabase(StoreDatabase):
    def __init__(self, url: str = "sqlite:///target/fishstore.db") -> None:
        self._engine: Engine = make_engine(url)
        Base.metadata.create_all(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def dispose(self) -> None:
        self._engine.dispose()

    def ping(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            log.error("database_unreachable", error=repr(e))
            return False

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine, expire_on_commit=False) as s:
            try:
                yield s
                s.commit()
            except Exception:
                s.rollback()
                raise

    # --- users ---
    def upsert_identity(self, identity: Identity) -> UserOut:
        with self._session() as s:
            row = s.scalars(select(UserRow).where(UserRow.external_id == identity.external_id)).one_or_none()
            if row is None:
                row = UserRow(
                    external_id=identity.external_id,
                    email=identity.email,
                    full_name=identity.full_name,
                    avatar_url=identity.avatar_url,
                    role=UserRole.customer,
                )
                s.add(row)
                s.flush()
                log.info("user_created", user_id=str(row.id))
            elif row.email != identity.email:
                row.email = identity.email
            return _user_out(row)

    def get_user(self, id: ULID) -> UserOut | None:
        with self._session() as s:
            row = s.get(UserRow, id)
            return _user_out(row) if row else None

    def get_user_by_email(self, email: str) -> UserOut | None:
        with self._session() as s:
            row = s.scalars(select(UserRow).where(func.lower(UserRow.email) == email.lower())).first()
            return _user_out(row) if row else None

    def update_user(self, id: ULID, *, full_name: str | None = None, phone_number: str | None = None) -> UserOut:
        with self._session() as s:
            row = s.get(UserRow, id)
            if row is None:
                raise NotFoundError(f"User {id} not found")
            if full_name is not None:
                row.full_name = full_name
            if phone_number is not None:
                row.phone_number = phone_number
            return _user_out(row)

    def set_user_role(self, id: ULID, role: UserRole) -> UserOut:
        with self._session() as s:
            row = s.get(UserRow, id)
            if row is None:
                raise NotFoundError(f"User {id} not found")
            row.role = role
            return _user_out(row)

    # --- fisherman profiles ---
    def get_profile(self, id: ULID) -> FishermanProfileOut | None:
        with self._session() as s:
            row = s.get(FishermanProfileRow, id)
            return _profile_out(row) if row else None

    def get_profile_for_user(self, user_id: ULID) -> FishermanProfileOut | None:
        with self._session() as s:
            row = s.scalars(select(FishermanProfileRow).where(FishermanProfileRow.user_id == user_id)).one_or_none()
            return _profile_out(row) if row else None

    def upsert_profile(self, user_id: ULID, profile: FishermanProfileIn) -> FishermanProfileOut:
        fields = profile.model_dump(include=set(FishermanProfileIn.model_fields))
        with self._session() as s:
            row = s.scalars(select(FishermanProfileRow).where(FishermanProfileRow.user_id == user_id)).one_or_none()
            if row is None:
                row = FishermanProfileRow(user_id=user_id, **fields)
                s.add(row)
            else:
                for key, value in fields.items():
                    setattr(row, key, value)
            s.flush()
            s.refresh(row)
            return _profile_out(row)

    def list_homepage_profiles(self) -> list[FishermanProfileOut]:
        with self._session() as s:
            rows = s.scalars(
                select(FishermanProfileRow)
                .where(FishermanProfileRow.display_on_homepage.is_(True))
                .options(selectinload(FishermanProfileRow.user))
                .order_by(FishermanProfileRow.created_at)
            ).all()
            return [_profile_out(r) for r in rows]

    # --- catches, products, slots ---
    def add_catch(
        self, fisherman_id: ULID, catch_date: date, entries: list[CatchEntryIn], slots: list[SlotIn]
    ) -> CatchGroup:
        with self._session() as s:
            row = CatchRow(fisherman_id=fisherman_id, catch_date=catch_date)
            row.products = [
                ProductRow(
                    fisherman_id=fisherman_id,
                    species=entry.species,
                    form=entry.form,
                    price_per_kg=entry.price_per_kg,
                    available_quantity=entry.available_quantity,
                )
                for entry in entries
            ]
            row.slots = [
                FulfillmentSlotRow(
                    fisherman_id=fisherman_id,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    type=slot.type,
                )
                for slot in slots
            ]
            s.add(row)
            s.flush()
            catch_id = row.id

        return next(g for g in self.get_catch_groups(fisherman_id) if g.catch_id == catch_id)

    def get_catch_groups(self, fisherman_id: ULID) -> list[CatchGroup]:
        with self._session() as s:
            rows = s.scalars(
                select(CatchRow)
                .where(CatchRow.fisherman_id == fisherman_id)
                .options(
                    selectinload(CatchRow.products).options(*_PRODUCT_LOAD),
                    selectinload(CatchRow.slots),
                )
                .order_by(CatchRow.catch_date.desc(), CatchRow.created_at.desc())
            ).all()
            return [_catch_group(r) for r in rows]

    def delete_catch(self, fisherman_id: ULID, catch_id: ULID) -> bool:
        with self._session() as s:
            row = s.get(CatchRow, catch_id)
            if row is None or row.fisherman_id != fisherman_id:
                return False
            s.delete(row)
            return True

    def list_available_products(self) -> list[ProductOut]:
        with self._session() as s:
            rows = s.scalars(
                select(ProductRow)
                .join(CatchRow, ProductRow.catch_id == CatchRow.id)
                .where(ProductRow.available_quantity > 0)
                .options(*_PRODUCT_LOAD)
                .order_by(CatchRow.catch_date.desc(), ProductRow.created_at.desc())
            ).all()
            return [_product_out(r) for r in rows]

    def get_products(self, ids: list[ULID]) -> list[ProductOut]:
        if not ids:
            return []
        with self._session() as s:
            rows = s.scalars(select(ProductRow).where(ProductRow.id.in_(ids)).options(*_PRODUCT_LOAD)).all()
            by_id = {r.id: r for r in rows}
            return [_product_out(by_id[i]) for i in dict.fromkeys(ids) if i in by_id]

    def get_product(self, id: ULID) -> ProductOut | None:
        products = self.get_products([id])
        return products[0] if products else None

    def update_product(self, fisherman_id: ULID, id: ULID, changes: ProductUpdate) -> ProductOut | None:
        with self._session() as s:
            row = s.get(ProductRow, id)
            if row is None or row.fisherman_id != fisherman_id:
                return None
            if changes.price_per_kg is not None:
                row.price_per_kg = changes.price_per_kg
            if changes.available_quantity is not None:
                row.available_quantity = changes.available_quantity
        return self.get_product(id)

    def delete_product(self, fisherman_id: ULID, id: ULID) -> bool:
        with self._session() as s:
            row = s.get(ProductRow, id)
            if row is None or row.fisherman_id != fisherman_id:
                return False
            s.delete(row)
            return True

    def list_slots(
        self, fisherman_id: ULID, *, after: datetime | None = None, type: FulfillmentType | None = None
    ) -> list[SlotOut]:
        with self._session() as s:
            stmt = select(FulfillmentSlotRow).where(FulfillmentSlotRow.fisherman_id == fisherman_id)
            if after is not None:
                stmt = stmt.where(FulfillmentSlotRow.start_time >= after)
            if type is not None:
                stmt = stmt.where(FulfillmentSlotRow.type == type)
            rows = s.scalars(stmt.order_by(FulfillmentSlotRow.start_time)).all()
            return [_slot_out(r) for r in rows]

    def get_slot(self, id: ULID) -> SlotOut | None:
        with self._session() as s:
            row = s.get(FulfillmentSlotRow, id)
            return _slot_out(row) if row else None

    # --- default prices ---
    def list_default_prices(self, fisherman_id: ULID) -> list[DefaultPriceOut]:
        with self._session() as s:
            rows = s.scalars(
                select(DefaultPriceRow)
                .where(DefaultPriceRow.fisherman_id == fisherman_id)
                .order_by(DefaultPriceRow.species, DefaultPriceRow.form)
            ).all()
            return [_default_price_out(r) for r in rows]

    def add_default_price(self, fisherman_id: ULID, price: DefaultPriceIn) -> DefaultPriceOut:
        try:
            with self._session() as s:
                row = DefaultPriceRow(fisherman_id=fisherman_id, **price.model_dump())
                s.add(row)
                s.flush()
                return _default_price_out(row)
        except IntegrityError as e:
            raise ConflictError(f"Default price for {price.species} ({price.form}) already exists") from e

    def update_default_price(self, fisherman_id: ULID, id: ULID, price_per_kg: float) -> DefaultPriceOut | None:
        with self._session() as s:
            row = s.get(DefaultPriceRow, id)
            if row is None or row.fisherman_id != fisherman_id:
                return None
            row.price_per_kg = price_per_kg
            return _default_price_out(row)

    def delete_default_price(self, fisherman_id: ULID, id: ULID) -> bool:
        with self._session() as s:
            row = s.get(DefaultPriceRow, id)
            if row is None or row.fisherman_id != fisherman_id:
                return False
            s.delete(row)
            return True

    def find_default_price(self, fisherman_id: ULID, species: str, form: str) -> float | None:
        with self._session() as s:
            return s.scalars(
                select(DefaultPriceRow.price_per_kg).where(
                    DefaultPriceRow.fisherman_id == fisherman_id,
                    DefaultPriceRow.species == species,
                    DefaultPriceRow.form == form,
                )
            ).one_or_none()

    # --- planned trips ---
    def list_trips(self, start: date, end: date, fisherman_id: ULID | None = None) -> list[PlannedTripOut]:
        with self._session() as s:
            stmt = select(PlannedTripRow).where(PlannedTripRow.trip_date >= start, PlannedTripRow.trip_date <= end)
            if fisherman_id is not None:
                stmt = stmt.where(PlannedTripRow.fisherman_id == fisherman_id)
            rows = s.scalars(stmt.order_by(PlannedTripRow.trip_date)).all()
            return [_trip_out(r) for r in rows]

    def replace_trips(self, fisherman_id: ULID, start: date, end: date, dates: list[date]) -> list[PlannedTripOut]:
        with self._session() as s:
            s.execute(
                delete(PlannedTripRow).where(
                    PlannedTripRow.fisherman_id == fisherman_id,
                    PlannedTripRow.trip_date >= start,
                    PlannedTripRow.trip_date <= end,
                )
            )
            s.add_all(PlannedTripRow(fisherman_id=fisherman_id, trip_date=d) for d in sorted(set(dates)))
        return self.list_trips(start, end, fisherman_id)

    # --- subscriptions ---
    def add_subscription(self, email: str) -> tuple[SubscriptionOut, bool]:
        with self._session() as s:
            row = s.scalars(select(EmailSubscriptionRow).where(EmailSubscriptionRow.email == email)).one_or_none()
            if row is not None:
                return _subscription_out(row), False
            row = EmailSubscriptionRow(email=email)
            s.add(row)
            s.flush()
            return _subscription_out(row), True

    def list_subscriptions(self) -> list[SubscriptionOut]:
        with self._session() as s:
            rows = s.scalars(select(EmailSubscriptionRow).order_by(EmailSubscriptionRow.created_at)).all()
            return [_subscription_out(r) for r in rows]

    # --- orders ---
    def place_order(
        self, customer_id: ULID, fisherman_profile_id: ULID, delivery_fee: float, request: CreateOrderRequest
    ) -> OrderOut:
        """Write the order, its items and every stock decrement in one transaction.

        Each line is decremented with `available_quantity - n WHERE available_quantity >= n`;
        a line that matches no row means another order took the stock first, and the
        whole transaction is rolled back with a `SoldOutError`.
        """
        lines: dict[ULID, float] = {}
        for line in request.cart_items:
            lines[line.product_id] = round(lines.get(line.product_id, 0.0) + line.quantity, 2)

        with self._session() as s:
            short: list[ULID] = []
            for product_id, quantity in lines.items():
                result = s.execute(
                    update(ProductRow)
                    .where(ProductRow.id == product_id, ProductRow.available_quantity >= quantity)
                    .values(available_quantity=func.round(ProductRow.available_quantity - quantity, 2))
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    short.append(product_id)

            if short:
                rows = {r.id: r for r in s.scalars(select(ProductRow).where(ProductRow.id.in_(short))).all()}
                raise SoldOutError(
                    [f"{rows[p].species} ({rows[p].form})" if p in rows else str(p) for p in short],
                    [str(p) for p in short],
                )

            order = OrderRow(
                customer_id=customer_id,
                fisherman_profile_id=fisherman_profile_id,
                fulfillment_slot_id=request.fulfillment_slot_id,
                fulfillment_type=request.fulfillment_type,
                final_delivery_fee=delivery_fee,
                status=OrderStatus.new,
                customer_name=request.customer_name,
                customer_phone=request.customer_phone,
                customer_address=request.customer_address,
            )
            order.items = [OrderItemRow(product_id=pid, quantity=qty) for pid, qty in lines.items()]
            s.add(order)
            s.flush()
            order_id = order.id

        placed = self.get_order(order_id)
        assert placed is not None
        return placed

    def get_order(self, id: ULID) -> OrderOut | None:
        with self._session() as s:
            row = s.scalars(select(OrderRow).where(OrderRow.id == id).options(*_ORDER_LOAD)).one_or_none()
            return _order_out(row) if row else None

    def list_orders(self, fisherman_profile_id: ULID, status: OrderStatus | None = None) -> list[OrderOut]:
        with self._session() as s:
            stmt = select(OrderRow).where(OrderRow.fisherman_profile_id == fisherman_profile_id)
            if status is not None:
                stmt = stmt.where(OrderRow.status == status)
            rows = s.scalars(stmt.options(*_ORDER_LOAD).order_by(OrderRow.created_at.desc())).all()
            return [_order_out(r) for r in rows]

    def list_customer_orders(self, customer_id: ULID) -> list[OrderOut]:
        with self._session() as s:
            rows = s.scalars(
                select(OrderRow)
                .where(OrderRow.customer_id == customer_id)
                .options(*_ORDER_LOAD)
                .order_by(OrderRow.created_at.desc())
            ).all()
            return [_order_out(r) for r in rows]

    def count_orders(self, fisherman_profile_id: ULID, status: OrderStatus) -> int:
        with self._session() as s:
            return s.scalar(
                select(func.count(OrderRow.id)).where(
                    OrderRow.fisherman_profile_id == fisherman_profile_id, OrderRow.status == status
                )
            ) or 0

    def set_order_status(
        self,
        id: ULID,
        status: OrderStatus,
        *,
        fisherman_profile_id: ULID | None = None,
        delivery_fee: float | None = None,
    ) -> OrderOut:
        """Apply an admin status change; cancellation puts the ordered stock back.

        The status update is conditional on the status that was read, so two
        admins cancelling the same order restore its stock only once.
        """
        with self._session() as s:
            row = s.scalars(select(OrderRow).where(OrderRow.id == id).options(*_ORDER_LOAD)).one_or_none()
            if row is None or (fisherman_profile_id is not None and row.fisherman_profile_id != fisherman_profile_id):
                raise NotFoundError(f"Order {id} not found")

            current = OrderStatus(row.status)
            if status not in ORDER_TRANSITIONS[current]:
                raise InvalidTransitionError(f"Cannot change order status from {current} to {status}")

            values: dict = {"status": status, "updated_at": _utcnow()}
            if delivery_fee is not None:
                values["final_delivery_fee"] = delivery_fee
            result = s.execute(
                update(OrderRow)
                .where(OrderRow.id == id, OrderRow.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError(f"Order {id} was modified concurrently")

            if status == OrderStatus.cancelled:
                for item in row.items:
                    s.execute(
                        update(ProductRow)
                        .where(ProductRow.id == item.product_id)
                        .values(available_quantity=func.round(ProductRow.available_quantity + item.quantity, 2))
                        .execution_options(synchronize_session=False)
                    )
                log.info("inventory_restored", order_id=str(id), items=len(row.items))

        updated = self.get_order(id)
        assert updated is not None
        return updated
