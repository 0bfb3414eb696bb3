"""Test configuration and shared fixtures for fishstore."""

from collections.abc import Iterator
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from fishstore.accounts import IdentityProvider
from fishstore.config import StoreSettings
from fishstore.database import SqlAlchemyStoreDatabase
from fishstore.errors import AuthenticationError
from fishstore.notifications import EmailClient
from fishstore.service import StoreService
from fishstore.types import (
    CatchEntryIn,
    CatchGroup,
    FishermanProfileIn,
    FishermanProfileOut,
    FulfillmentType,
    Identity,
    SlotIn,
    UserOut,
    UserRole,
)

ADMIN_TOKEN = "admin-token"
CUSTOMER_TOKEN = "customer-token"


class FakeIdentityProvider(IdentityProvider):
    """Identity provider backed by a dict of bearer tokens."""

    def __init__(self, tokens: dict[str, Identity] | None = None) -> None:
        self.tokens = dict(tokens or {})
        self.links: list[tuple[str, str, str]] = []

    def get_user(self, token: str) -> Identity:
        if token not in self.tokens:
            raise AuthenticationError("Invalid or expired token")
        return self.tokens[token]

    def generate_link(self, kind: str, email: str, redirect_to: str) -> str:
        self.links.append((kind, email, redirect_to))
        return f"https://auth.example.com/verify?type={kind}&redirect_to={redirect_to}"


def upcoming_slot(days: int = 1, type: FulfillmentType = FulfillmentType.pickup) -> SlotIn:
    start = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=days)
    return SlotIn(start_time=start, end_time=start + timedelta(hours=2), type=type)


def add_catch(
    database: SqlAlchemyStoreDatabase,
    profile: FishermanProfileOut,
    entries: list[tuple[str, str, float, float]] | None = None,
    catch_date: date | None = None,
    slots: list[SlotIn] | None = None,
) -> CatchGroup:
    """Enter a catch from (species, form, price_per_kg, quantity) tuples."""
    entries = entries or [("Kuha", "Fileoitu", 32.0, 5.0)]
    return database.add_catch(
        profile.id,
        catch_date or date.today(),
        [CatchEntryIn(species=s, form=f, price_per_kg=p, available_quantity=q) for s, f, p, q in entries],
        slots or [upcoming_slot()],
    )


def make_fisherman(
    database: SqlAlchemyStoreDatabase, external_id: str = "fisher-1", email: str = "kalastaja@example.com"
) -> tuple[UserOut, FishermanProfileOut]:
    user = database.upsert_identity(Identity(external_id=external_id, email=email, full_name="Pekka Kalastaja"))
    user = database.set_user_role(user.id, UserRole.admin)
    profile = database.upsert_profile(
        user.id,
        FishermanProfileIn(pickup_address="Satamatie 1, Kuopio", default_delivery_fee=7.5),
    )
    return user, profile


@pytest.fixture
def settings(tmp_path) -> StoreSettings:
    return StoreSettings(
        database_url=f"sqlite:///{tmp_path / 'store.db'}",
        site_url="https://kala.example.com",
        email_api_key="test-key",
        cart_storage_dir=tmp_path / "carts",
    )


@pytest.fixture
def database(settings: StoreSettings) -> Iterator[SqlAlchemyStoreDatabase]:
    # File-backed: TestClient runs sync endpoints on worker threads
    db = SqlAlchemyStoreDatabase(settings.database_url)
    yield db
    db.dispose()


@pytest.fixture
def fisherman(database: SqlAlchemyStoreDatabase) -> tuple[UserOut, FishermanProfileOut]:
    return make_fisherman(database)


@pytest.fixture
def customer(database: SqlAlchemyStoreDatabase) -> UserOut:
    return database.upsert_identity(
        Identity(external_id="customer-1", email="asiakas@example.com", full_name="Maija Asiakas")
    )


@pytest.fixture
def email_client() -> Mock:
    client = Mock(spec=EmailClient)
    client.send.return_value = True
    return client


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider(
        {
            ADMIN_TOKEN: Identity(external_id="fisher-1", email="kalastaja@example.com", full_name="Pekka Kalastaja"),
            CUSTOMER_TOKEN: Identity(external_id="customer-1", email="asiakas@example.com", full_name="Maija Asiakas"),
        }
    )


@pytest.fixture
def service(
    settings: StoreSettings,
    database: SqlAlchemyStoreDatabase,
    identity_provider: FakeIdentityProvider,
    email_client: Mock,
) -> StoreService:
    return StoreService(settings, database, identity_provider, email_client)


@pytest.fixture
def client(service: StoreService) -> Iterator[TestClient]:
    with TestClient(service.create_fastapi()) as test_client:
        yield test_client


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
