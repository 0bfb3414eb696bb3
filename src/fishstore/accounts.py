"""Accounts mirrored from a hosted identity provider."""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx
import structlog

from fishstore.config import StoreSettings
from fishstore.database import StoreDatabase
from fishstore.errors import AuthenticationError, NotFoundError, PermissionDeniedError, StoreError
from fishstore.notifications import Notifier
from fishstore.types import (
    ActionResult,
    EmailRequest,
    FishermanProfileIn,
    FishermanProfileOut,
    Identity,
    UserOut,
    UserRole,
    UserUpdate,
)

PASSWORD_RESET_PATH = "/vaihda-salasana"

log = structlog.get_logger(__name__)


class IdentityProvider(ABC):
    @abstractmethod
    def get_user(self, token: str) -> Identity:
        """Verify a bearer token and return the account it belongs to."""

    @abstractmethod
    def generate_link(self, kind: str, email: str, redirect_to: str) -> str:
        """Create a one-time action link (`recovery`, `signup`) for an email address."""


class HostedIdentityProvider(IdentityProvider):
    """Client for a GoTrue-compatible auth API (`/auth/v1/...`)."""

    def __init__(self, settings: StoreSettings, client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.Client(timeout=10.0)

    def _url(self, path: str) -> str:
        if not self._settings.auth_url:
            raise StoreError("Identity provider is not configured")
        return f"{self._settings.auth_url}{path}"

    def get_user(self, token: str) -> Identity:
        try:
            response = self._client.get(
                self._url("/auth/v1/user"),
                headers={"Authorization": f"Bearer {token}", "apikey": self._settings.auth_api_key or ""},
            )
        except httpx.HTTPError as e:
            log.error("identity_provider_unreachable", error=repr(e))
            raise StoreError("Identity provider unavailable") from e

        if response.status_code in (401, 403):
            raise AuthenticationError("Invalid or expired token")
        if response.is_error:
            log.error("identity_provider_failed", status=response.status_code, body=response.text)
            raise StoreError("Identity provider unavailable")

        data = response.json()
        metadata = data.get("user_metadata") or {}
        return Identity(
            external_id=data["id"],
            email=data["email"],
            full_name=metadata.get("full_name") or metadata.get("name"),
            avatar_url=metadata.get("avatar_url"),
        )

    def generate_link(self, kind: str, email: str, redirect_to: str) -> str:
        key = self._settings.auth_service_key or ""
        try:
            response = self._client.post(
                self._url("/auth/v1/admin/generate_link"),
                json={"type": kind, "email": email, "redirect_to": redirect_to},
                headers={"Authorization": f"Bearer {key}", "apikey": key},
            )
        except httpx.HTTPError as e:
            log.error("generate_link_failed", kind=kind, error=repr(e))
            raise StoreError(f"Failed to generate {kind} link") from e

        if response.is_error:
            log.error("generate_link_failed", kind=kind, status=response.status_code, body=response.text)
            raise StoreError(f"Failed to generate {kind} link")

        data = response.json()
        # Older auth servers nest the link under "properties"
        link = data.get("action_link") or (data.get("properties") or {}).get("action_link")
        if not link:
            raise StoreError(f"Failed to generate {kind} link")
        return link


class AccountService:
    def __init__(
        self,
        database: StoreDatabase,
        identity_provider: IdentityProvider,
        notifier: Notifier,
        site_url: str,
    ) -> None:
        self._database = database
        self._identity = identity_provider
        self._notifier = notifier
        self._site_url = site_url.rstrip("/")

    def resolve(self, token: str | None) -> UserOut:
        """Verify a bearer token and return the local user, creating it as a customer on first sight."""
        if not token:
            raise AuthenticationError("Unauthorized")
        identity = self._identity.get_user(token)
        return self._database.upsert_identity(identity)

    def require_admin(self, user: UserOut) -> UserOut:
        if user.role != UserRole.admin:
            raise PermissionDeniedError("Admin access required")
        return user

    def update_profile(self, user: UserOut, changes: UserUpdate) -> UserOut:
        return self._database.update_user(user.id, full_name=changes.full_name, phone_number=changes.phone_number)

    def promote_to_admin(self, email: str, pickup_address: str, delivery_fee: float = 0.0) -> FishermanProfileOut:
        """Make an existing user an admin and give them a fisherman profile."""
        user = self._database.get_user_by_email(email)
        if user is None:
            raise NotFoundError(f"No user with email {email}")

        self._database.set_user_role(user.id, UserRole.admin)
        existing = self._database.get_profile_for_user(user.id)
        fields = existing.model_dump(include=set(FishermanProfileIn.model_fields)) if existing else {}
        fields.update(pickup_address=pickup_address, default_delivery_fee=delivery_fee)

        saved = self._database.upsert_profile(user.id, FishermanProfileIn(**fields))
        log.info("user_promoted", user_id=str(user.id), profile_id=str(saved.id))
        return saved

    def send_password_reset(self, email: str) -> ActionResult:
        email = EmailRequest(email=email).checked()
        link = self._identity.generate_link("recovery", email, f"{self._site_url}{PASSWORD_RESET_PATH}")
        if not self._notifier.send_password_reset(email, link):
            raise StoreError("Failed to send password reset email")
        return ActionResult(message="Password reset email sent successfully")

    def send_signup_confirmation(self, email: str) -> ActionResult:
        email = EmailRequest(email=email).checked()
        link = self._identity.generate_link("signup", email, f"{self._site_url}/")
        if not self._notifier.send_signup_confirmation(email, link):
            raise StoreError("Failed to send confirmation email")
        return ActionResult(message="Confirmation email sent successfully")
