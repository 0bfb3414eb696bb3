"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DATABASE_URL = "sqlite:///target/fishstore.db"


class StoreSettings(BaseModel):
    """Settings for the storefront service.

    Every field has an environment fallback (see `from_env`), so a bare
    `StoreSettings()` is usable for local development and tests.
    """

    database_url: str = DEFAULT_DATABASE_URL
    site_url: str = "http://localhost:8080"

    # Transactional email (Brevo compatible)
    email_api_url: str = "https://api.brevo.com/v3/smtp/email"
    email_api_key: str | None = None
    email_sender_name: str = "Kotimaista kalaa"
    email_sender_address: str = "noreply@kotimaistakalaa.fi"

    # Hosted identity provider
    auth_url: str | None = None
    auth_api_key: str | None = None
    auth_service_key: str | None = None

    timezone: str = "Europe/Helsinki"
    cart_storage_dir: Path = Field(default=Path("target/carts"))

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> StoreSettings:
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            site_url=env.get("SITE_URL", "http://localhost:8080").rstrip("/"),
            email_api_url=env.get("BREVO_API_URL", "https://api.brevo.com/v3/smtp/email"),
            email_api_key=env.get("BREVO_API_KEY") or None,
            email_sender_name=env.get("EMAIL_SENDER_NAME", "Kotimaista kalaa"),
            email_sender_address=env.get("EMAIL_SENDER_ADDRESS", "noreply@kotimaistakalaa.fi"),
            auth_url=(env.get("AUTH_URL") or "").rstrip("/") or None,
            auth_api_key=env.get("AUTH_API_KEY") or None,
            auth_service_key=env.get("AUTH_SERVICE_KEY") or None,
            timezone=env.get("TIMEZONE", "Europe/Helsinki"),
            cart_storage_dir=Path(env.get("CART_STORAGE_DIR", "target/carts")),
        )
