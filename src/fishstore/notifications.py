"""Transactional email and the new-catch mailing list.

Every send is best effort: HTTP and transport failures are logged and reported
as `False`, never raised, so an email outage cannot undo an order or a
subscription.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import structlog
from jinja2 import Environment, PackageLoader, select_autoescape

from fishstore.config import StoreSettings
from fishstore.database import StoreDatabase
from fishstore.errors import StoreError
from fishstore.types import (
    BroadcastResult,
    EmailRequest,
    FishermanProfileOut,
    FulfillmentType,
    OrderOut,
    SubscribeResponse,
    SubscriptionOut,
    UserOut,
)

log = structlog.get_logger(__name__)


class EmailClient:
    """Thin client for a Brevo-style `POST /smtp/email` API."""

    def __init__(self, settings: StoreSettings, client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.Client(timeout=10.0)

    @property
    def configured(self) -> bool:
        return bool(self._settings.email_api_key)

    def send(
        self,
        to_email: str,
        subject: str,
        html: str,
        *,
        text: str | None = None,
        to_name: str | None = None,
    ) -> bool:
        if not self.configured:
            log.warning("email_not_configured", to=to_email, subject=subject)
            return False

        recipient: dict = {"email": to_email}
        if to_name:
            recipient["name"] = to_name
        payload: dict = {
            "sender": {"name": self._settings.email_sender_name, "email": self._settings.email_sender_address},
            "to": [recipient],
            "subject": subject,
            "htmlContent": html,
        }
        if text:
            payload["textContent"] = text

        try:
            response = self._client.post(
                self._settings.email_api_url,
                json=payload,
                headers={"api-key": self._settings.email_api_key or "", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            log.error("email_failed", to=to_email, subject=subject, error=repr(e))
            return False

        if response.is_error:
            log.error("email_failed", to=to_email, subject=subject, status=response.status_code, body=response.text)
            return False

        log.info("email_sent", to=to_email, subject=subject)
        return True

    def close(self) -> None:
        self._client.close()


def _euros(value: float | None) -> str:
    return f"{(value or 0.0):.2f} €"


class Notifier:
    """Renders the store's emails and hands them to an `EmailClient`."""

    def __init__(self, settings: StoreSettings, email_client: EmailClient) -> None:
        self._settings = settings
        self._email = email_client
        self._tz = ZoneInfo(settings.timezone)
        self._env = Environment(
            loader=PackageLoader("fishstore", "templates"),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["euros"] = _euros
        self._env.filters["local_date"] = self._local_date
        self._env.filters["local_time"] = self._local_time

    def _local_date(self, value: datetime) -> str:
        local = value.astimezone(self._tz)
        return f"{local.day}.{local.month}.{local.year}"

    def _local_time(self, value: datetime) -> str:
        return value.astimezone(self._tz).strftime("%H:%M")

    def render(self, template: str, **context) -> str:
        return self._env.get_template(template).render(site_url=self._settings.site_url, **context)

    def notify_new_order(self, order: OrderOut, fisherman: UserOut) -> bool:
        """Tell the fisherman a new order arrived."""
        short_id = str(order.id)[:8]
        html = self.render("email/new_order.html", order=order, short_id=short_id, FulfillmentType=FulfillmentType)
        return self._email.send(
            fisherman.email,
            f"Uusi tilaus saapunut! (Tilaus #{short_id})",
            html,
            to_name=fisherman.full_name or "Kalastaja",
        )

    def send_order_confirmation(self, order: OrderOut, customer: UserOut, profile: FishermanProfileOut) -> bool:
        short_id = str(order.id)[:8]
        html = self.render(
            "email/order_confirmation.html",
            order=order,
            short_id=short_id,
            profile=profile,
            FulfillmentType=FulfillmentType,
        )
        return self._email.send(
            customer.email,
            f"Tilauksesi on vahvistettu (Tilaus #{short_id})",
            html,
            to_name=order.customer_name,
        )

    def send_welcome(self, email: str) -> bool:
        html = self.render("email/welcome.html")
        return self._email.send(email, "Tervetuloa Kotimaista kalaa -postituslistalle!", html)

    def broadcast_new_catch(self, emails: list[str]) -> BroadcastResult:
        if not emails:
            log.info("broadcast_skipped", reason="no subscribers")
            return BroadcastResult(message="No subscribers to notify")

        html = self.render("email/new_catch.html")
        text = self.render("email/new_catch.txt")
        successful = 0
        for email in emails:
            if self._email.send(email, "Uutta kalaa saatavilla! - Kotimaistakalaa.fi", html, text=text):
                successful += 1
        failed = len(emails) - successful
        log.info("broadcast_finished", successful=successful, failed=failed)
        return BroadcastResult(
            message=f"Sent {successful} of {len(emails)} notifications",
            successful=successful,
            failed=failed,
        )

    def send_password_reset(self, email: str, action_link: str) -> bool:
        html = self.render("email/password_reset.html", action_link=action_link)
        return self._email.send(email, "Nollaa salasanasi - Kotimaista kalaa", html)

    def send_signup_confirmation(self, email: str, action_link: str) -> bool:
        html = self.render("email/signup_confirmation.html", action_link=action_link)
        return self._email.send(email, "Vahvista sähköpostiosoitteesi - Kotimaista kalaa", html)


class SubscriptionService:
    """The new-catch mailing list. It is independent of user accounts."""

    def __init__(self, database: StoreDatabase, notifier: Notifier) -> None:
        self._database = database
        self._notifier = notifier

    def subscribe(self, email: str) -> SubscribeResponse:
        """Save the address once and send the welcome email on every call.

        A welcome email that cannot be sent is reported as an error, but the
        subscription is kept.
        """
        email = EmailRequest(email=email).checked().lower()
        subscription, created = self._database.add_subscription(email)
        if created:
            log.info("subscription_saved", subscription_id=str(subscription.id))
        else:
            log.info("subscription_exists", subscription_id=str(subscription.id))

        if not self._notifier.send_welcome(email):
            raise StoreError("Failed to send welcome email")

        return SubscribeResponse(
            new_subscription=created,
            message=(
                "Subscription created and welcome email sent"
                if created
                else "Welcome email sent to existing subscriber"
            ),
        )

    def list_subscribers(self) -> list[SubscriptionOut]:
        return self._database.list_subscriptions()

    def broadcast_new_catch(self) -> BroadcastResult:
        return self._notifier.broadcast_new_catch([s.email for s in self._database.list_subscriptions()])
