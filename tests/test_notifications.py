"""Tests for the email client, rendered emails and the mailing list."""

import json
from datetime import datetime, timezone
from unittest.mock import Mock

import httpx
import pytest
from ulid import ULID

from fishstore.errors import StoreError, ValidationError
from fishstore.notifications import EmailClient, Notifier, SubscriptionService
from fishstore.types import FulfillmentType, OrderItemOut, OrderOut, OrderStatus, SlotOut, UserOut, UserRole


def http_email_client(settings, handler) -> EmailClient:
    return EmailClient(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))


def sample_order(slot: SlotOut | None = None, fulfillment_type=FulfillmentType.pickup) -> OrderOut:
    return OrderOut(
        id=ULID(),
        customer_id=ULID(),
        fisherman_profile_id=ULID(),
        customer_name="Maija Asiakas",
        customer_phone="040 123 4567",
        fulfillment_type=fulfillment_type,
        fulfillment_slot=slot,
        status=OrderStatus.new,
        items=[
            OrderItemOut(
                id=ULID(),
                product_id=ULID(),
                species="Kuha",
                form="Fileoitu",
                price_per_kg=32.0,
                quantity=1.5,
                line_total=48.0,
            )
        ],
        items_total=48.0,
        total=48.0,
    )


def sample_user(email: str = "kalastaja@example.com", full_name: str | None = None) -> UserOut:
    return UserOut(id=ULID(), email=email, full_name=full_name, role=UserRole.admin)


class TestEmailClient:
    def test_posts_brevo_payload(self, settings) -> None:
        """The request carries the api-key header and the sender from settings."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"messageId": "abc"})

        client = http_email_client(settings, handler)

        assert client.send("asiakas@example.com", "Hei", "<p>Hei</p>", text="Hei", to_name="Maija")

        request = seen[0]
        body = json.loads(request.content)
        assert str(request.url) == settings.email_api_url
        assert request.headers["api-key"] == "test-key"
        assert body["to"] == [{"email": "asiakas@example.com", "name": "Maija"}]
        assert body["sender"] == {"name": settings.email_sender_name, "email": settings.email_sender_address}
        assert body["htmlContent"] == "<p>Hei</p>"
        assert body["textContent"] == "Hei"

    def test_error_status_returns_false(self, settings) -> None:
        client = http_email_client(settings, lambda request: httpx.Response(500, text="boom"))

        assert client.send("asiakas@example.com", "Hei", "<p>Hei</p>") is False

    def test_transport_error_returns_false(self, settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        assert http_email_client(settings, handler).send("asiakas@example.com", "Hei", "<p>Hei</p>") is False

    def test_unconfigured_sends_nothing(self, settings) -> None:
        """Without an API key nothing goes out."""
        handler = Mock(return_value=httpx.Response(201))
        client = http_email_client(settings.model_copy(update={"email_api_key": None}), handler)

        assert not client.configured
        assert client.send("asiakas@example.com", "Hei", "<p>Hei</p>") is False
        handler.assert_not_called()


class TestNotifier:
    def test_new_order_email(self, settings, email_client) -> None:
        """Fisherman email: short id in the subject, no prices and a slot to be agreed."""
        notifier = Notifier(settings, email_client)
        order = sample_order()

        assert notifier.notify_new_order(order, sample_user())

        to, subject, html = email_client.send.call_args.args
        short_id = str(order.id)[:8]
        assert to == "kalastaja@example.com"
        assert subject == f"Uusi tilaus saapunut! (Tilaus #{short_id})"
        assert email_client.send.call_args.kwargs["to_name"] == "Kalastaja"
        assert "Kuha (Fileoitu) - 1.5 kg" in html
        assert "48.00 €" not in html
        assert "Sovitaan erikseen" in html
        assert f"{settings.site_url}/admin/tilaukset" in html

    def test_confirmation_email_shows_local_slot_and_prices(self, settings, email_client) -> None:
        """Slot times are shown in the store's time zone."""
        notifier = Notifier(settings, email_client)
        start = datetime(2030, 6, 1, 9, tzinfo=timezone.utc)
        slot = SlotOut(
            id=ULID(),
            fisherman_id=ULID(),
            catch_id=ULID(),
            start_time=start,
            end_time=start.replace(hour=11),
            type=FulfillmentType.pickup,
        )
        profile = Mock(pickup_address="Satamatie 1, Kuopio", public_phone_number=None)

        notifier.send_order_confirmation(sample_order(slot), sample_user("asiakas@example.com"), profile)

        _, subject, html = email_client.send.call_args.args
        assert subject.startswith("Tilauksesi on vahvistettu")
        assert "1.6.2030 klo 12:00-14:00" in html
        assert "Satamatie 1, Kuopio" in html
        assert "48.00 €" in html

    def test_customer_values_are_escaped(self, settings, email_client) -> None:
        notifier = Notifier(settings, email_client)
        order = sample_order().model_copy(update={"customer_name": "<script>alert(1)</script>"})

        notifier.notify_new_order(order, sample_user())

        html = email_client.send.call_args.args[2]
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_broadcast_counts_failures(self, settings, email_client) -> None:
        email_client.send.side_effect = [True, False, True]
        notifier = Notifier(settings, email_client)

        result = notifier.broadcast_new_catch(["a@example.com", "b@example.com", "c@example.com"])

        assert result.message == "Sent 2 of 3 notifications"
        assert (result.successful, result.failed) == (2, 1)
        assert email_client.send.call_args.kwargs["text"]

    def test_broadcast_without_subscribers(self, settings, email_client) -> None:
        result = Notifier(settings, email_client).broadcast_new_catch([])

        assert result.message == "No subscribers to notify"
        assert result.successful is None
        email_client.send.assert_not_called()


class TestSubscriptionService:
    @pytest.fixture
    def subscriptions(self, settings, database, email_client) -> SubscriptionService:
        return SubscriptionService(database, Notifier(settings, email_client))

    def test_subscribe_is_idempotent(self, subscriptions, email_client) -> None:
        """A second subscribe keeps one row but still sends the welcome email."""
        first = subscriptions.subscribe("Tilaaja@Example.com")
        second = subscriptions.subscribe("tilaaja@example.com ")

        assert first.new_subscription
        assert not second.new_subscription
        assert [s.email for s in subscriptions.list_subscribers()] == ["tilaaja@example.com"]
        assert email_client.send.call_count == 2

    def test_invalid_email_is_rejected(self, subscriptions, email_client) -> None:
        with pytest.raises(ValidationError, match="Email is required"):
            subscriptions.subscribe("  ")
        with pytest.raises(ValidationError, match="Invalid email format"):
            subscriptions.subscribe("not-an-email")
        email_client.send.assert_not_called()

    def test_welcome_failure_keeps_subscription(self, subscriptions, email_client) -> None:
        """A failed welcome email is an error, but the address stays on the list."""
        email_client.send.return_value = False

        with pytest.raises(StoreError, match="Failed to send welcome email"):
            subscriptions.subscribe("tilaaja@example.com")

        assert len(subscriptions.list_subscribers()) == 1

    def test_broadcast_reaches_every_subscriber(self, subscriptions, email_client) -> None:
        subscriptions.subscribe("a@example.com")
        subscriptions.subscribe("b@example.com")
        email_client.send.reset_mock()

        result = subscriptions.broadcast_new_catch()

        assert result.successful == 2
        assert {c.args[0] for c in email_client.send.call_args_list} == {"a@example.com", "b@example.com"}
