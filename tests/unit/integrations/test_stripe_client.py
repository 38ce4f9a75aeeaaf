"""Unit tests for the Stripe gateway."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from clubhouse.core.exceptions import (
    BillingConfigurationError,
    BillingProviderError,
    ErrorKind,
    ProviderConfigurationError,
    ProviderNotFoundError,
    ProviderTransientError,
    ValidationException,
)
from clubhouse.integrations.stripe_client import (
    CheckoutSessionSnapshot,
    InvoiceSnapshot,
    PriceSpec,
    StripeBillingGateway,
    SubscriptionSnapshot,
)

PERIOD_START = 1717200000  # 2024-06-01
PERIOD_END = 1748736000  # 2025-06-01


@pytest.fixture
def gateway():
    """A configured gateway with a webhook secret."""
    return StripeBillingGateway(api_key="sk_test_123", webhook_secret="whsec_123", enabled=True)


class TestSnapshots:
    """Tests for normalizing Stripe objects."""

    def test_subscription_period_from_subscription(self):
        """Period bounds on the subscription itself are used."""
        snapshot = SubscriptionSnapshot.from_stripe(
            {
                "id": "sub_1",
                "status": "active",
                "customer": "cus_1",
                "current_period_start": PERIOD_START,
                "current_period_end": PERIOD_END,
                "cancel_at_period_end": True,
                "latest_invoice": {"id": "in_1"},
            }
        )

        assert snapshot.current_period_start == datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert snapshot.current_period_end == datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert snapshot.cancel_at_period_end is True
        assert snapshot.customer_id == "cus_1"
        assert snapshot.latest_invoice_id == "in_1"

    def test_subscription_period_from_first_item(self):
        """Newer API versions carry the period on the subscription items."""
        snapshot = SubscriptionSnapshot.from_stripe(
            {
                "id": "sub_1",
                "status": "trialing",
                "customer": {"id": "cus_1"},
                "items": {
                    "data": [
                        {"current_period_start": PERIOD_START, "current_period_end": PERIOD_END}
                    ]
                },
            }
        )

        assert snapshot.current_period_end == datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert snapshot.customer_id == "cus_1"
        assert snapshot.cancel_at_period_end is False

    def test_invoice_fallbacks(self):
        """Payment intent and subscription are found in their newer locations."""
        snapshot = InvoiceSnapshot.from_stripe(
            {
                "id": "in_1",
                "amount_paid": 4500,
                "currency": "cad",
                "payments": {"data": [{"payment": {"payment_intent": "pi_1"}}]},
                "parent": {"subscription_details": {"subscription": "sub_1"}},
            }
        )

        assert snapshot.payment_intent_id == "pi_1"
        assert snapshot.subscription_id == "sub_1"
        assert snapshot.amount_paid == 4500

    def test_checkout_session_user_id(self):
        """The member id is read from the session metadata."""
        snapshot = CheckoutSessionSnapshot.from_stripe(
            {"id": "cs_1", "subscription": "sub_1", "metadata": {"user_id": "abc"}}
        )

        assert snapshot.user_id == "abc"
        assert snapshot.subscription_id == "sub_1"


class TestErrorTranslation:
    """Tests for mapping Stripe errors to provider errors."""

    @pytest.mark.asyncio
    async def test_missing_resource(self, gateway):
        """resource_missing becomes a provider not-found error."""
        error = stripe.InvalidRequestError("No such subscription", "id", code="resource_missing")
        with patch("stripe.Subscription.retrieve_async", AsyncMock(side_effect=error)):
            with pytest.raises(ProviderNotFoundError):
                await gateway.retrieve_subscription("sub_gone")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, gateway):
        """Network failures are retryable."""
        error = stripe.APIConnectionError("timeout")
        with patch("stripe.Subscription.retrieve_async", AsyncMock(side_effect=error)):
            with pytest.raises(ProviderTransientError):
                await gateway.retrieve_subscription("sub_1")

    @pytest.mark.asyncio
    async def test_bad_key_is_configuration(self, gateway):
        """Rejected credentials are a configuration error."""
        error = stripe.AuthenticationError("Invalid API Key provided: sk_test_***")
        with patch("stripe.Subscription.retrieve_async", AsyncMock(side_effect=error)):
            with pytest.raises(ProviderConfigurationError) as exc_info:
                await gateway.retrieve_subscription("sub_1")

        assert exc_info.value.kind == ErrorKind.CONFIGURATION
        assert "sk_test" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_card_error_is_generic_provider_error(self, gateway):
        """Other Stripe errors keep the provider message out of the public message."""
        error = stripe.CardError("Your card was declined.", "card", "card_declined")
        with patch("stripe.Price.create_async", AsyncMock(side_effect=error)):
            with pytest.raises(BillingProviderError) as exc_info:
                await gateway.create_price(
                    PriceSpec(amount_cents=4500, currency="cad", product_name="Annual")
                )

        assert exc_info.value.context["provider_message"] == "Your card was declined."
        assert "declined" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unconfigured_gateway_makes_no_calls(self):
        """Without credentials every operation fails fast."""
        gateway = StripeBillingGateway(api_key="", webhook_secret="", enabled=False)

        assert gateway.is_configured is False
        with patch("stripe.Subscription.retrieve_async", AsyncMock()) as mock_retrieve:
            with pytest.raises(ProviderConfigurationError):
                await gateway.retrieve_subscription("sub_1")
        mock_retrieve.assert_not_called()


class TestCustomer:
    """Tests for create_or_update_customer."""

    @pytest.mark.asyncio
    async def test_stale_customer_is_replaced(self, gateway):
        """A stored customer deleted at Stripe is recreated."""
        missing = stripe.InvalidRequestError("No such customer", "id", code="resource_missing")
        with (
            patch("stripe.Customer.modify_async", AsyncMock(side_effect=missing)),
            patch(
                "stripe.Customer.create_async",
                AsyncMock(return_value=stripe.Customer(id="cus_new")),
            ) as mock_create,
        ):
            customer_id = await gateway.create_or_update_customer(
                email="member@example.org", customer_id="cus_old"
            )

        assert customer_id == "cus_new"
        mock_create.assert_awaited_once()


class TestWebhookSignature:
    """Tests for verify_webhook_signature."""

    def test_missing_secret(self):
        """No webhook secret is a configuration error."""
        gateway = StripeBillingGateway(api_key="sk_test_123", webhook_secret="", enabled=True)

        with pytest.raises(BillingConfigurationError):
            gateway.verify_webhook_signature(b"{}", "t=1,v1=abc")

    def test_missing_signature(self, gateway):
        """A request without the signature header is rejected."""
        with pytest.raises(ValidationException):
            gateway.verify_webhook_signature(b"{}", None)

    def test_bad_signature(self, gateway):
        """A signature that does not verify is rejected."""
        with pytest.raises(ValidationException):
            gateway.verify_webhook_signature(b'{"id": "evt_1"}', "t=1,v1=deadbeef")

    def test_valid_signature(self, gateway):
        """A verified event is returned."""
        event = {"id": "evt_1", "type": "customer.subscription.updated"}
        with patch("stripe.Webhook.construct_event", return_value=event) as mock_construct:
            assert gateway.verify_webhook_signature(b"payload", "t=1,v1=ok") == event

        mock_construct.assert_called_once_with(b"payload", "t=1,v1=ok", "whsec_123")
