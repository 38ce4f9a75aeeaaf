"""Stripe API client for membership billing.

This module provides a clean interface to the Stripe API, handling all direct
Stripe interactions without business logic. Stripe objects never leave this
module: every call returns a snapshot, and every Stripe error is translated
into one of the provider error classes (not found, transient, configuration).
The gateway does not retry; callers own retry and backoff.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import stripe
from pydantic import BaseModel, Field

from clubhouse.core.config import settings
from clubhouse.core.datetime_utils import from_timestamp
from clubhouse.core.exceptions import (
    BillingConfigurationError,
    BillingProviderError,
    ProviderConfigurationError,
    ProviderNotFoundError,
    ProviderTransientError,
    ValidationException,
)
from clubhouse.core.logging import logger

stripe_logger = logger.with_prefix("Stripe: ").with_context(component="stripe_client")


def get_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        value = getattr(obj, key, default)
    return default if value is None else value


def _id_of(value: Any) -> Optional[str]:
    """Return the id of an expandable field (either an id string or an object)."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return get_field(value, "id")


class PriceSpec(BaseModel):
    """An annual recurring price."""

    amount_cents: int = Field(..., ge=0)
    currency: str
    product_name: str
    interval: str = "year"


class SubscriptionSnapshot(BaseModel):
    """The fields of a Stripe subscription the membership core relies on."""

    id: str
    status: str
    customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    latest_invoice_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, subscription: Any) -> "SubscriptionSnapshot":
        """Build a snapshot from a Stripe subscription.

        Newer API versions moved the period bounds from the subscription to
        its items, so fall back to the first item when they are absent.
        """
        period_start = get_field(subscription, "current_period_start")
        period_end = get_field(subscription, "current_period_end")
        if period_start is None or period_end is None:
            items = get_field(get_field(subscription, "items"), "data", []) or []
            if items:
                period_start = period_start or get_field(items[0], "current_period_start")
                period_end = period_end or get_field(items[0], "current_period_end")

        return cls(
            id=get_field(subscription, "id"),
            status=get_field(subscription, "status", "unknown"),
            customer_id=_id_of(get_field(subscription, "customer")),
            current_period_start=from_timestamp(period_start),
            current_period_end=from_timestamp(period_end),
            cancel_at_period_end=bool(get_field(subscription, "cancel_at_period_end", False)),
            latest_invoice_id=_id_of(get_field(subscription, "latest_invoice")),
            metadata=dict(get_field(subscription, "metadata", {}) or {}),
        )


class CheckoutSessionSnapshot(BaseModel):
    """The fields of a hosted checkout session."""

    id: str
    url: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        """Member correlation id stored in the session metadata."""
        return self.metadata.get("user_id")

    @classmethod
    def from_stripe(cls, session: Any) -> "CheckoutSessionSnapshot":
        """Build a snapshot from a Stripe checkout session."""
        return cls(
            id=get_field(session, "id"),
            url=get_field(session, "url"),
            status=get_field(session, "status"),
            payment_status=get_field(session, "payment_status"),
            customer_id=_id_of(get_field(session, "customer")),
            subscription_id=_id_of(get_field(session, "subscription")),
            metadata=dict(get_field(session, "metadata", {}) or {}),
        )


class InvoiceSnapshot(BaseModel):
    """The fields of a Stripe invoice used for ledger rows."""

    id: str
    status: Optional[str] = None
    amount_paid: int = 0
    currency: Optional[str] = None
    payment_intent_id: Optional[str] = None
    subscription_id: Optional[str] = None

    @classmethod
    def from_stripe(cls, invoice: Any) -> "InvoiceSnapshot":
        """Build a snapshot from a Stripe invoice.

        Newer API versions expose the payment intent through ``payments`` and
        the subscription through ``parent.subscription_details``.
        """
        payment_intent_id = _id_of(get_field(invoice, "payment_intent"))
        if payment_intent_id is None:
            payments = get_field(get_field(invoice, "payments"), "data", []) or []
            if payments:
                payment = get_field(payments[0], "payment")
                payment_intent_id = _id_of(get_field(payment, "payment_intent"))

        subscription_id = _id_of(get_field(invoice, "subscription"))
        if subscription_id is None:
            details = get_field(get_field(invoice, "parent"), "subscription_details")
            subscription_id = _id_of(get_field(details, "subscription"))

        return cls(
            id=get_field(invoice, "id"),
            status=get_field(invoice, "status"),
            amount_paid=int(get_field(invoice, "amount_paid", 0) or 0),
            currency=get_field(invoice, "currency"),
            payment_intent_id=payment_intent_id,
            subscription_id=subscription_id,
        )


def _translate(e: stripe.StripeError, operation: str, **context: Any) -> BillingProviderError:
    """Map a Stripe error onto the provider error classes."""
    log_context = {"operation": operation, **{k: str(v) for k, v in context.items()}}
    provider_message = getattr(e, "user_message", None) or str(e)

    if isinstance(e, stripe.InvalidRequestError) and getattr(e, "code", None) == "resource_missing":
        return ProviderNotFoundError(provider_message=provider_message, **log_context)
    if isinstance(e, (stripe.AuthenticationError, stripe.PermissionError)):
        stripe_logger.with_context(**log_context).error(f"Stripe rejected credentials: {e}")
        return ProviderConfigurationError(provider_message=provider_message, **log_context)
    if isinstance(e, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)):
        stripe_logger.with_context(**log_context).warning(f"Transient Stripe failure: {e}")
        return ProviderTransientError(provider_message=provider_message, **log_context)

    stripe_logger.with_context(**log_context).error(f"Stripe request failed: {e}")
    return BillingProviderError(provider_message=provider_message, **log_context)


class StripeBillingGateway:
    """Gateway over the Stripe operations used for annual memberships."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        """Initialize the gateway.

        Args:
            api_key: Stripe secret key. Defaults to ``settings.STRIPE_SECRET_KEY``.
            webhook_secret: Webhook signing secret. Defaults to the settings value.
            enabled: Override for ``settings.STRIPE_ENABLED`` (used in tests).
        """
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self._enabled = settings.STRIPE_ENABLED if enabled is None else enabled

        if self._enabled:
            stripe.api_key = self.api_key

    @property
    def is_configured(self) -> bool:
        """Whether billing operations can be attempted at all."""
        return bool(self._enabled and self.api_key)

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise ProviderConfigurationError("Billing is not configured for this instance")

    def _sanitize_text(self, text: str) -> str:
        """Sanitize text for Stripe API (ASCII-only)."""
        if not text:
            return text
        return text.encode("ascii", "replace").decode("ascii")

    def _clean_metadata(self, metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Clean metadata values for Stripe."""
        if not metadata:
            return {}

        return {
            self._sanitize_text(str(key)): self._sanitize_text(str(value))
            for key, value in metadata.items()
        }

    # Customer operations

    async def create_or_update_customer(
        self,
        *,
        email: str,
        name: Optional[str] = None,
        customer_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Create a customer, or refresh the existing one, and return its id.

        A stored customer id that no longer exists at Stripe is replaced by a
        new customer.
        """
        self._require_configured()
        params: Dict[str, Any] = {
            "email": self._sanitize_text(email),
            "metadata": self._clean_metadata(metadata),
        }
        if name:
            params["name"] = self._sanitize_text(name)

        if customer_id:
            try:
                customer = await stripe.Customer.modify_async(customer_id, **params)
                return customer.id
            except stripe.StripeError as e:
                error = _translate(e, "modify_customer", customer_id=customer_id)
                if not isinstance(error, ProviderNotFoundError):
                    raise error from e
                stripe_logger.with_context(customer_id=customer_id).warning(
                    "Stored customer no longer exists, creating a new one"
                )

        try:
            customer = await stripe.Customer.create_async(**params)
            return customer.id
        except stripe.StripeError as e:
            raise _translate(e, "create_customer") from e

    # Subscription operations

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Retrieve a subscription."""
        self._require_configured()
        try:
            subscription = await stripe.Subscription.retrieve_async(subscription_id)
        except stripe.StripeError as e:
            raise _translate(e, "retrieve_subscription", subscription_id=subscription_id) from e
        return SubscriptionSnapshot.from_stripe(subscription)

    async def update_subscription(
        self,
        subscription_id: str,
        *,
        price_id: Optional[str] = None,
        cancel_at_period_end: Optional[bool] = None,
        proration_behavior: str = "none",
    ) -> SubscriptionSnapshot:
        """Update a subscription's price and/or its cancel-at-period-end flag."""
        self._require_configured()
        try:
            update_params: Dict[str, Any] = {"proration_behavior": proration_behavior}

            if price_id:
                subscription = await stripe.Subscription.retrieve_async(subscription_id)
                items_data = get_field(get_field(subscription, "items"), "data", []) or []
                if not items_data:
                    raise BillingProviderError(
                        "Subscription has no items", subscription_id=subscription_id
                    )
                update_params["items"] = [{"id": get_field(items_data[0], "id"), "price": price_id}]

            if cancel_at_period_end is not None:
                update_params["cancel_at_period_end"] = cancel_at_period_end

            subscription = await stripe.Subscription.modify_async(
                subscription_id, **update_params
            )
        except stripe.StripeError as e:
            raise _translate(e, "update_subscription", subscription_id=subscription_id) from e
        return SubscriptionSnapshot.from_stripe(subscription)

    async def cancel_subscription(
        self, subscription_id: str, *, immediate: bool = False
    ) -> SubscriptionSnapshot:
        """Cancel a subscription now, or flag it to end at the period end."""
        self._require_configured()
        try:
            if immediate:
                subscription = await stripe.Subscription.cancel_async(subscription_id)
            else:
                subscription = await stripe.Subscription.modify_async(
                    subscription_id, cancel_at_period_end=True
                )
        except stripe.StripeError as e:
            raise _translate(e, "cancel_subscription", subscription_id=subscription_id) from e
        return SubscriptionSnapshot.from_stripe(subscription)

    async def create_price(self, price: PriceSpec) -> str:
        """Create an annual recurring price and return its id."""
        self._require_configured()
        try:
            created = await stripe.Price.create_async(
                unit_amount=price.amount_cents,
                currency=price.currency,
                recurring={"interval": price.interval},
                product_data={"name": self._sanitize_text(price.product_name)},
            )
        except stripe.StripeError as e:
            raise _translate(e, "create_price") from e
        return created.id

    # Checkout operations

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        price: PriceSpec,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
        trial_end: Optional[datetime] = None,
    ) -> CheckoutSessionSnapshot:
        """Create a subscription-mode checkout session for one annual price."""
        self._require_configured()
        clean_metadata = self._clean_metadata(metadata)
        subscription_data: Dict[str, Any] = {"metadata": clean_metadata}
        if trial_end is not None:
            subscription_data["trial_end"] = int(trial_end.timestamp())

        try:
            session = await stripe.checkout.Session.create_async(
                customer=customer_id,
                mode="subscription",
                line_items=[
                    {
                        "price_data": {
                            "currency": price.currency,
                            "product_data": {"name": self._sanitize_text(price.product_name)},
                            "unit_amount": price.amount_cents,
                            "recurring": {"interval": price.interval},
                        },
                        "quantity": 1,
                    }
                ],
                success_url=self._sanitize_text(success_url),
                cancel_url=self._sanitize_text(cancel_url),
                metadata=clean_metadata,
                client_reference_id=clean_metadata.get("user_id"),
                subscription_data=subscription_data,
            )
        except stripe.StripeError as e:
            raise _translate(e, "create_checkout_session", customer_id=customer_id) from e
        return CheckoutSessionSnapshot.from_stripe(session)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionSnapshot:
        """Retrieve a checkout session."""
        self._require_configured()
        try:
            session = await stripe.checkout.Session.retrieve_async(session_id)
        except stripe.StripeError as e:
            raise _translate(e, "retrieve_checkout_session", session_id=session_id) from e
        return CheckoutSessionSnapshot.from_stripe(session)

    async def retrieve_invoice(self, invoice_id: str) -> InvoiceSnapshot:
        """Retrieve an invoice."""
        self._require_configured()
        try:
            invoice = await stripe.Invoice.retrieve_async(invoice_id)
        except stripe.StripeError as e:
            raise _translate(e, "retrieve_invoice", invoice_id=invoice_id) from e
        return InvoiceSnapshot.from_stripe(invoice)

    # Portal operations

    async def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        """Create a customer portal session and return its URL."""
        self._require_configured()
        try:
            session = await stripe.billing_portal.Session.create_async(
                customer=customer_id,
                return_url=self._sanitize_text(return_url),
            )
        except stripe.StripeError as e:
            raise _translate(e, "create_portal_session", customer_id=customer_id) from e
        return session.url

    # Webhook operations

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify and construct a webhook event.

        Raises:
            BillingConfigurationError: No webhook secret is configured.
            ValidationException: Missing header, bad signature or malformed payload.
        """
        if not self.webhook_secret:
            raise BillingConfigurationError("Webhook secret is not configured")
        if not signature:
            raise ValidationException("Missing Stripe-Signature header")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise ValidationException("Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            raise ValidationException("Invalid webhook signature") from e


# Singleton instance
stripe_gateway = StripeBillingGateway()
