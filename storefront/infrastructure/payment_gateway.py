"""Stripe Checkout adapter.

Hosted checkout sessions are opened, looked up and expired here, and webhook
deliveries are verified. Everything else in the service works with plain
dicts and domain types.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

import stripe

from storefront.application.errors import (
    InvalidInput,
    InvalidSignature,
    PaymentConfigurationError,
    PaymentSessionError,
)
from storefront.core.logging_config import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.domain.cart import CartItem
from storefront.domain.pricing import to_cents

logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


def build_line_items(items: Iterable[CartItem], shipping: Decimal, currency: str) -> list[dict[str, Any]]:
    line_items = []
    for item in items:
        product_data: dict[str, Any] = {"name": item.name}
        if item.color and item.size:
            product_data["description"] = f"{item.color} - {item.size}"
        if item.image.startswith("http"):
            product_data["images"] = [item.image]
        line_items.append({
            "price_data": {
                "currency": currency,
                "product_data": product_data,
                "unit_amount": to_cents(item.price),
            },
            "quantity": item.quantity,
        })
    if shipping > 0:
        line_items.append({
            "price_data": {
                "currency": currency,
                "product_data": {"name": "Shipping", "description": "Standard delivery"},
                "unit_amount": to_cents(shipping),
            },
            "quantity": 1,
        })
    return line_items


class PaymentGateway:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def create_checkout_session(
        self,
        line_items: list[dict[str, Any]],
        metadata: dict[str, str],
        intent_metadata: dict[str, str],
        idempotency_key: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        if not self.settings.stripe_configured:
            raise PaymentSessionError("Payment processor is not configured")

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": f"{self.settings.SHOP_URL}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.settings.SHOP_URL}/cart",
            "shipping_address_collection": {"allowed_countries": self.settings.SHIPPING_COUNTRIES},
            "metadata": metadata,
            "payment_intent_data": {"metadata": intent_metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(
                api_key=self.settings.STRIPE_SECRET_KEY,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.StripeError as e:
            logger.error(
                "Checkout session creation failed",
                extra={'extra_fields': {'error_type': type(e).__name__, 'order_number': metadata.get('order_number')}},
            )
            raise PaymentSessionError(f"Payment processor error: {e.user_message or e}") from e

        return CheckoutSession(id=session.id, url=session.url)

    def session_status(self, session_id: str) -> str:
        """``open``, ``complete`` or ``expired``, as the processor reports it."""
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.settings.STRIPE_SECRET_KEY)
        except stripe.StripeError as e:
            raise PaymentSessionError(f"Could not retrieve session {session_id}: {e.user_message or e}") from e
        return session.status

    def expire_session(self, session_id: str) -> None:
        """Close an open session so it can no longer be paid."""
        try:
            stripe.checkout.Session.expire(session_id, api_key=self.settings.STRIPE_SECRET_KEY)
        except stripe.StripeError as e:
            raise PaymentSessionError(f"Could not expire session {session_id}: {e.user_message or e}") from e
        logger.info(f"Checkout session {session_id} expired")

    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """Check the ``Stripe-Signature`` header against the raw body, then parse it."""
        secret = self.settings.STRIPE_WEBHOOK_SECRET
        if not secret:
            raise PaymentConfigurationError("Webhook secret is not configured")
        if not signature:
            raise InvalidSignature("missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(
                payload, signature, secret, tolerance=self.settings.STRIPE_WEBHOOK_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(str(e)) from e
        except ValueError as e:
            raise InvalidInput("Webhook payload is not valid JSON") from e
        return json.loads(payload)
