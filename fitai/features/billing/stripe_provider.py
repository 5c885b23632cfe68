"""
Stripe billing provider implementation.

Implements BillingProvider protocol using Stripe API.
Handles webhook signature verification and event parsing.
"""
import json
from typing import Dict, Any, Optional
import stripe

from fitai.core.config import settings
from fitai.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookEvent,
)


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to settings.STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to settings.STRIPE_WEBHOOK_SECRET)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if self.secret_key:
            stripe.api_key = self.secret_key

    def _require_api_key(self) -> None:
        # Webhook verification only needs the signing secret
        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """Create Stripe checkout session."""
        self._require_api_key()
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(**params)
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")

    def change_subscription_price(self, subscription_id: str, price_id: str) -> Dict[str, Any]:
        """Swap the subscription's first item to price_id with proration."""
        self._require_api_key()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
            item_id = subscription["items"]["data"][0]["id"]
            updated = stripe.Subscription.modify(
                subscription_id,
                items=[{"id": item_id, "price": price_id}],
                proration_behavior="create_prorations",
            )
            return {"id": updated["id"], "status": updated["status"]}
        except (stripe.StripeError, KeyError, IndexError) as e:
            raise BillingProviderError(f"Stripe subscription update failed: {e}")

    def cancel_subscription_at_period_end(self, subscription_id: str) -> Dict[str, Any]:
        """Ask Stripe to cancel when the current period ends."""
        self._require_api_key()
        try:
            updated = stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
            return {
                "id": updated["id"],
                "status": updated["status"],
                "cancel_at_period_end": updated["cancel_at_period_end"],
            }
        except (stripe.StripeError, KeyError) as e:
            raise BillingProviderError(f"Stripe subscription cancellation failed: {e}")

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        # Signature covers the raw bytes; work on plain dicts from here on
        return BillingWebhookEvent.from_payload(json.loads(body))
