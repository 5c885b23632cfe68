"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.).
This allows swapping providers without changing business logic.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field


@dataclass
class BillingWebhookEvent:
    """A verified provider event, reduced to plain data."""
    event_id: str
    event_type: str
    data_object: Dict[str, Any] = field(default_factory=dict)
    # Provider creation time, unix seconds
    created: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {"id": self.event_id, "type": self.event_type, "data": {"object": self.data_object}}
        if self.created is not None:
            payload["created"] = self.created
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BillingWebhookEvent":
        return cls(
            event_id=payload.get("id") or "",
            event_type=payload.get("type") or "",
            data_object=(payload.get("data") or {}).get("object") or {},
            created=payload.get("created"),
        )


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Checkout session creation
    - Subscription price change and cancellation
    - Webhook signature verification and parsing
    """

    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Create a checkout session for a subscription.

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def change_subscription_price(self, subscription_id: str, price_id: str) -> Dict[str, Any]:
        """
        Swap the subscription's first item to a new price (prorated).

        Raises:
            BillingProviderError: If the provider call fails
        """
        ...

    def cancel_subscription_at_period_end(self, subscription_id: str) -> Dict[str, Any]:
        """
        Schedule cancellation at the end of the current billing period.

        Raises:
            BillingProviderError: If the provider call fails
        """
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
        """
        Verify webhook signature and parse event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw webhook body (for signature verification)

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook verification errors."""
    pass
