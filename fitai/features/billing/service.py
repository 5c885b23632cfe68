"""
Billing service orchestrator.

Coordinates:
- Webhook reconciliation (Stripe events -> profile state)
- Dead-letter log for transitions that failed to persist
- Checkout, plan change and cancellation requests

All Stripe-specific code is in stripe_provider.py.

Webhook policy: a validly signed event is always acknowledged. A missing
profile is a logged skip. A storage failure is logged and written to
webhook_failures so it can be replayed without a provider redelivery.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import SQLAlchemyError

from fitai.core.config import settings
from fitai.core.database import get_db_session, webhook_failures
from fitai.core.errors import BillingDisabledError, NotFoundError, UpstreamFailureError
from fitai.core.logging import log_event
from fitai.features.billing.provider import BillingProvider, BillingProviderError, BillingWebhookEvent
from fitai.features.billing.stripe_provider import StripeProvider
from fitai.features.plans.catalog import get_plan, get_price_id
from fitai.features.profiles import service as profile_service
from fitai.models.identity import Identity
from fitai.models.profile import Profile


CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def billing_enabled() -> bool:
    """Check if billing API calls are possible (Stripe secret configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> BillingProvider:
    return StripeProvider()


def _object_id(value: Any) -> Optional[str]:
    # Stripe sends either an id string or an expanded object
    if isinstance(value, dict):
        return value.get("id")
    return value or None


# ============================================================================
# Webhook transitions
# ============================================================================

def handle_checkout_session_completed(session: Dict[str, Any]) -> None:
    metadata = session.get("metadata") or {}
    user_id = metadata.get("clerkUserId")
    if not user_id:
        log_event("error", "No userId found in session metadata.", event_type=CHECKOUT_SESSION_COMPLETED)
        return

    subscription_id = _object_id(session.get("subscription"))
    if not subscription_id:
        log_event("error", "No subscription ID found in session.", user_id=user_id, event_type=CHECKOUT_SESSION_COMPLETED)
        return

    plan_type = metadata.get("planType") or None
    tier = plan_type if plan_type and get_plan(plan_type) else None
    if plan_type and tier is None:
        log_event("warning", "Unknown planType in session metadata.", user_id=user_id, event_type=CHECKOUT_SESSION_COMPLETED, extra={"plan_type": plan_type})

    if not profile_service.activate_subscription(user_id, subscription_id, tier):
        log_event("error", "No profile found for this user.", user_id=user_id, event_type=CHECKOUT_SESSION_COMPLETED)
        return

    log_event("info", f"Subscription activated for user: {user_id}", user_id=user_id, event_type=CHECKOUT_SESSION_COMPLETED)


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    lines = (invoice.get("lines") or {}).get("data") or []
    if not lines:
        return None
    line = lines[0]
    subscription = line.get("subscription")
    if not subscription:
        # Newer API versions nest the subscription under the line's parent
        details = (line.get("parent") or {}).get("subscription_item_details") or {}
        subscription = details.get("subscription")
    return _object_id(subscription)


def handle_invoice_payment_failed(invoice: Dict[str, Any]) -> None:
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        log_event("error", "No subscription ID found in invoice lines.", event_type=INVOICE_PAYMENT_FAILED)
        return

    profile = profile_service.get_profile_by_subscription_id(subscription_id)
    if not profile:
        log_event("error", "No profile found for this subscription ID.", event_type=INVOICE_PAYMENT_FAILED)
        return

    profile_service.deactivate_subscription(profile.user_id)
    log_event("info", f"Subscription payment failed for user: {profile.user_id}", user_id=profile.user_id, event_type=INVOICE_PAYMENT_FAILED)


def handle_subscription_deleted(subscription: Dict[str, Any]) -> None:
    subscription_id = subscription.get("id")
    profile = profile_service.get_profile_by_subscription_id(subscription_id) if subscription_id else None
    if not profile:
        log_event("error", "No profile found for this subscription ID.", event_type=SUBSCRIPTION_DELETED)
        return

    profile_service.cancel_subscription(profile.user_id)
    log_event("info", f"Subscription canceled for user: {profile.user_id}", user_id=profile.user_id, event_type=SUBSCRIPTION_DELETED)


EVENT_HANDLERS: Dict[str, Callable[[Dict[str, Any]], None]] = {
    CHECKOUT_SESSION_COMPLETED: handle_checkout_session_completed,
    INVOICE_PAYMENT_FAILED: handle_invoice_payment_failed,
    SUBSCRIPTION_DELETED: handle_subscription_deleted,
}


def _event_created_at(event: BillingWebhookEvent) -> Optional[datetime]:
    if event.created is None:
        return None
    return datetime.fromtimestamp(int(event.created), timezone.utc)


def record_webhook_failure(event: BillingWebhookEvent, error: Exception) -> None:
    try:
        with get_db_session() as session:
            session.execute(
                insert(webhook_failures).values(
                    stripe_event_id=event.event_id,
                    event_type=event.event_type,
                    payload=event.to_payload(),
                    event_created_at=_event_created_at(event),
                    error_message=str(error)[:2000],
                    created_at=datetime.now(timezone.utc),
                )
            )
    except SQLAlchemyError as e:
        log_event(
            "error",
            "webhook.dead_letter_write_failed",
            event_type=event.event_type,
            error_code="persistence_failure",
            extra={"event_id": event.event_id, "error": e},
        )


def apply_event(event: BillingWebhookEvent, *, record_failures: bool = True) -> bool:
    """
    Apply one verified event to profile state.

    Returns False only when a storage error prevented the transition. Errors
    other than storage errors propagate to the caller.
    """
    handler = EVENT_HANDLERS.get(event.event_type)
    if handler is None:
        log_event("info", f"Unhandled event type {event.event_type}", event_type=event.event_type)
        return True

    try:
        handler(event.data_object)
    except SQLAlchemyError as e:
        log_event(
            "error",
            "webhook.transition_failed",
            event_type=event.event_type,
            error_code="persistence_failure",
            extra={"event_id": event.event_id, "error": e},
        )
        if record_failures:
            record_webhook_failure(event, e)
        return False
    return True


def process_webhook_event(headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
    """
    Verify and reconcile one webhook delivery.

    Raises:
        BillingWebhookError: If signature or payload invalid
    """
    event = get_provider().handle_webhook(headers, body)
    apply_event(event)
    return event


# ============================================================================
# Dead-letter log
# ============================================================================

def list_webhook_failures(include_replayed: bool = False) -> List[Dict[str, Any]]:
    query = select(webhook_failures).order_by(webhook_failures.c.created_at, webhook_failures.c.id)
    if not include_replayed:
        query = query.where(webhook_failures.c.replayed_at.is_(None))
    with get_db_session() as session:
        rows = session.execute(query).fetchall()
    return [
        {
            "id": row.id,
            "event_id": row.stripe_event_id,
            "event_type": row.event_type,
            "error": row.error_message,
            "created_at": row.created_at.isoformat() if row.created_at else None,
            "replayed_at": row.replayed_at.isoformat() if row.replayed_at else None,
        }
        for row in rows
    ]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _target_profile(event: BillingWebhookEvent) -> Optional[Profile]:
    """The profile a stored event would transition, if it still resolves to one."""
    data = event.data_object
    if event.event_type == CHECKOUT_SESSION_COMPLETED:
        user_id = (data.get("metadata") or {}).get("clerkUserId")
        return profile_service.get_profile(user_id) if user_id else None
    if event.event_type == INVOICE_PAYMENT_FAILED:
        subscription_id = _invoice_subscription_id(data)
    elif event.event_type == SUBSCRIPTION_DELETED:
        subscription_id = data.get("id")
    else:
        return None
    return profile_service.get_profile_by_subscription_id(subscription_id) if subscription_id else None


def _is_superseded(row, event: BillingWebhookEvent) -> bool:
    """True when the target profile changed after the stored event happened."""
    profile = _target_profile(event)
    if not profile or not profile.updated_at:
        return False
    happened_at = row.event_created_at or row.created_at
    return _as_utc(profile.updated_at) > _as_utc(happened_at)


def _mark_replayed(row_id: int) -> None:
    with get_db_session() as session:
        session.execute(
            update(webhook_failures)
            .where(webhook_failures.c.id == row_id)
            .values(replayed_at=datetime.now(timezone.utc))
        )


def replay_webhook_failures(limit: Optional[int] = None) -> Dict[str, int]:
    """
    Re-apply pending dead-lettered events, oldest first.

    Rows that fail again stay pending. A row whose target profile was updated
    after the event happened is stamped without being applied, so a stale
    transition never overwrites newer state.
    """
    query = (
        select(webhook_failures)
        .where(webhook_failures.c.replayed_at.is_(None))
        .order_by(webhook_failures.c.created_at, webhook_failures.c.id)
    )
    if limit:
        query = query.limit(limit)
    with get_db_session() as session:
        pending = session.execute(query).fetchall()

    replayed = 0
    failed = 0
    skipped = 0
    for row in pending:
        event = BillingWebhookEvent.from_payload(row.payload)
        try:
            superseded = _is_superseded(row, event)
        except SQLAlchemyError as e:
            log_event("error", "webhook.dead_letter_lookup_failed", event_type=event.event_type, extra={"event_id": event.event_id, "error": e})
            failed += 1
            continue
        if superseded:
            log_event(
                "warning",
                "webhook.dead_letter_superseded",
                event_type=event.event_type,
                extra={"event_id": event.event_id},
            )
            _mark_replayed(row.id)
            skipped += 1
            continue
        if not apply_event(event, record_failures=False):
            failed += 1
            continue
        _mark_replayed(row.id)
        replayed += 1

    log_event(
        "info",
        "webhook.dead_letter_replay",
        extra={"replayed": replayed, "failed": failed, "skipped": skipped},
    )
    return {"replayed": replayed, "failed": failed, "skipped": skipped}


# ============================================================================
# Customer-initiated billing
# ============================================================================

def _require_billing() -> BillingProvider:
    if not billing_enabled():
        raise BillingDisabledError("Billing is not configured.")
    return get_provider()


def start_checkout(identity: Identity, plan_type: str) -> str:
    """
    Create a subscription checkout session for the caller.

    Raises:
        InvalidInputError: Unknown plan or no price configured
        BillingDisabledError: Stripe not configured
        UpstreamFailureError: Stripe API error
    """
    price_id = get_price_id(plan_type)
    provider = _require_billing()
    base_url = settings.BASE_URL.rstrip("/")
    try:
        return provider.create_checkout_session(
            price_id=price_id,
            success_url=f"{base_url}/mealplan?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/subscribe",
            customer_email=identity.email or None,
            metadata={"clerkUserId": identity.user_id, "planType": plan_type},
        )
    except BillingProviderError as e:
        log_event("error", "billing.checkout_failed", user_id=identity.user_id, extra={"error": e})
        raise UpstreamFailureError("Error creating checkout session.") from e


def get_subscription_status(identity: Identity) -> Profile:
    profile = profile_service.get_profile(identity.user_id)
    if not profile:
        raise NotFoundError("No profile found.")
    return profile


def _linked_subscription_id(identity: Identity) -> str:
    profile = profile_service.get_profile(identity.user_id)
    if not profile or not profile.stripe_subscription_id:
        raise NotFoundError("No active subscription found.")
    return profile.stripe_subscription_id


def change_plan(identity: Identity, new_plan: str) -> Dict[str, Any]:
    """
    Move the caller's Stripe subscription to another plan's price.

    The stored tier is left to the reconciler; only Stripe is changed here.
    """
    price_id = get_price_id(new_plan)
    subscription_id = _linked_subscription_id(identity)
    provider = _require_billing()
    try:
        result = provider.change_subscription_price(subscription_id, price_id)
    except BillingProviderError as e:
        log_event("error", "billing.change_plan_failed", user_id=identity.user_id, extra={"error": e})
        raise UpstreamFailureError("Failed to change subscription plan.") from e
    log_event("info", "billing.plan_change_requested", user_id=identity.user_id, extra={"plan": new_plan})
    return result


def unsubscribe(identity: Identity) -> Dict[str, Any]:
    """Schedule cancellation; the subscription-deleted webhook deactivates the profile."""
    subscription_id = _linked_subscription_id(identity)
    provider = _require_billing()
    try:
        result = provider.cancel_subscription_at_period_end(subscription_id)
    except BillingProviderError as e:
        log_event("error", "billing.unsubscribe_failed", user_id=identity.user_id, extra={"error": e})
        raise UpstreamFailureError("Failed to unsubscribe.") from e
    log_event("info", "billing.cancellation_requested", user_id=identity.user_id)
    return result
