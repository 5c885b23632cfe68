"""
Profile domain service.
- ensure_profile(identity)
- get_profile(user_id) / get_profile_by_subscription_id(subscription_id)
- activate_subscription / deactivate_subscription / cancel_subscription (webhook transitions)
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fitai.core.database import get_db_session, profiles
from fitai.core.errors import InvalidInputError, PersistenceFailureError
from fitai.core.logging import log_event
from fitai.models.identity import Identity
from fitai.models.profile import Profile

logger = logging.getLogger("fitai")


def get_profile(user_id: str) -> Optional[Profile]:
    with get_db_session() as session:
        row = session.execute(select(profiles).where(profiles.c.user_id == user_id)).first()
        return Profile.from_row(row) if row else None


def get_profile_by_subscription_id(subscription_id: str) -> Optional[Profile]:
    with get_db_session() as session:
        row = session.execute(
            select(profiles).where(profiles.c.stripe_subscription_id == subscription_id)
        ).first()
        return Profile.from_row(row) if row else None


def ensure_profile(identity: Identity) -> Tuple[Profile, bool]:
    """
    Create the caller's profile on first contact.

    Returns:
        (profile, created). created is False when the profile already existed,
        including when a concurrent request inserted it first.

    Raises:
        InvalidInputError: The identity has no email address
        PersistenceFailureError: The insert failed for a reason other than a duplicate
    """
    if not identity.email:
        raise InvalidInputError("User does not have an email address.")

    existing = get_profile(identity.user_id)
    if existing:
        return existing, False

    try:
        with get_db_session() as session:
            session.execute(
                insert(profiles).values(
                    user_id=identity.user_id,
                    email=identity.email,
                    subscription_active=False,
                    subscription_tier=None,
                    stripe_subscription_id=None,
                )
            )
    except IntegrityError:
        # Lost a race against a duplicate request; the unique key held
        logger.info(f"Profile insert raced for user: {identity.user_id}")
        return get_profile(identity.user_id), False
    except SQLAlchemyError as e:
        log_event("error", "profile.create_failed", user_id=identity.user_id, error_code="persistence_failure", extra={"error": e})
        raise PersistenceFailureError("Error creating profile.") from e

    log_event("info", "profile.created", user_id=identity.user_id)
    return get_profile(identity.user_id), True


def _update_profile(where_clause, **values) -> int:
    values["updated_at"] = datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(update(profiles).where(where_clause).values(**values))
        return result.rowcount


def activate_subscription(user_id: str, subscription_id: str, tier: Optional[str]) -> bool:
    """Link a Stripe subscription and mark it active. Returns False if no profile matched."""
    return _update_profile(
        profiles.c.user_id == user_id,
        stripe_subscription_id=subscription_id,
        subscription_active=True,
        subscription_tier=tier,
    ) > 0


def deactivate_subscription(user_id: str) -> bool:
    """Payment failed: inactive, tier and subscription link untouched."""
    return _update_profile(profiles.c.user_id == user_id, subscription_active=False) > 0


def cancel_subscription(user_id: str) -> bool:
    """Subscription deleted: inactive and unlinked."""
    return _update_profile(
        profiles.c.user_id == user_id,
        subscription_active=False,
        stripe_subscription_id=None,
    ) > 0
