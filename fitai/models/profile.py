"""
Profile domain model.

Storage keeps three independent columns (active flag, tier, Stripe
subscription id). The `subscription` property folds them into one tagged
variant so callers never have to interpret raw combinations.
"""

from datetime import datetime
from typing import Literal, Optional, Union
from pydantic import BaseModel, ConfigDict


class Unsubscribed(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: Literal["unsubscribed"] = "unsubscribed"


class ActiveSubscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: Literal["active"] = "active"
    tier: Optional[str] = None
    subscription_id: str


class LapsedSubscription(BaseModel):
    """Still linked to a Stripe subscription, but payment failed."""
    model_config = ConfigDict(frozen=True)

    state: Literal["lapsed"] = "lapsed"
    tier: Optional[str] = None
    subscription_id: str


SubscriptionState = Union[Unsubscribed, ActiveSubscription, LapsedSubscription]


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    subscription_active: bool = False
    subscription_tier: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def subscription(self) -> SubscriptionState:
        if not self.stripe_subscription_id:
            # Active without a linked subscription cannot be acted on; treat as unsubscribed
            return Unsubscribed()
        if self.subscription_active:
            return ActiveSubscription(tier=self.subscription_tier, subscription_id=self.stripe_subscription_id)
        return LapsedSubscription(tier=self.subscription_tier, subscription_id=self.stripe_subscription_id)

    @classmethod
    def from_row(cls, row) -> "Profile":
        return cls(
            user_id=row.user_id,
            email=row.email,
            subscription_active=bool(row.subscription_active),
            subscription_tier=row.subscription_tier,
            stripe_subscription_id=row.stripe_subscription_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
