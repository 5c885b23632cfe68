"""
fitai/features/plans/catalog.py

Static subscription plan catalog.

Handles:
- Display metadata for the three billing intervals
- Interval -> Stripe price id mapping (from configuration)
"""

from typing import Dict, List, Optional

from fitai.core.config import settings
from fitai.core.errors import InvalidInputError
from fitai.models.plan import Plan


AVAILABLE_PLANS: List[Plan] = [
    Plan(
        name="Weekly Plan",
        amount=60,
        currency="INR",
        interval="week",
        description="Great if you want to try the service before committing longer.",
        features=[
            "Unlimited AI meal plans",
            "AI nutrition insights",
            "Cancel anytime",
        ],
    ),
    Plan(
        name="Monthly Plan",
        amount=199,
        currency="INR",
        interval="month",
        is_popular=True,
        description="Perfect for ongoing, month-to-month meal planning and features.",
        features=[
            "Unlimited AI meal plans",
            "Priority AI support",
            "Cancel anytime",
        ],
    ),
    Plan(
        name="Yearly Plan",
        amount=999,
        currency="INR",
        interval="year",
        description="Best value for those committed to improving their diet long-term.",
        features=[
            "Unlimited AI meal plans",
            "All premium features",
            "Cancel anytime",
        ],
    ),
]

_PLANS_BY_INTERVAL: Dict[str, Plan] = {plan.interval: plan for plan in AVAILABLE_PLANS}

# Settings attribute holding the Stripe price id for each interval
_PRICE_SETTING = {
    "week": "STRIPE_PRICE_WEEKLY",
    "month": "STRIPE_PRICE_MONTHLY",
    "year": "STRIPE_PRICE_YEARLY",
}


def list_plans() -> List[Plan]:
    return list(AVAILABLE_PLANS)


def get_plan(interval: str) -> Optional[Plan]:
    return _PLANS_BY_INTERVAL.get(interval)


def get_price_id(plan_type: str) -> str:
    """
    Map a plan interval to its configured Stripe price id.

    Raises:
        InvalidInputError: Unknown interval, or no price configured for it
    """
    setting = _PRICE_SETTING.get(plan_type)
    if not setting:
        raise InvalidInputError("Invalid plan type.")
    price_id = getattr(settings, setting, None)
    if not price_id:
        raise InvalidInputError(f"No Stripe price configured for plan: {plan_type}")
    return price_id
