"""
Billing API routes.

- GET  /api/plans: static plan catalog
- POST /api/checkout: create a Stripe subscription checkout session
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from fitai.core.clerk_auth import get_current_identity
from fitai.features.billing.service import start_checkout
from fitai.features.plans.catalog import list_plans
from fitai.models.identity import Identity

router = APIRouter(prefix="/api", tags=["billing"])


class CheckoutRequest(BaseModel):
    plan_type: str = Field(..., alias="planType")


class CheckoutResponse(BaseModel):
    url: str


@router.get("/plans")
def get_plans():
    return {
        "plans": [
            {
                "name": plan.name,
                "amount": plan.amount,
                "currency": plan.currency,
                "interval": plan.interval,
                "isPopular": plan.is_popular,
                "description": plan.description,
                "features": list(plan.features),
            }
            for plan in list_plans()
        ]
    }


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(body: CheckoutRequest, identity: Identity = Depends(get_current_identity)):
    """
    Create Stripe checkout session for the caller.

    Errors:
        503: Billing disabled (STRIPE_SECRET_KEY not set)
        400: Unknown plan type
        500: Stripe API error
    """
    return {"url": start_checkout(identity, body.plan_type)}
