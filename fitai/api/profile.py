"""
Profile API routes.

- POST /api/create-profile: provision the caller's profile (idempotent)
- GET  /api/profile/subscription-status: caller's billing state
- POST /api/profile/change-plan: move the Stripe subscription to another plan
- POST /api/profile/unsubscribe: cancel at period end
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from fitai.core.clerk_auth import get_current_identity
from fitai.features.billing import service as billing_service
from fitai.features.profiles.service import ensure_profile
from fitai.models.identity import Identity

router = APIRouter(prefix="/api", tags=["profile"])


class MessageResponse(BaseModel):
    message: str


class ChangePlanRequest(BaseModel):
    new_plan: str = Field(..., alias="newPlan")


@router.post("/create-profile", response_model=MessageResponse, responses={201: {"model": MessageResponse}})
def create_profile(identity: Identity = Depends(get_current_identity)):
    """
    Ensure a profile exists for the authenticated caller.

    Returns:
        200 {"message"} when the profile already existed
        201 {"message"} when it was created

    Errors:
        404: No caller identity
        400: Identity has no email address
    """
    _, created = ensure_profile(identity)
    if not created:
        return {"message": "Profile already exists."}
    return JSONResponse(status_code=201, content={"message": "Profile created successfully."})


@router.get("/profile/subscription-status")
def subscription_status(identity: Identity = Depends(get_current_identity)):
    profile = billing_service.get_subscription_status(identity)
    return {
        "subscription": {
            "subscription_tier": profile.subscription_tier,
            "subscription_active": profile.subscription_active,
            "state": profile.subscription.model_dump(),
        }
    }


@router.post("/profile/change-plan", response_model=MessageResponse)
def change_plan(body: ChangePlanRequest, identity: Identity = Depends(get_current_identity)):
    billing_service.change_plan(identity, body.new_plan)
    return {"message": "Subscription plan change requested."}


@router.post("/profile/unsubscribe")
def unsubscribe(identity: Identity = Depends(get_current_identity)):
    billing_service.unsubscribe(identity)
    return {"success": True}
