"""Signup endpoints — availability check and checkout initiation."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import get_signup_initiator, get_signup_validator
from src.api.models.schemas import (
    CheckoutResponse,
    SignupCheckoutRequest,
    SignupValidateRequest,
    ValidResponse,
)
from src.core.types import SignupRequest
from src.provisioning.signup import SignupInitiator, SignupValidator

router = APIRouter(prefix="/signup", tags=["signup"])


@router.post("/validate", response_model=ValidResponse)
async def validate_signup(
    body: SignupValidateRequest,
    validator: SignupValidator = Depends(get_signup_validator),
) -> ValidResponse:
    """Report whether the organization number and email are still free."""
    await validator.validate(body.organization_number, body.email)
    return ValidResponse()


@router.post("/checkout", response_model=CheckoutResponse)
async def start_checkout(
    body: SignupCheckoutRequest,
    initiator: SignupInitiator = Depends(get_signup_initiator),
) -> CheckoutResponse:
    """Create the pending identity and return the hosted checkout URL."""
    request = SignupRequest.build(
        organization_name=body.organization_name,
        organization_number=body.organization_number,
        email=body.email,
        password=body.password,
        plan_id=body.plan_id,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    checkout_url = await initiator.initiate(request)
    return CheckoutResponse(checkout_url=checkout_url)
