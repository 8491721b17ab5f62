"""Signup saga — pending identity plus Stripe checkout, compensated on failure.

The tenant row is not created here. It materializes only when Stripe reports
the checkout as completed (see ``webhook.py``).
"""

from __future__ import annotations

from fastapi.concurrency import run_in_threadpool

from src.core.constants import (
    EMAIL_CONFLICT_MESSAGE,
    META_EMAIL,
    META_IDENTITY_ID,
    META_ORGANIZATION_NAME,
    META_ORGANIZATION_NUMBER,
    META_SIGNUP_FLOW,
    ORG_CONFLICT_MESSAGE,
    SIGNUP_FLOW_MARKER,
)
from src.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    ValidationError,
)
from src.core.interfaces import BaseIdentityStore, BasePaymentGateway, BaseTenantStore
from src.core.logging import get_logger
from src.core.types import SignupRequest, normalize_email

log = get_logger(__name__)


async def _ensure_available(
    tenants: BaseTenantStore,
    organization_number: str,
    email: str,
) -> None:
    """Advisory uniqueness pre-check.

    Concurrent signups can both pass this; the unique constraints on the
    tenants table decide the winner at insert time.
    """
    if await tenants.find_by_org_number(organization_number) is not None:
        raise ConflictError(ORG_CONFLICT_MESSAGE, context={"field": "organization_number"})
    if await tenants.find_by_email(email) is not None:
        raise ConflictError(EMAIL_CONFLICT_MESSAGE, context={"field": "email"})


class SignupValidator:
    """Availability check used by the signup form before payment."""

    def __init__(self, tenants: BaseTenantStore, identities: BaseIdentityStore) -> None:
        self._tenants = tenants
        self._identities = identities

    async def validate(self, organization_number: str | None, email: str | None) -> None:
        org = (organization_number or "").strip()
        if not org or not (email or "").strip():
            raise ValidationError("organization_number and email are required")
        normalized = normalize_email(email or "")

        await _ensure_available(self._tenants, org, normalized)
        if await self._identities.find_by_email(normalized) is not None:
            raise ConflictError(
                "email already registered, log in instead",
                context={"field": "email"},
            )


class SignupInitiator:
    """Create a pending identity and the checkout session that will confirm it."""

    def __init__(
        self,
        tenants: BaseTenantStore,
        identities: BaseIdentityStore,
        gateway: BasePaymentGateway,
    ) -> None:
        self._tenants = tenants
        self._identities = identities
        self._gateway = gateway

    async def initiate(self, request: SignupRequest) -> str:
        """Run the saga and return the checkout redirect URL."""
        await _ensure_available(self._tenants, request.organization_number, request.email)

        identity = await self._identities.create_pending(
            request.email,
            request.password,
            {
                META_ORGANIZATION_NAME: request.organization_name,
                META_ORGANIZATION_NUMBER: request.organization_number,
            },
        )

        metadata = build_checkout_metadata(request, identity.identity_id)
        try:
            # The Stripe SDK call is blocking.
            session = await run_in_threadpool(
                self._gateway.create_checkout_session,
                plan_id=request.plan_id,
                customer_email=request.email,
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                client_reference_id=identity.identity_id,
                metadata=metadata,
            )
        except Exception:
            await self._compensate(identity.identity_id)
            raise

        log.info(
            "signup_checkout_started",
            identity_id=identity.identity_id,
            session_id=session.session_id,
            plan_id=request.plan_id,
        )
        return session.url

    async def _compensate(self, identity_id: str) -> None:
        """Undo identity creation after the checkout could not be opened."""
        try:
            await self._identities.delete(identity_id)
            log.info("signup_compensated", identity_id=identity_id)
        except ExternalServiceError:
            # Left for the pending-identity reaper.
            log.error("signup_compensation_failed", identity_id=identity_id, exc_info=True)


def build_checkout_metadata(request: SignupRequest, identity_id: str) -> dict[str, str]:
    """Correlation metadata for the checkout session. Never carries secrets."""
    return {
        META_IDENTITY_ID: identity_id,
        META_ORGANIZATION_NAME: request.organization_name,
        META_ORGANIZATION_NUMBER: request.organization_number,
        META_EMAIL: request.email,
        META_SIGNUP_FLOW: SIGNUP_FLOW_MARKER,
    }
