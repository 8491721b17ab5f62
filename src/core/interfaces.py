"""Abstract base classes — every external collaborator is reached through these."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from src.core.types import (
    AccountingCredentialBundle,
    PendingIdentity,
    SubscriptionStatus,
    Tenant,
)


class BaseIdentityStore(ABC):
    """System of record for user identities."""

    @abstractmethod
    async def create_pending(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any],
    ) -> PendingIdentity:
        """Create an unconfirmed identity carrying ``pending_payment=true``."""
        ...

    @abstractmethod
    async def confirm(self, identity_id: str) -> PendingIdentity:
        """Mark the identity confirmed and clear ``pending_payment``.

        Raises NotFoundError when the identity does not exist.
        """
        ...

    @abstractmethod
    async def delete(self, identity_id: str) -> bool:
        """Delete the identity. Returns False when it was already gone."""
        ...

    @abstractmethod
    async def get(self, identity_id: str) -> PendingIdentity | None:
        """Look up an identity by id."""
        ...

    @abstractmethod
    async def find_by_email(self, email: str) -> PendingIdentity | None:
        """Look up an identity by email."""
        ...

    @abstractmethod
    async def list_identities(self) -> list[PendingIdentity]:
        """Return every identity (used by housekeeping sweeps)."""
        ...


class BaseTenantStore(ABC):
    """One row per tenant; unique on organization number and email."""

    @abstractmethod
    async def find_by_id(self, tenant_id: str) -> Tenant | None: ...

    @abstractmethod
    async def find_by_org_number(self, organization_number: str) -> Tenant | None: ...

    @abstractmethod
    async def find_by_email(self, email: str) -> Tenant | None: ...

    @abstractmethod
    async def insert_if_absent(self, tenant: Tenant) -> tuple[Tenant, bool]:
        """Insert keyed by tenant id; return ``(row, created)``.

        An existing row with the same id is returned unchanged. A collision on
        organization number or email raises ConflictError.
        """
        ...

    @abstractmethod
    async def update_status_by_customer(
        self,
        stripe_customer_id: str,
        status: SubscriptionStatus,
    ) -> int:
        """Set the status of tenants billed to this customer; returns rows touched."""
        ...

    @abstractmethod
    async def save_credential(
        self,
        tenant_id: str,
        credential: AccountingCredentialBundle,
    ) -> bool:
        """Overwrite the credential bundle. Returns False for an unknown tenant."""
        ...

    @abstractmethod
    async def clear_credential(self, tenant_id: str) -> None:
        """Remove the credential bundle. No-op when already absent."""
        ...


@dataclass(frozen=True)
class CheckoutSession:
    """The parts of a Stripe checkout session the core needs."""

    session_id: str
    url: str


class BasePaymentGateway(ABC):
    """Checkout sessions and authenticated webhook events."""

    @abstractmethod
    def create_checkout_session(
        self,
        *,
        plan_id: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        client_reference_id: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        """Open a subscription checkout. Raises PaymentSessionCreationFailed."""
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify the signature over the raw body and return the parsed event.

        Raises SignatureVerificationError.
        """
        ...
