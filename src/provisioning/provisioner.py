"""Direct tenant provisioning for flows that bypass the payment webhook."""

from __future__ import annotations

from src.core.exceptions import NotFoundError, ValidationError
from src.core.interfaces import BaseIdentityStore, BaseTenantStore
from src.core.logging import get_logger
from src.core.types import SubscriptionStatus, Tenant, normalize_email

log = get_logger(__name__)


class TenantProvisioner:
    """Materialize a tenant row for an existing identity.

    Safe to call repeatedly and concurrently with the webhook path: the
    insert is keyed by the identity id, so the first writer wins and every
    caller gets that row back.
    """

    def __init__(self, identities: BaseIdentityStore, tenants: BaseTenantStore) -> None:
        self._identities = identities
        self._tenants = tenants

    async def provision(
        self,
        user_id: str | None,
        organization_name: str | None,
        organization_number: str | None,
        email: str | None,
    ) -> tuple[Tenant, bool]:
        """Return ``(tenant, created)``."""
        fields = {
            "user_id": user_id,
            "organization_name": organization_name,
            "organization_number": organization_number,
            "email": email,
        }
        missing = [name for name, value in fields.items() if not (value or "").strip()]
        if missing:
            msg = f"All fields are required: {', '.join(fields)}"
            raise ValidationError(msg, context={"missing": missing})

        identity_id = (user_id or "").strip()
        if await self._identities.get(identity_id) is None:
            raise NotFoundError("user does not exist", context={"identity_id": identity_id})

        existing = await self._tenants.find_by_id(identity_id)
        if existing is not None:
            log.info("tenant_provision_noop", tenant_id=identity_id)
            return existing, False

        tenant, created = await self._tenants.insert_if_absent(
            Tenant(
                tenant_id=identity_id,
                name=(organization_name or "").strip(),
                organization_number=(organization_number or "").strip(),
                email=normalize_email(email or ""),
                subscription_status=SubscriptionStatus.TRIALING,
            )
        )
        log.info("tenant_provisioned", tenant_id=identity_id, created=created)
        return tenant, created
