"""DB-backed tenant repository — the authoritative tenant store."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from src.core.constants import EMAIL_CONFLICT_MESSAGE, ORG_CONFLICT_MESSAGE
from src.core.exceptions import ConflictError, ExternalServiceError
from src.core.interfaces import BaseTenantStore
from src.core.logging import get_logger
from src.core.types import AccountingCredentialBundle, SubscriptionStatus, Tenant

log = get_logger(__name__)


class TenantRepository(BaseTenantStore):
    """Async PostgreSQL-backed tenant storage."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncConnection]:
        """Open a transaction and translate driver errors into domain errors."""
        try:
            async with self._engine.begin() as conn:
                yield conn
        except IntegrityError as exc:
            detail = str(exc.orig)
            if "org_number" in detail:
                raise ConflictError(ORG_CONFLICT_MESSAGE, context={"field": "organization_number"}) from exc
            if "email" in detail:
                raise ConflictError(EMAIL_CONFLICT_MESSAGE, context={"field": "email"}) from exc
            raise ConflictError("tenant already registered") from exc
        except (DBAPIError, OSError) as exc:
            log.error("tenant_store_error", error=type(exc).__name__)
            raise ExternalServiceError("Tenant store unavailable", context={"error": type(exc).__name__}) from exc

    async def _find_one(self, column: str, value: str) -> Tenant | None:
        async with self._transaction() as conn:
            row = await conn.execute(
                text(f"SELECT * FROM tenants WHERE {column} = :value"),  # noqa: S608
                {"value": value},
            )
            r = row.mappings().first()
        if r is None:
            return None
        return self._row_to_tenant(r)

    async def find_by_id(self, tenant_id: str) -> Tenant | None:
        """Look up a tenant by ID."""
        return await self._find_one("id", tenant_id)

    async def find_by_org_number(self, organization_number: str) -> Tenant | None:
        """Look up a tenant by organization number."""
        return await self._find_one("org_number", organization_number)

    async def find_by_email(self, email: str) -> Tenant | None:
        """Look up a tenant by email."""
        return await self._find_one("email", email)

    async def insert_if_absent(self, tenant: Tenant) -> tuple[Tenant, bool]:
        """Insert the tenant unless a row with its id already exists.

        Webhooks arrive at least once, so the id conflict is swallowed here and
        the existing row returned. Unique violations on ``org_number`` or
        ``email`` still raise ConflictError.
        """
        now = datetime.now(timezone.utc)
        async with self._transaction() as conn:
            result = await conn.execute(
                text(
                    """
                    INSERT INTO tenants
                        (id, name, org_number, email, subscription_status,
                         stripe_customer_id, stripe_subscription_id,
                         settings, created_at, updated_at)
                    VALUES
                        (:id, :name, :org, :email, :status,
                         :customer, :subscription,
                         CAST(:settings AS JSONB), :now, :now)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING *
                    """
                ),
                {
                    "id": tenant.tenant_id,
                    "name": tenant.name,
                    "org": tenant.organization_number,
                    "email": tenant.email,
                    "status": tenant.subscription_status.value,
                    "customer": tenant.stripe_customer_id,
                    "subscription": tenant.stripe_subscription_id,
                    "settings": json.dumps(tenant.settings),
                    "now": now,
                },
            )
            inserted = result.mappings().first()

        if inserted is not None:
            log.info(
                "tenant_created",
                tenant_id=tenant.tenant_id,
                status=tenant.subscription_status.value,
            )
            return self._row_to_tenant(inserted), True

        existing = await self.find_by_id(tenant.tenant_id)
        if existing is None:
            # Row vanished between the conflict and the read; tenants are never deleted.
            raise ExternalServiceError(
                "Tenant store returned no row after id conflict",
                context={"tenant_id": tenant.tenant_id},
            )
        log.info("tenant_already_exists", tenant_id=tenant.tenant_id)
        return existing, False

    async def update_status_by_customer(
        self,
        stripe_customer_id: str,
        status: SubscriptionStatus,
    ) -> int:
        """Update the subscription status for every tenant billed to a customer."""
        async with self._transaction() as conn:
            result = await conn.execute(
                text(
                    "UPDATE tenants SET subscription_status = :status, updated_at = :now "
                    "WHERE stripe_customer_id = :cid"
                ),
                {
                    "status": status.value,
                    "now": datetime.now(timezone.utc),
                    "cid": stripe_customer_id,
                },
            )
        return result.rowcount or 0

    async def save_credential(
        self,
        tenant_id: str,
        credential: AccountingCredentialBundle,
    ) -> bool:
        """Persist the accounting token bundle, replacing any previous one."""
        async with self._transaction() as conn:
            result = await conn.execute(
                text(
                    """
                    UPDATE tenants SET
                        accounting_provider = :provider,
                        accounting_access_token = :access,
                        accounting_refresh_token = :refresh,
                        accounting_token_expires_at = :expires,
                        updated_at = :now
                    WHERE id = :tid
                    """
                ),
                {
                    "provider": credential.provider,
                    "access": credential.access_token,
                    "refresh": credential.refresh_token,
                    "expires": credential.expires_at,
                    "now": datetime.now(timezone.utc),
                    "tid": tenant_id,
                },
            )
        return bool(result.rowcount)

    async def clear_credential(self, tenant_id: str) -> None:
        """Drop the accounting token bundle."""
        async with self._transaction() as conn:
            await conn.execute(
                text(
                    """
                    UPDATE tenants SET
                        accounting_provider = NULL,
                        accounting_access_token = NULL,
                        accounting_refresh_token = NULL,
                        accounting_token_expires_at = NULL,
                        updated_at = :now
                    WHERE id = :tid
                    """
                ),
                {"now": datetime.now(timezone.utc), "tid": tenant_id},
            )

    @staticmethod
    def _row_to_tenant(r: Mapping[str, Any]) -> Tenant:
        """Convert a DB row mapping to a Tenant dataclass."""
        settings = r.get("settings") or {}
        if isinstance(settings, str):
            settings = json.loads(settings)

        try:
            status = SubscriptionStatus(r["subscription_status"])
        except ValueError:
            status = SubscriptionStatus.INACTIVE

        credential: AccountingCredentialBundle | None = None
        access = r.get("accounting_access_token")
        refresh = r.get("accounting_refresh_token")
        expires_at = r.get("accounting_token_expires_at")
        if access and refresh and expires_at is not None:
            credential = AccountingCredentialBundle(
                provider=r.get("accounting_provider") or "",
                access_token=access,
                refresh_token=refresh,
                expires_at=expires_at,
            )

        return Tenant(
            tenant_id=r["id"],
            name=r["name"],
            organization_number=r["org_number"],
            email=r["email"],
            subscription_status=status,
            stripe_customer_id=r.get("stripe_customer_id"),
            stripe_subscription_id=r.get("stripe_subscription_id"),
            accounting_credential=credential,
            settings=settings,
            created_at=r.get("created_at") or datetime.now(timezone.utc),
            updated_at=r.get("updated_at"),
        )
