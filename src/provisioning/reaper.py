"""Sweep pending identities whose checkout never completed nor expired."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.core.interfaces import BaseIdentityStore, BaseTenantStore
from src.core.logging import get_logger
from src.core.types import PendingIdentity

log = get_logger(__name__)


class PendingIdentityReaper:
    """Delete unconfirmed, unpaid identities older than ``max_age``.

    An identity that already owns a tenant row is never touched, even when
    its confirmation flag lags behind.
    """

    def __init__(
        self,
        identities: BaseIdentityStore,
        tenants: BaseTenantStore,
        max_age: timedelta,
    ) -> None:
        self._identities = identities
        self._tenants = tenants
        self._max_age = max_age

    def _is_stale(self, identity: PendingIdentity, cutoff: datetime) -> bool:
        return (
            not identity.confirmed
            and identity.pending_payment
            and identity.created_at < cutoff
        )

    async def find_stale(self, now: datetime | None = None) -> list[PendingIdentity]:
        cutoff = (now or datetime.now(timezone.utc)) - self._max_age
        stale: list[PendingIdentity] = []
        for identity in await self._identities.list_identities():
            if not self._is_stale(identity, cutoff):
                continue
            if await self._tenants.find_by_id(identity.identity_id) is not None:
                log.warning("pending_identity_has_tenant", identity_id=identity.identity_id)
                continue
            stale.append(identity)
        return stale

    async def sweep(self, now: datetime | None = None, dry_run: bool = False) -> list[str]:
        """Delete stale pending identities and return their ids."""
        stale = await self.find_stale(now)
        reaped: list[str] = []
        for identity in stale:
            if dry_run:
                reaped.append(identity.identity_id)
                continue
            if await self._identities.delete(identity.identity_id):
                reaped.append(identity.identity_id)

        log.info("pending_identities_reaped", count=len(reaped), dry_run=dry_run)
        return reaped
