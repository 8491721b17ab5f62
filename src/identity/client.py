"""Identity store client — GoTrue-compatible admin API over HTTP.

All calls authenticate with the privileged service key and run with the
configured timeout. Transport failures surface as ExternalServiceError; they
are never retried here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from config.settings import Settings
from src.core.constants import META_PENDING_PAYMENT
from src.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    IdentityCreationFailed,
    NotFoundError,
)
from src.core.interfaces import BaseIdentityStore
from src.core.logging import get_logger
from src.core.types import PendingIdentity

log = get_logger(__name__)

PAGE_SIZE = 100


class IdentityStoreClient(BaseIdentityStore):
    """Admin operations against the identity store."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = settings.identity_store_url.rstrip("/")
        self._service_key = settings.identity_store_service_key.get_secret_value()
        self._timeout = settings.http_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "apikey": self._service_key,
                "Authorization": f"Bearer {self._service_key}",
                "Accept": "application/json",
            },
        )

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            log.error("identity_store_unreachable", method=method, path=path, error=type(exc).__name__)
            raise ExternalServiceError(
                "Identity store unavailable",
                context={"method": method, "path": path},
            ) from exc

    async def create_pending(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any],
    ) -> PendingIdentity:
        """Create an unconfirmed identity awaiting payment."""
        user_metadata = {**metadata, META_PENDING_PAYMENT: True}
        try:
            resp = await self._request(
                "POST",
                "/admin/users",
                json={
                    "email": email,
                    "password": password,
                    "email_confirm": False,
                    "user_metadata": user_metadata,
                },
            )
        except ExternalServiceError as exc:
            raise IdentityCreationFailed("Identity store unavailable", context=exc.context) from exc

        if resp.status_code == 422 and _is_email_exists(resp):
            raise ConflictError(
                "email already registered, log in instead",
                context={"field": "email"},
            )
        if resp.is_error:
            log.error("identity_create_failed", status=resp.status_code)
            raise IdentityCreationFailed(
                "Identity store rejected the new identity",
                context={"status": resp.status_code},
            )

        identity = _to_identity(resp.json())
        log.info("pending_identity_created", identity_id=identity.identity_id)
        return identity

    async def confirm(self, identity_id: str) -> PendingIdentity:
        """Confirm the identity and clear its pending-payment flag."""
        current = await self.get(identity_id)
        if current is None:
            raise NotFoundError("identity not found", context={"identity_id": identity_id})

        resp = await self._request(
            "PUT",
            f"/admin/users/{identity_id}",
            json={
                "email_confirm": True,
                "user_metadata": {**current.metadata, META_PENDING_PAYMENT: False},
            },
        )
        if resp.status_code == 404:
            raise NotFoundError("identity not found", context={"identity_id": identity_id})
        _raise_for_status(resp, "confirm")

        log.info("identity_confirmed", identity_id=identity_id)
        return _to_identity(resp.json())

    async def delete(self, identity_id: str) -> bool:
        """Delete the identity; an already-deleted identity is not an error."""
        resp = await self._request("DELETE", f"/admin/users/{identity_id}")
        if resp.status_code == 404:
            log.info("identity_already_deleted", identity_id=identity_id)
            return False
        _raise_for_status(resp, "delete")
        log.info("identity_deleted", identity_id=identity_id)
        return True

    async def get(self, identity_id: str) -> PendingIdentity | None:
        resp = await self._request("GET", f"/admin/users/{identity_id}")
        if resp.status_code == 404:
            return None
        _raise_for_status(resp, "get")
        return _to_identity(resp.json())

    async def find_by_email(self, email: str) -> PendingIdentity | None:
        wanted = email.strip().lower()
        for identity in await self.list_identities():
            if identity.email.lower() == wanted:
                return identity
        return None

    async def list_identities(self) -> list[PendingIdentity]:
        identities: list[PendingIdentity] = []
        page = 1
        while True:
            resp = await self._request(
                "GET",
                "/admin/users",
                params={"page": page, "per_page": PAGE_SIZE},
            )
            _raise_for_status(resp, "list")
            body = resp.json()
            users = body.get("users", []) if isinstance(body, dict) else body
            identities.extend(_to_identity(u) for u in users)
            if len(users) < PAGE_SIZE:
                return identities
            page += 1


def _raise_for_status(resp: httpx.Response, operation: str) -> None:
    if resp.is_error:
        log.error("identity_store_error", operation=operation, status=resp.status_code)
        raise ExternalServiceError(
            f"Identity store {operation} failed",
            context={"status": resp.status_code},
        )


def _is_email_exists(resp: httpx.Response) -> bool:
    body = resp.text.lower()
    return "email_exists" in body or "already been registered" in body


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_identity(user: dict[str, Any]) -> PendingIdentity:
    """Normalize an admin-API user object."""
    return PendingIdentity(
        identity_id=str(user["id"]),
        email=str(user.get("email", "")),
        confirmed=bool(user.get("email_confirmed_at") or user.get("confirmed_at")),
        created_at=_parse_timestamp(user.get("created_at")),
        metadata=dict(user.get("user_metadata") or {}),
    )
