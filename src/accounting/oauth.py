"""OAuth 2.0 plumbing — HMAC-signed state and the provider token endpoint."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from itsdangerous import BadData, URLSafeTimedSerializer

from config.settings import Settings
from src.core.constants import OAUTH_STATE_SALT
from src.core.exceptions import ExternalServiceError, StateError
from src.core.logging import get_logger
from src.core.types import AccountingCredentialBundle

from .providers import AccountingProviderConfig

log = get_logger(__name__)


class TokenGrantRejected(ExternalServiceError):
    """The token endpoint refused the grant (revoked or invalid credentials)."""

    code = "token_grant_rejected"


# ── State ─────────────────────────────────────────────────────────


def _get_signer(settings: Settings) -> URLSafeTimedSerializer:
    """HMAC signer for OAuth state tokens."""
    secret = settings.oauth_state_secret.get_secret_value()
    return URLSafeTimedSerializer(secret, salt=OAUTH_STATE_SALT)


def generate_state(settings: Settings, tenant_id: str, provider: str) -> str:
    """Create a signed, time-stamped state token binding the callback to a tenant."""
    signer = _get_signer(settings)
    nonce = secrets.token_urlsafe(16)
    return signer.dumps({"tenant_id": tenant_id, "provider": provider, "nonce": nonce})  # type: ignore[return-value]


def verify_state(settings: Settings, state: str, max_age: int | None = None) -> dict[str, str]:
    """Verify and decode the state token. Raises StateError if invalid or expired."""
    signer = _get_signer(settings)
    ttl = settings.oauth_state_ttl_seconds if max_age is None else max_age
    try:
        data = signer.loads(state, max_age=ttl)
    except BadData as exc:
        log.warning("oauth_state_invalid", reason=type(exc).__name__)
        raise StateError("OAuth state could not be verified") from exc

    if not isinstance(data, dict) or not data.get("tenant_id") or not data.get("provider"):
        log.warning("oauth_state_incomplete")
        raise StateError("OAuth state is missing tenant correlation")
    return data


# ── URLs ──────────────────────────────────────────────────────────


def callback_url(settings: Settings, provider: str) -> str:
    return f"{settings.api_base_url.rstrip('/')}/api/accounting/{provider}/callback"


def build_authorize_url(
    settings: Settings,
    cfg: AccountingProviderConfig,
    client_id: str,
    state: str,
) -> str:
    """Build the OAuth authorization redirect URL."""
    params = {
        "client_id": client_id,
        "redirect_uri": callback_url(settings, cfg.name),
        "scope": " ".join(cfg.scopes),
        "state": state,
        "response_type": "code",
        **cfg.extra_authorize_params,
    }
    return f"{cfg.authorize_url}?{urlencode(params)}"


# ── Token endpoint ────────────────────────────────────────────────


class AccountingTokenClient:
    """Confidential-client calls to a provider's token endpoint."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    async def exchange_code(
        self,
        cfg: AccountingProviderConfig,
        code: str,
    ) -> AccountingCredentialBundle:
        """Exchange an authorization code for a token bundle."""
        payload = await self._post(
            cfg,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": callback_url(self._settings, cfg.name),
            },
        )
        return self._to_bundle(cfg, payload)

    async def refresh(
        self,
        cfg: AccountingProviderConfig,
        refresh_token: str,
    ) -> AccountingCredentialBundle:
        """Run the refresh_token grant."""
        payload = await self._post(
            cfg,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        return self._to_bundle(cfg, payload, previous_refresh_token=refresh_token)

    async def _post(self, cfg: AccountingProviderConfig, data: dict[str, str]) -> dict[str, Any]:
        client_id, client_secret = self._settings.accounting_credentials(cfg.name)
        grant = data["grant_type"]

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    cfg.token_url,
                    data=data,
                    auth=(client_id, client_secret),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            log.error("oauth_token_unreachable", provider=cfg.name, grant=grant, error=type(exc).__name__)
            raise ExternalServiceError(
                "Accounting provider unavailable",
                context={"provider": cfg.name, "grant": grant},
            ) from exc

        if resp.status_code in (400, 401):
            log.warning("oauth_token_rejected", provider=cfg.name, grant=grant, status=resp.status_code)
            raise TokenGrantRejected(
                "Accounting provider rejected the grant",
                context={"provider": cfg.name, "grant": grant, "status": resp.status_code},
            )
        if resp.is_error:
            log.error("oauth_token_failed", provider=cfg.name, grant=grant, status=resp.status_code)
            raise ExternalServiceError(
                "Accounting provider token endpoint failed",
                context={"provider": cfg.name, "grant": grant, "status": resp.status_code},
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise ExternalServiceError(
                "Accounting provider returned a malformed token response",
                context={"provider": cfg.name, "grant": grant},
            ) from exc

    @staticmethod
    def _to_bundle(
        cfg: AccountingProviderConfig,
        payload: dict[str, Any],
        previous_refresh_token: str | None = None,
    ) -> AccountingCredentialBundle:
        try:
            return AccountingCredentialBundle.from_token_response(
                cfg.name,
                payload,
                now=datetime.now(timezone.utc),
                previous_refresh_token=previous_refresh_token,
            )
        except (ValueError, TypeError) as exc:
            raise ExternalServiceError(
                "Accounting provider returned an incomplete token response",
                context={"provider": cfg.name},
            ) from exc
