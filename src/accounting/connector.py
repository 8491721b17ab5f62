"""Accounting-provider connection lifecycle for a tenant.

disconnected → (connect) → pending_authorization → (callback) → connected
connected → (disconnect | rejected refresh) → disconnected

Concurrent calls for the same tenant resolve last-write-wins on the single
credential bundle.
"""

from __future__ import annotations

from urllib.parse import urlencode

from config.settings import Settings
from src.core.constants import OAUTH_ERROR_MISSING_PARAMS, OAUTH_ERROR_SAVE_FAILED, OAUTH_ERROR_TOKEN_EXCHANGE
from src.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    NotFoundError,
    ProvisioningError,
    ReconnectRequiredError,
    StateError,
)
from src.core.interfaces import BaseTenantStore
from src.core.logging import get_logger
from src.core.types import AccountingCredentialBundle

from .oauth import (
    AccountingTokenClient,
    TokenGrantRejected,
    build_authorize_url,
    generate_state,
    verify_state,
)
from .providers import DEFAULT_PROVIDER, PROVIDERS, AccountingProviderConfig

log = get_logger(__name__)


class OAuthConnector:
    """status / connect / callback / disconnect, plus pre-use token refresh."""

    def __init__(
        self,
        settings: Settings,
        tenants: BaseTenantStore,
        token_client: AccountingTokenClient,
    ) -> None:
        self._settings = settings
        self._tenants = tenants
        self._token_client = token_client

    @staticmethod
    def provider(name: str) -> AccountingProviderConfig:
        cfg = PROVIDERS.get(name)
        if cfg is None:
            raise NotFoundError(f"Unknown accounting provider: {name}", context={"provider": name})
        return cfg

    async def status(self, tenant_id: str, provider: str | None = None) -> bool:
        """True when both access and refresh tokens are stored.

        With ``provider``, the stored bundle must also belong to that provider.
        """
        tenant = await self._tenants.find_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("tenant not found", context={"tenant_id": tenant_id})
        if not tenant.accounting_connected:
            return False
        return _belongs_to(tenant.accounting_credential, provider)

    async def connect(self, tenant_id: str, provider: str = DEFAULT_PROVIDER) -> str:
        """Return the provider authorization URL for this tenant."""
        cfg = self.provider(provider)
        client_id, _ = self._settings.accounting_credentials(cfg.name)
        if not client_id:
            raise ConfigurationError(f"{cfg.name} client id is not configured", context={"provider": cfg.name})

        if await self._tenants.find_by_id(tenant_id) is None:
            raise NotFoundError("tenant not found", context={"tenant_id": tenant_id})

        state = generate_state(self._settings, tenant_id, cfg.name)
        log.info("accounting_connect_started", tenant_id=tenant_id, provider=cfg.name)
        return build_authorize_url(self._settings, cfg, client_id, state)

    async def callback(self, provider: str, code: str, state: str) -> str:
        """Verify state, exchange the code and store the bundle. Returns the tenant id."""
        cfg = self.provider(provider)
        state_data = verify_state(self._settings, state)
        if state_data["provider"] != cfg.name:
            log.warning("oauth_state_provider_mismatch", expected=cfg.name, got=state_data["provider"])
            raise StateError("OAuth state was issued for another provider")
        tenant_id = state_data["tenant_id"]

        try:
            bundle = await self._token_client.exchange_code(cfg, code)
        except ExternalServiceError as exc:
            exc.context.setdefault("oauth_error", OAUTH_ERROR_TOKEN_EXCHANGE)
            raise

        try:
            saved = await self._tenants.save_credential(tenant_id, bundle)
        except ExternalServiceError as exc:
            exc.context["oauth_error"] = OAUTH_ERROR_SAVE_FAILED
            raise
        if not saved:
            raise NotFoundError(
                "tenant not found",
                context={"tenant_id": tenant_id, "oauth_error": OAUTH_ERROR_SAVE_FAILED},
            )

        log.info("accounting_connected", tenant_id=tenant_id, provider=cfg.name)
        return tenant_id

    async def handle_callback(
        self,
        provider: str,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> str:
        """Run the callback and return the landing-page URL to redirect to.

        Failures never reach the browser as exception text, only as an error
        code on the error page.
        """
        if error:
            log.warning("oauth_provider_error", provider=provider, error=error)
            return self._landing_url(provider, error=error)
        if not code or not state:
            return self._landing_url(provider, error=OAUTH_ERROR_MISSING_PARAMS)

        try:
            await self.callback(provider, code, state)
        except ProvisioningError as exc:
            error_code = exc.context.get("oauth_error", exc.code)
            log.warning("oauth_callback_failed", provider=provider, error=error_code)
            return self._landing_url(provider, error=error_code)
        return self._landing_url(provider)

    async def disconnect(self, tenant_id: str, provider: str | None = None) -> None:
        """Forget the stored bundle. Always succeeds.

        With ``provider``, a bundle held for another provider is left in place.
        """
        if provider is not None:
            tenant = await self._tenants.find_by_id(tenant_id)
            if tenant is not None and not _belongs_to(tenant.accounting_credential, provider):
                log.info("accounting_disconnect_noop", tenant_id=tenant_id, provider=provider)
                return
        await self._tenants.clear_credential(tenant_id)
        log.info("accounting_disconnected", tenant_id=tenant_id)

    async def get_access_token(self, tenant_id: str, provider: str | None = None) -> AccountingCredentialBundle:
        """Return a bundle whose access token is valid for at least the refresh margin.

        Refreshes first when the stored token is expired or about to expire.
        A refresh the provider rejects disconnects the tenant.
        """
        tenant = await self._tenants.find_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("tenant not found", context={"tenant_id": tenant_id})

        current = tenant.accounting_credential
        if current is None or not tenant.accounting_connected:
            raise ReconnectRequiredError("no accounting connection", context={"tenant_id": tenant_id})
        if not _belongs_to(current, provider):
            raise ReconnectRequiredError(
                f"no {provider} connection",
                context={"tenant_id": tenant_id, "provider": provider},
            )

        if not current.needs_refresh(self._settings.token_refresh_margin_seconds):
            return current

        cfg = self.provider(current.provider or DEFAULT_PROVIDER)
        try:
            refreshed = await self._token_client.refresh(cfg, current.refresh_token)
        except TokenGrantRejected as exc:
            await self._tenants.clear_credential(tenant_id)
            log.warning("accounting_refresh_rejected", tenant_id=tenant_id, provider=cfg.name)
            raise ReconnectRequiredError(
                "accounting provider revoked the connection",
                context={"tenant_id": tenant_id, "provider": cfg.name},
            ) from exc

        await self._tenants.save_credential(tenant_id, refreshed)
        log.info("accounting_token_refreshed", tenant_id=tenant_id, provider=cfg.name)
        return refreshed

    def _landing_url(self, provider: str, error: str | None = None) -> str:
        name = provider if provider in PROVIDERS else DEFAULT_PROVIDER
        base = f"{self._settings.site_url.rstrip('/')}/onboarding/{name}"
        if error is None:
            return f"{base}/success"
        return f"{base}/error?{urlencode({'error': error})}"


def _belongs_to(credential: AccountingCredentialBundle | None, provider: str | None) -> bool:
    """True when ``credential`` was issued by ``provider``; any provider matches None."""
    if credential is None:
        return False
    if provider is None:
        return True
    return (credential.provider or DEFAULT_PROVIDER) == provider
