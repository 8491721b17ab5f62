"""OAuth provider configuration for the supported accounting systems."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AccountingProviderConfig:
    """Immutable OAuth provider configuration."""

    name: str
    authorize_url: str
    token_url: str
    scopes: list[str]
    extra_authorize_params: dict[str, str] = field(default_factory=dict)


FORTNOX = AccountingProviderConfig(
    name="fortnox",
    authorize_url="https://apps.fortnox.se/oauth-v1/auth",
    token_url="https://apps.fortnox.se/oauth-v1/token",
    scopes=["invoice", "customer", "article", "payment"],
)

VISMA = AccountingProviderConfig(
    name="visma",
    authorize_url="https://identity.vismaonline.com/connect/authorize",
    token_url="https://identity.vismaonline.com/connect/token",
    scopes=["ea:api", "offline_access", "ea:sales"],
    extra_authorize_params={"prompt": "select_account"},
)

PROVIDERS: dict[str, AccountingProviderConfig] = {
    "fortnox": FORTNOX,
    "visma": VISMA,
}

DEFAULT_PROVIDER = FORTNOX.name
