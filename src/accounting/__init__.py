"""Accounting-system OAuth connections (Fortnox, Visma)."""

from src.accounting.connector import OAuthConnector
from src.accounting.oauth import AccountingTokenClient, TokenGrantRejected
from src.accounting.providers import DEFAULT_PROVIDER, PROVIDERS, AccountingProviderConfig

__all__ = [
    "OAuthConnector",
    "AccountingTokenClient",
    "TokenGrantRejected",
    "DEFAULT_PROVIDER",
    "PROVIDERS",
    "AccountingProviderConfig",
]
