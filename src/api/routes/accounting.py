"""Accounting-provider OAuth endpoints: status, connect, callback, disconnect, refresh."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from src.accounting.connector import OAuthConnector
from src.api.deps import get_oauth_connector
from src.api.models.schemas import (
    AuthUrlResponse,
    ConnectedResponse,
    RefreshResponse,
    SuccessResponse,
)

router = APIRouter(prefix="/accounting", tags=["accounting"])


@router.get("/{provider}/status", response_model=ConnectedResponse)
async def connection_status(
    provider: str,
    tenant_id: str = Query(..., min_length=1),
    connector: OAuthConnector = Depends(get_oauth_connector),
) -> ConnectedResponse:
    cfg = connector.provider(provider)
    return ConnectedResponse(connected=await connector.status(tenant_id, cfg.name))


@router.get("/{provider}/connect", response_model=AuthUrlResponse)
async def connect(
    provider: str,
    tenant_id: str = Query(..., min_length=1),
    connector: OAuthConnector = Depends(get_oauth_connector),
) -> AuthUrlResponse:
    """Return the provider authorization URL for the browser to visit."""
    return AuthUrlResponse(auth_url=await connector.connect(tenant_id, provider))


@router.get("/{provider}/callback")
async def callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    connector: OAuthConnector = Depends(get_oauth_connector),
) -> RedirectResponse:
    """Provider redirect target. Always answers with a redirect to the frontend."""
    landing = await connector.handle_callback(provider, code, state, error=error)
    return RedirectResponse(url=landing, status_code=302)


@router.api_route("/{provider}/disconnect", methods=["GET", "POST"], response_model=SuccessResponse)
async def disconnect(
    provider: str,
    tenant_id: str = Query(..., min_length=1),
    connector: OAuthConnector = Depends(get_oauth_connector),
) -> SuccessResponse:
    cfg = connector.provider(provider)
    await connector.disconnect(tenant_id, cfg.name)
    return SuccessResponse()


@router.post("/{provider}/refresh", response_model=RefreshResponse)
async def refresh(
    provider: str,
    tenant_id: str = Query(..., min_length=1),
    connector: OAuthConnector = Depends(get_oauth_connector),
) -> RefreshResponse:
    """Ensure the stored access token is fresh; 409 when the tenant must reconnect."""
    cfg = connector.provider(provider)
    bundle = await connector.get_access_token(tenant_id, cfg.name)
    return RefreshResponse(expires_at=bundle.expires_at)
