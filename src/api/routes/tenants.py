"""Direct tenant provisioning endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import get_provisioner
from src.api.models.schemas import ProvisionRequest, ProvisionResponse
from src.provisioning.provisioner import TenantProvisioner

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.post("", response_model=ProvisionResponse)
async def provision_tenant(
    body: ProvisionRequest,
    provisioner: TenantProvisioner = Depends(get_provisioner),
) -> ProvisionResponse:
    tenant, _ = await provisioner.provision(
        body.user_id,
        body.organization_name,
        body.organization_number,
        body.email,
    )
    return ProvisionResponse(tenant=tenant.to_public_dict())
