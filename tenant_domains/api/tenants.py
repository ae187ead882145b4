"""
Tenant records used for plan limits.

Not tenant management: these routes only feed the tenant registry the
plan and limit that domain provisioning reads. Tenant lifecycle lives in
the platform that owns tenants.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from ..tenants.registry import Tenant
from .schemas import TenantUpsertRequest

logger = logging.getLogger("tenant_domains.api.tenants")

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


@router.put("/{tenant_id}")
async def upsert_tenant(tenant_id: str, body: TenantUpsertRequest, request: Request):
    """Create or replace the plan data domain provisioning needs for a tenant."""
    tenant = Tenant(
        id=tenant_id,
        name=body.name,
        plan=body.plan,
        max_domains=body.max_domains,
    )
    await request.app.state.tenant_registry.save(tenant)
    return tenant.to_dict()


@router.get("/{tenant_id}")
async def get_tenant(tenant_id: str, request: Request):
    tenant = await request.app.state.tenant_registry.find_by_id(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Tenant {tenant_id} not found")

    count = await request.app.state.domain_registry.count_by_tenant(tenant.id)
    return {**tenant.to_dict(), "domain_count": count}
