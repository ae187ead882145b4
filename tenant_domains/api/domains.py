"""
REST API for tenant domain provisioning and health.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Body, HTTPException, Request

from ..domains.orchestrator import normalize_hostname
from ..errors import (
    CredentialError,
    DomainError,
    PersistenceError,
    RemoteProvisioningError,
    ValidationError,
)
from .schemas import AnyWebhookEvent, DomainSetupRequest

logger = logging.getLogger("tenant_domains.api.domains")

router = APIRouter(prefix="/api", tags=["domains"])

_VALIDATION_STATUS = {
    "not_found": 404,
    "conflict": 409,
    "forbidden": 403,
    "plan_limit": 403,
}


def _http_error(e: DomainError) -> HTTPException:
    """Map the error taxonomy onto HTTP, keeping the sub-status breakdown."""
    if isinstance(e, ValidationError):
        status_code = _VALIDATION_STATUS.get(e.reason, 400)
    elif isinstance(e, (CredentialError, RemoteProvisioningError)):
        status_code = 502
    elif isinstance(e, PersistenceError):
        status_code = 500
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=e.to_dict())


def _hostname(value: str) -> str:
    try:
        return normalize_hostname(value)
    except ValidationError as e:
        raise _http_error(e)


# ── Tenant domains ───────────────────────────────────────────────────

@router.post("/tenants/{tenant_id}/domains", status_code=201)
async def setup_domain(tenant_id: str, body: DomainSetupRequest, request: Request):
    """Provision DNS + proxy for a tenant hostname."""
    orchestrator = request.app.state.orchestrator
    try:
        result = await orchestrator.setup_domain(tenant_id, body.hostname)
    except DomainError as e:
        raise _http_error(e)
    return result.to_dict()


@router.get("/tenants/{tenant_id}/domains")
async def list_domains(tenant_id: str, request: Request):
    """List all domains registered for a tenant."""
    domain_registry = request.app.state.domain_registry
    domains = await domain_registry.list_by_tenant(tenant_id)
    return {
        "count": len(domains),
        "domains": [d.to_api_response() for d in domains],
    }


@router.delete("/tenants/{tenant_id}/domains/{hostname}")
async def remove_domain(tenant_id: str, hostname: str, request: Request):
    """Tear down a tenant hostname. Continues past individual step failures."""
    orchestrator = request.app.state.orchestrator
    try:
        return await orchestrator.remove_domain(tenant_id, hostname)
    except DomainError as e:
        raise _http_error(e)


# ── Status & health ──────────────────────────────────────────────────

@router.get("/domains/health-check")
async def health_check_all(request: Request):
    """Check every registered domain and bucket the results."""
    return await request.app.state.health_reconciler.health_check_all()


@router.get("/domains/{hostname}/status")
async def get_domain_status(hostname: str, request: Request):
    """Live DNS / proxy / SSL breakdown for one hostname."""
    hostname = _hostname(hostname)
    return await request.app.state.health_reconciler.check_hostname(hostname)


@router.get("/domain/check/{hostname}")
async def check_domain(hostname: str, request: Request, refresh: bool = False):
    """Standalone DNS + TLS probe, with remediation hints when invalid."""
    hostname = _hostname(hostname)
    validator = request.app.state.domain_validator
    if refresh:
        validator.invalidate(hostname)
    result = await validator.validate(hostname)
    resp = result.to_dict()
    resp["status"] = "active" if result.overall_valid else "setup_required"
    if not result.overall_valid:
        resp["remediation"] = validator.remediation(hostname)
    return resp


# ── Certificates & provider notifications ────────────────────────────

@router.post("/domains/renew-ssl")
async def renew_all_ssl(request: Request):
    """Hand certificate renewal to certificate automation."""
    return request.app.state.orchestrator.renew_all_ssl()


@router.post("/domains/webhook/cloudflare")
async def provider_webhook(
    event: Annotated[AnyWebhookEvent, Body(discriminator="event_type")],
    request: Request,
):
    """Accept and log a DNS provider notification."""
    orchestrator = request.app.state.orchestrator
    return orchestrator.handle_webhook(
        event.event_type, getattr(event, "hostname", None)
    )
