"""
Fail-closed storefront gate.

A request is served only when its Host resolves to a registered domain
whose DNS and certificate both validate. Anything else gets a 503 with
remediation hints instead of a broken storefront.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..domains.models import Domain

logger = logging.getLogger("tenant_domains.api.gate")

router = APIRouter(tags=["storefront"])


def _request_hostname(request: Request) -> str:
    host = request.headers.get("host", "")
    # Strip the port, keep bracketed IPv6 literals intact
    if host.startswith("["):
        return host.split("]")[0].lstrip("[").lower()
    return host.split(":")[0].lower().rstrip(".")


async def require_valid_domain(request: Request) -> Domain:
    """Resolve the tenant domain for this request or refuse it."""
    hostname = _request_hostname(request)
    if not hostname:
        raise HTTPException(status_code=400, detail="Missing Host header")

    domain = await request.app.state.domain_registry.get(hostname)
    if domain is None:
        raise HTTPException(status_code=404, detail=f"Unknown domain: {hostname}")

    validator = request.app.state.domain_validator
    try:
        validation = await validator.validate(hostname)
        report = validation.to_dict()
        valid = validation.overall_valid
    except Exception as e:
        logger.error(f"Validation of {hostname} failed: {e}")
        report = {
            "hostname": hostname,
            "dns": {"valid": False, "error": "Validation failed"},
            "ssl": {"valid": False, "error": "Validation failed"},
            "overall_valid": False,
            "error": str(e),
        }
        valid = False

    if not valid:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "domain_configuration_invalid",
                "message": f"Domain {hostname} is not fully configured yet",
                "validation": report,
                "remediation": validator.remediation(hostname),
            },
        )

    if validation.days_until_expiry is not None and (
        validation.days_until_expiry < validator.expiry_warning_days
    ):
        logger.warning(
            f"Serving {hostname} with a certificate expiring in "
            f"{validation.days_until_expiry} days"
        )
    return domain


@router.get("/")
async def storefront(domain: Domain = Depends(require_valid_domain)):
    """Entry point for tenant storefront traffic."""
    return {
        "hostname": domain.hostname,
        "tenant_id": domain.tenant_id,
        "status": "ok",
    }
