"""
FastAPI application for tenant custom-domain provisioning.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import domains as domains_api
from .api import gate as gate_api
from .api import tenants as tenants_api
from .config import Settings, get_settings
from .domains import (
    CertificateAutomation,
    DNSProvisioner,
    DomainOrchestrator,
    DomainRegistry,
    DomainValidator,
    HealthReconciler,
    ReverseProxyProvisioner,
    ValidationCache,
)
from .domains.retry import TokenSource
from .errors import DomainError
from .tenants import TenantRegistry

logger = logging.getLogger("tenant_domains.main")


def build_components(settings: Settings) -> dict:
    """Construct every collaborator once from settings."""
    token_source = TokenSource(
        token=settings.cloudflare_api_token,
        token_file=settings.cloudflare_token_file,
    )
    dns = DNSProvisioner(
        zone_id=settings.cloudflare_zone_id,
        token_source=token_source,
        record_template=settings.dns_record,
        api_base=settings.cloudflare_api_base,
        resolver_url=settings.doh_resolver_url,
        timeout=settings.cloudflare_timeout,
        propagation_timeout=settings.propagation_timeout,
    )
    proxy = ReverseProxyProvisioner(
        template_path=settings.nginx_template_path,
        sites_available=settings.nginx_sites_available,
        sites_enabled=settings.nginx_sites_enabled,
        backend_port=settings.backend_port,
        ssl_certificate=settings.nginx_ssl_certificate,
        ssl_certificate_key=settings.nginx_ssl_certificate_key,
        nginx_bin=settings.nginx_bin,
        command_timeout=settings.nginx_command_timeout,
    )
    validator = DomainValidator(
        expected_target=settings.cname_target,
        server_ip=settings.server_ip,
        ssl_timeout=settings.ssl_check_timeout,
        dns_timeout=settings.dns_check_timeout,
        ssl_issuance_window_hours=settings.ssl_issuance_window_hours,
        expiry_warning_days=settings.ssl_expiry_warning_days,
        cache=ValidationCache(ttl=settings.validation_cache_ttl),
    )
    domain_registry = DomainRegistry(
        redis_url=settings.redis_url,
        key_prefix=settings.redis_key_prefix,
    )
    tenant_registry = TenantRegistry(
        domain_registry,
        redis_url=settings.redis_url,
        key_prefix=settings.redis_key_prefix,
    )
    certificates = CertificateAutomation(
        certbot_bin=settings.certbot_bin,
        timeout=settings.certbot_timeout,
    )
    orchestrator = DomainOrchestrator(
        dns=dns,
        proxy=proxy,
        validator=validator,
        domains=domain_registry,
        tenants=tenant_registry,
        server_ip=settings.server_ip,
        certificates=certificates,
        operation_timeout=settings.operation_timeout,
    )
    health_reconciler = HealthReconciler(
        dns=dns,
        proxy=proxy,
        validator=validator,
        domains=domain_registry,
        concurrency=settings.health_concurrency,
        interval=settings.health_check_interval,
    )
    return {
        "dns_provisioner": dns,
        "proxy_provisioner": proxy,
        "domain_validator": validator,
        "domain_registry": domain_registry,
        "tenant_registry": tenant_registry,
        "certificates": certificates,
        "orchestrator": orchestrator,
        "health_reconciler": health_reconciler,
    }


def create_app(
    settings: Optional[Settings] = None,
    components: Optional[dict] = None,
) -> FastAPI:
    settings = settings or get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Tenant Domains",
        description="Custom domain provisioning and health for tenant storefronts",
        version=__version__,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    for name, component in (components or build_components(settings)).items():
        setattr(app.state, name, component)

    app.include_router(tenants_api.router)
    app.include_router(domains_api.router)
    app.include_router(gate_api.router)

    @app.on_event("startup")
    async def startup_event():
        try:
            await app.state.dns_provisioner.validate_credentials()
            logger.info("DNS provider credentials verified")
        except DomainError as e:
            # Keep serving reads; writes will fail with the same error
            logger.warning(f"DNS provider credentials not usable: {e.message}")

        app.state.health_reconciler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.health_reconciler.stop()
        await app.state.certificates.close()
        await app.state.dns_provisioner.close()
        await app.state.domain_registry.close()
        await app.state.tenant_registry.close()
        logger.info("Tenant domains service stopped")

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "ok", "version": __version__}

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
