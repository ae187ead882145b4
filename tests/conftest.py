"""
Pytest configuration for Tenant Domains tests.
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables
os.environ["DOMAINS_SERVER_IP"] = "203.0.113.10"
os.environ["DOMAINS_CLOUDFLARE_API_TOKEN"] = "test-token"
os.environ["DOMAINS_CLOUDFLARE_ZONE_ID"] = "zone123"
os.environ["DOMAINS_CNAME_TARGET"] = "edge.storefronts.test"
os.environ["DOMAINS_DEBUG"] = "true"
os.environ["DOMAINS_HEALTH_CHECK_INTERVAL"] = "0"

SERVER_IP = "203.0.113.10"
EDGE = "edge.storefronts.test"

TEMPLATE = """# Tenant {{TENANT_ID}}: {{DOMAIN_NAME}}
server {
    listen 443 ssl;
    server_name {{DOMAIN_NAME}};
    proxy_set_header X-Tenant-Id {{TENANT_ID}};
    location / { proxy_pass http://127.0.0.1:{{BACKEND_PORT}}; }
}
"""


@pytest.fixture
def test_settings():
    """Provide test settings."""
    from tenant_domains.config import Settings
    return Settings()


@pytest.fixture
def domain_registry():
    """In-memory domain registry (no Redis)."""
    from tenant_domains.domains.registry import DomainRegistry
    reg = DomainRegistry()
    reg._use_redis = False
    return reg


@pytest.fixture
def tenant_registry(domain_registry):
    """In-memory tenant registry sharing the domain registry."""
    from tenant_domains.tenants.registry import TenantRegistry
    reg = TenantRegistry(domain_registry)
    reg._use_redis = False
    return reg


@pytest.fixture
def proxy(tmp_path):
    """Reverse proxy provisioner writing into a temp directory."""
    from tenant_domains.domains.proxy import ReverseProxyProvisioner

    template = tmp_path / "domain-template.conf"
    template.write_text(TEMPLATE)
    prov = ReverseProxyProvisioner(
        template_path=str(template),
        sites_available=str(tmp_path / "sites-available"),
        sites_enabled=str(tmp_path / "sites-enabled"),
        backend_port=4000,
    )
    # nginx -t and nginx -s reload both succeed
    prov._run = AsyncMock(return_value=(0, "syntax is ok"))
    return prov


@pytest.fixture
def validator():
    """Domain validator with an isolated cache."""
    from tenant_domains.domains.verification import DomainValidator, ValidationCache
    return DomainValidator(
        expected_target=EDGE,
        server_ip=SERVER_IP,
        cache=ValidationCache(ttl=600),
    )


def make_record(hostname="shop.example.com", record_id="rec1", content=SERVER_IP):
    from tenant_domains.domains.models import DnsRecord
    return DnsRecord(
        id=record_id,
        name=hostname,
        type="A",
        content=content,
        proxied=True,
        ttl=300,
    )


@pytest.fixture
def dns():
    """DNS provisioner double with the real method surface."""
    from tenant_domains.domains.dns import DNSProvisioner

    mock = MagicMock(spec=DNSProvisioner)
    mock.ensure_record = AsyncMock(side_effect=lambda hostname, ip: make_record(hostname))
    mock.delete_record = AsyncMock(return_value=True)
    mock.remove_record = AsyncMock(return_value=True)
    mock.find_record = AsyncMock(return_value=None)
    mock.validate_credentials = AsyncMock(return_value=True)
    mock.check_propagation = AsyncMock(return_value={
        "hostname": "shop.example.com",
        "propagated": False,
        "records": [],
        "checked_at": "2024-01-01T00:00:00+00:00",
    })
    mock.close = AsyncMock()
    return mock
