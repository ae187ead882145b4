"""
Tests for configuration, application wiring and certificate automation.
"""

import asyncio
import subprocess
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError as PydanticValidationError


class TestConfig:
    """Test configuration module."""

    def test_settings_loads(self, test_settings):
        assert test_settings.host == "0.0.0.0"
        assert test_settings.port == 3333
        assert test_settings.server_ip == "203.0.113.10"
        assert test_settings.cloudflare_zone_id == "zone123"
        assert test_settings.validation_cache_ttl == 600
        assert test_settings.ssl_check_timeout == 5.0
        assert test_settings.ssl_issuance_window_hours == 24

    def test_settings_env_prefix(self, monkeypatch):
        from tenant_domains.config import Settings

        monkeypatch.setenv("DOMAINS_LOG_LEVEL", "DEBUG")
        assert Settings().log_level == "DEBUG"

    def test_default_record_template(self, test_settings):
        assert test_settings.dns_record.type == "A"
        payload = test_settings.dns_record.payload("shop.example.com", "203.0.113.10")
        assert payload["content"] == "203.0.113.10"
        assert payload["proxied"] is True

    def test_cname_record_template_from_env(self, monkeypatch):
        from tenant_domains.config import CNAMERecordTemplate, Settings

        monkeypatch.setenv(
            "DOMAINS_DNS_RECORD",
            '{"type": "CNAME", "target": "edge.storefronts.test", "proxied": false}',
        )
        settings = Settings()
        assert isinstance(settings.dns_record, CNAMERecordTemplate)
        assert settings.dns_record.payload("shop.example.com", "")["content"] == "edge.storefronts.test"

    def test_record_template_rejects_unknown_keys(self, monkeypatch):
        from tenant_domains.config import Settings

        monkeypatch.setenv("DOMAINS_DNS_RECORD", '{"type": "A", "priority": 10}')
        with pytest.raises(PydanticValidationError):
            Settings()

    def test_record_template_rejects_unknown_type(self, monkeypatch):
        from tenant_domains.config import Settings

        monkeypatch.setenv("DOMAINS_DNS_RECORD", '{"type": "MX"}')
        with pytest.raises(PydanticValidationError):
            Settings()

    def test_validate_required(self, monkeypatch):
        from tenant_domains.config import Settings

        monkeypatch.setenv("DOMAINS_CLOUDFLARE_ZONE_ID", "")
        with pytest.raises(ValueError):
            Settings().validate_required()

    def test_token_file_satisfies_credentials(self, monkeypatch):
        from tenant_domains.config import Settings

        monkeypatch.setenv("DOMAINS_CLOUDFLARE_API_TOKEN", "")
        monkeypatch.setenv("DOMAINS_CLOUDFLARE_TOKEN_FILE", "/run/secrets/cf-token")
        assert Settings().validate_required() is True


class TestApplication:
    """Test application wiring."""

    def test_build_components(self, test_settings):
        from tenant_domains.main import build_components

        components = build_components(test_settings)
        orchestrator = components["orchestrator"]
        assert orchestrator.dns is components["dns_provisioner"]
        assert orchestrator.proxy is components["proxy_provisioner"]
        assert orchestrator.server_ip == "203.0.113.10"
        assert components["health_reconciler"].interval == 0
        assert components["domain_validator"].cache.ttl == 600
        assert components["domain_validator"].expected_target == "edge.storefronts.test"
        assert components["tenant_registry"].domain_registry is components["domain_registry"]

    def test_routes_registered(self, test_settings):
        from tenant_domains.main import create_app

        app = create_app(test_settings)
        paths = set(app.openapi()["paths"])
        assert "/health" in paths
        assert "/" in paths
        assert "/api/tenants/{tenant_id}/domains" in paths
        assert "/api/tenants/{tenant_id}/domains/{hostname}" in paths
        assert "/api/domains/{hostname}/status" in paths
        assert "/api/domains/health-check" in paths
        assert "/api/domains/renew-ssl" in paths
        assert "/api/domains/webhook/cloudflare" in paths
        assert "/api/domain/check/{hostname}" in paths

    @pytest.mark.parametrize("module", [
        "tenant_domains.tenants",
        "tenant_domains.tenants.registry",
        "tenant_domains.domains.orchestrator",
        "tenant_domains.main",
    ])
    def test_modules_import_standalone(self, module):
        root = Path(__file__).resolve().parents[1]
        result = subprocess.run(
            [sys.executable, "-c", f"import {module}"],
            cwd=root,
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0, result.stderr

    def test_startup_tolerates_bad_credentials(self, test_settings):
        from fastapi.testclient import TestClient

        from tenant_domains.errors import CredentialError
        from tenant_domains.main import build_components, create_app

        components = build_components(test_settings)
        components["dns_provisioner"].validate_credentials = AsyncMock(
            side_effect=CredentialError("DNS provider token is disabled")
        )
        components["domain_registry"]._use_redis = False
        components["tenant_registry"]._use_redis = False

        with TestClient(create_app(test_settings, components)) as client:
            assert client.get("/health").status_code == 200
        components["dns_provisioner"].validate_credentials.assert_awaited_once()


class TestCertificateAutomation:
    """Test certbot renewal hand-off."""

    @staticmethod
    def _process(returncode=0, stdout=b"", stderr=b""):
        process = MagicMock()
        process.returncode = returncode
        process.communicate = AsyncMock(return_value=(stdout, stderr))
        return process

    @pytest.mark.asyncio
    async def test_renew_success(self):
        from tenant_domains.domains.ssl import CertificateAutomation

        certs = CertificateAutomation(certbot_bin="/usr/bin/certbot")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=self._process())) as run:
            ok, message = await certs.renew()
        assert ok is True
        assert run.await_args.args[:2] == ("/usr/bin/certbot", "renew")

    @pytest.mark.asyncio
    async def test_renew_failure(self):
        from tenant_domains.domains.ssl import CertificateAutomation

        certs = CertificateAutomation()
        process = self._process(returncode=1, stderr=b"rate limited")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            ok, message = await certs.renew()
        assert ok is False
        assert "rate limited" in message

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        from tenant_domains.domains.ssl import CertificateAutomation

        certs = CertificateAutomation(certbot_bin="/nope/certbot")
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError())):
            ok, message = await certs.renew()
        assert ok is False
        assert "/nope/certbot" in message

    @pytest.mark.asyncio
    async def test_schedule_reuses_running_job(self):
        from tenant_domains.domains.ssl import CertificateAutomation

        certs = CertificateAutomation()
        gate = asyncio.Event()

        async def slow_renew():
            await gate.wait()
            return True, "Certificates renewed"

        with patch.object(certs, "renew", slow_renew):
            first = certs.schedule_renewal()
            second = certs.schedule_renewal()
            assert first["already_running"] is False
            assert second["already_running"] is True

            gate.set()
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        assert certs.last_result == (True, "Certificates renewed")
        await certs.close()
