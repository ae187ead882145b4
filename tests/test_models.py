"""
Tests for the domain data model and status derivation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from tenant_domains.domains.models import (
    DNS_PENDING,
    NGINX_PENDING,
    OVERALL_ACTIVE,
    OVERALL_ERROR,
    SSL_PENDING,
    DnsRecord,
    Domain,
    ValidationResult,
    derive_status,
)


# ── derive_status ────────────────────────────────────────────────────


class TestDeriveStatus:
    def test_all_ok_is_active(self):
        assert derive_status(True, True, True) == OVERALL_ACTIVE

    def test_proxy_beats_ssl(self):
        # DNS ok, vhost missing, certificate missing
        assert derive_status(dns_ok=True, proxy_ok=False, ssl_ok=False) == NGINX_PENDING

    def test_dns_beats_everything_else(self):
        assert derive_status(dns_ok=False, proxy_ok=False, ssl_ok=False) == DNS_PENDING
        assert derive_status(dns_ok=False, proxy_ok=True, ssl_ok=True) == DNS_PENDING

    def test_ssl_pending(self):
        assert derive_status(True, True, False) == SSL_PENDING

    def test_error_wins(self):
        assert derive_status(True, True, True, error=True) == OVERALL_ERROR
        assert derive_status(False, False, False, error=True) == OVERALL_ERROR


# ── Domain ───────────────────────────────────────────────────────────


class TestDomainModel:
    def test_creation_defaults(self):
        domain = Domain(tenant_id=7, hostname="Shop.Example.com.")
        assert domain.hostname == "shop.example.com"
        assert domain.tenant_id == "7"
        assert domain.dns_status == "pending"
        assert domain.ssl_status == "pending"
        assert domain.status == "setup"
        assert domain.proxy_active is False
        assert domain.is_primary is False
        assert domain.dns_record_id is None
        assert len(domain.verification_token) > 0
        assert isinstance(domain.created_at, datetime)

    def test_serialization_with_dates(self):
        now = datetime.now(timezone.utc)
        domain = Domain(
            tenant_id="t1",
            hostname="shop.example.com",
            dns_record_id="rec1",
            target_ip="203.0.113.10",
            dns_status="active",
            ssl_status="active",
            proxy_active=True,
            verified_at=now,
            last_check_at=now,
            ssl_expires_at=now + timedelta(days=90),
        )
        restored = Domain.from_dict(domain.to_dict())

        assert restored.id == domain.id
        assert restored.dns_record_id == "rec1"
        assert restored.proxy_active is True
        assert restored.verified_at == now
        assert restored.ssl_expires_at == now + timedelta(days=90)

    def test_overall_status_from_row(self):
        domain = Domain(tenant_id="t1", hostname="shop.example.com")
        assert domain.overall_status == DNS_PENDING

        domain.dns_record_id = "rec1"
        assert domain.overall_status == NGINX_PENDING

        domain.proxy_active = True
        assert domain.overall_status == SSL_PENDING

        domain.ssl_status = "active"
        assert domain.overall_status == OVERALL_ACTIVE

        domain.status = "error"
        assert domain.overall_status == OVERALL_ERROR

    def test_api_response_hides_token_when_verified(self):
        domain = Domain(
            tenant_id="t1",
            hostname="shop.example.com",
            verified_at=datetime.now(timezone.utc),
        )
        resp = domain.to_api_response()
        assert "verification_token" not in resp
        assert resp["overall_status"] == DNS_PENDING

    def test_api_response_shows_token_when_unverified(self):
        resp = Domain(tenant_id="t1", hostname="shop.example.com").to_api_response()
        assert "verification_token" in resp

    def test_unique_tokens(self):
        d1 = Domain(tenant_id="t1", hostname="a.example.com")
        d2 = Domain(tenant_id="t1", hostname="b.example.com")
        assert d1.verification_token != d2.verification_token
        assert d1.id != d2.id


class TestDnsRecord:
    def test_from_provider(self):
        record = DnsRecord.from_provider({
            "id": "abc",
            "name": "shop.example.com",
            "type": "A",
            "content": "203.0.113.10",
            "proxied": True,
            "ttl": 300,
            "zone_id": "ignored",
        })
        assert record.id == "abc"
        assert record.proxied is True
        assert record.ttl == 300
        assert "zone_id" not in record.to_dict()


class TestValidationResult:
    @pytest.mark.parametrize("dns_valid,ssl_valid,expected", [
        (True, True, True),
        (True, False, False),
        (False, True, False),
    ])
    def test_overall_valid(self, dns_valid, ssl_valid, expected):
        result = ValidationResult(
            hostname="shop.example.com", dns_valid=dns_valid, ssl_valid=ssl_valid
        )
        assert result.overall_valid is expected
        assert result.to_dict()["overall_valid"] is expected

    def test_to_dict_shape(self):
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        data = ValidationResult(
            hostname="shop.example.com",
            dns_valid=True,
            ssl_valid=True,
            ssl_issuer="Let's Encrypt",
            ssl_expires_at=expires,
            days_until_expiry=40,
        ).to_dict()
        assert data["dns"] == {"valid": True, "error": None}
        assert data["ssl"]["issuer"] == "Let's Encrypt"
        assert data["ssl"]["expires_at"] == expires.isoformat()
        assert data["ssl"]["days_until_expiry"] == 40
