"""
Domain data model for Tenant Domains.
"""

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

# Sub-status values shared by dns_status and ssl_status
PENDING = "pending"
ACTIVE = "active"
ERROR = "error"

# Row-level lifecycle status
STATUS_SETUP = "setup"
STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_ERROR = "error"

# Derived provisioning states, in precedence order
DNS_PENDING = "dns_pending"
NGINX_PENDING = "nginx_pending"
SSL_PENDING = "ssl_pending"
OVERALL_ACTIVE = "active"
OVERALL_ERROR = "error"

OVERALL_STATES = (OVERALL_ACTIVE, SSL_PENDING, NGINX_PENDING, DNS_PENDING, OVERALL_ERROR)


def derive_status(
    dns_ok: bool,
    proxy_ok: bool,
    ssl_ok: bool,
    error: bool = False,
) -> str:
    """
    Collapse the three sub-signals into one overall status.

    The earliest unmet prerequisite wins: DNS, then proxy, then SSL.
    """
    if error:
        return OVERALL_ERROR
    if not dns_ok:
        return DNS_PENDING
    if not proxy_ok:
        return NGINX_PENDING
    if not ssl_ok:
        return SSL_PENDING
    return OVERALL_ACTIVE


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Domain:
    """A tenant hostname and the state of its DNS record, vhost and certificate."""

    tenant_id: str
    hostname: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    dns_record_id: Optional[str] = None
    target_ip: Optional[str] = None
    dns_status: str = PENDING
    ssl_status: str = PENDING
    proxy_active: bool = False
    is_primary: bool = False
    verification_token: str = field(default_factory=lambda: secrets.token_urlsafe(32))
    status: str = STATUS_SETUP
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    verified_at: Optional[datetime] = None
    last_check_at: Optional[datetime] = None
    ssl_expires_at: Optional[datetime] = None

    # Fields the health reconciler is allowed to write
    MUTABLE_FIELDS = (
        "dns_status",
        "ssl_status",
        "proxy_active",
        "status",
        "verified_at",
        "last_check_at",
        "ssl_expires_at",
    )

    def __post_init__(self):
        self.hostname = self.hostname.lower().rstrip(".")
        self.tenant_id = str(self.tenant_id)

    @property
    def overall_status(self) -> str:
        """Provisioning state derived from the stored sub-statuses."""
        return derive_status(
            dns_ok=self.dns_record_id is not None and self.dns_status != ERROR,
            proxy_ok=self.proxy_active,
            ssl_ok=self.ssl_status == ACTIVE,
            error=self.status == STATUS_ERROR,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "hostname": self.hostname,
            "dns_record_id": self.dns_record_id,
            "target_ip": self.target_ip,
            "dns_status": self.dns_status,
            "ssl_status": self.ssl_status,
            "proxy_active": self.proxy_active,
            "is_primary": self.is_primary,
            "verification_token": self.verification_token,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "verified_at": _iso(self.verified_at),
            "last_check_at": _iso(self.last_check_at),
            "ssl_expires_at": _iso(self.ssl_expires_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Domain":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            hostname=data["hostname"],
            dns_record_id=data.get("dns_record_id"),
            target_ip=data.get("target_ip"),
            dns_status=data.get("dns_status", PENDING),
            ssl_status=data.get("ssl_status", PENDING),
            proxy_active=data.get("proxy_active", False),
            is_primary=data.get("is_primary", False),
            verification_token=data.get("verification_token", ""),
            status=data.get("status", STATUS_SETUP),
            created_at=_parse(data.get("created_at")) or datetime.now(timezone.utc),
            verified_at=_parse(data.get("verified_at")),
            last_check_at=_parse(data.get("last_check_at")),
            ssl_expires_at=_parse(data.get("ssl_expires_at")),
        )

    def to_api_response(self) -> dict:
        """Convert to API response, hiding token once DNS is verified."""
        resp = self.to_dict()
        resp["overall_status"] = self.overall_status
        if self.verified_at is not None:
            resp.pop("verification_token")
        return resp


@dataclass
class DnsRecord:
    """A DNS record as normalised from the provider's response."""

    id: str
    name: str
    type: str
    content: str
    proxied: bool = False
    ttl: int = 1

    @classmethod
    def from_provider(cls, data: dict) -> "DnsRecord":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=data.get("type", "A"),
            content=data.get("content", ""),
            proxied=bool(data.get("proxied", False)),
            ttl=int(data.get("ttl", 1)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "content": self.content,
            "proxied": self.proxied,
            "ttl": self.ttl,
        }


@dataclass
class ValidationResult:
    """Outcome of a real-time DNS + TLS check. Never persisted."""

    hostname: str
    dns_valid: bool = False
    ssl_valid: bool = False
    ssl_issuer: Optional[str] = None
    ssl_expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    dns_error: Optional[str] = None
    ssl_error: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def overall_valid(self) -> bool:
        return self.dns_valid and self.ssl_valid

    def to_dict(self) -> dict:
        return {
            "hostname": self.hostname,
            "dns": {
                "valid": self.dns_valid,
                "error": self.dns_error,
            },
            "ssl": {
                "valid": self.ssl_valid,
                "issuer": self.ssl_issuer,
                "expires_at": _iso(self.ssl_expires_at),
                "days_until_expiry": self.days_until_expiry,
                "error": self.ssl_error,
            },
            "overall_valid": self.overall_valid,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class DNSCheck:
    """Result of a single DNS resolution probe."""

    valid: bool
    message: str = ""
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SSLCheck:
    """Result of a single TLS handshake probe."""

    valid: bool
    issuer: Optional[str] = None
    expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SetupResult:
    """What setup_domain hands back to its caller."""

    domain: Domain
    dns: dict
    proxy: dict
    next_steps: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "domain": self.domain.to_api_response(),
            "dns": self.dns,
            "proxy": self.proxy,
            "next_steps": self.next_steps,
        }
