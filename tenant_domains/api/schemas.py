"""
Request models for the domain API.
"""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


class DomainSetupRequest(BaseModel):
    hostname: str = Field(min_length=1, max_length=253)


class TenantUpsertRequest(BaseModel):
    name: str = ""
    plan: Literal["starter", "pro", "enterprise"] = "starter"
    max_domains: Optional[int] = Field(default=None, ge=0)


# ── Provider webhooks ────────────────────────────────────────────────
# Each notification kind has a fixed shape; anything else is rejected.


class DnsRecordChangedEvent(BaseModel):
    event_type: Literal["dns_record_changed"]
    hostname: str
    record_id: Optional[str] = None
    content: Optional[str] = None

    model_config = {"extra": "forbid"}


class CertificateIssuedEvent(BaseModel):
    event_type: Literal["ssl_certificate_issued"]
    hostname: str
    expires_at: Optional[datetime] = None

    model_config = {"extra": "forbid"}


class CertificateExpiringEvent(BaseModel):
    event_type: Literal["ssl_certificate_expiring"]
    hostname: str
    days_remaining: int

    model_config = {"extra": "forbid"}


class ZoneAlertEvent(BaseModel):
    event_type: Literal["zone_alert"]
    message: str

    model_config = {"extra": "forbid"}


AnyWebhookEvent = Union[
    DnsRecordChangedEvent,
    CertificateIssuedEvent,
    CertificateExpiringEvent,
    ZoneAlertEvent,
]

