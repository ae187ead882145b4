"""
Configuration management for Tenant Domains.
"""

import logging
from functools import lru_cache
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class ARecordTemplate(BaseModel):
    """Point tenant hostnames straight at the server IP."""

    type: Literal["A"] = "A"
    ttl: int = Field(default=300, ge=1)
    proxied: bool = True

    model_config = {"extra": "forbid"}

    def payload(self, hostname: str, ip: str) -> dict:
        return {
            "type": self.type,
            "name": hostname,
            "content": ip,
            "ttl": self.ttl,
            "proxied": self.proxied,
        }


class CNAMERecordTemplate(BaseModel):
    """Alias tenant hostnames to a shared edge hostname."""

    type: Literal["CNAME"] = "CNAME"
    target: str
    ttl: int = Field(default=300, ge=1)
    proxied: bool = True

    model_config = {"extra": "forbid"}

    def payload(self, hostname: str, ip: str) -> dict:
        # CNAME records ignore the server IP and alias the edge hostname
        return {
            "type": self.type,
            "name": hostname,
            "content": self.target.lower().rstrip("."),
            "ttl": self.ttl,
            "proxied": self.proxied,
        }


DnsRecordTemplate = Annotated[
    Union[ARecordTemplate, CNAMERecordTemplate],
    Field(discriminator="type"),
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Network
    host: str = "0.0.0.0"
    port: int = 3333
    server_ip: str = ""
    cname_target: str = "edge.storefronts.example.com"
    backend_port: int = 3333

    # Redis
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "tenant_domains:"

    # DNS provider (Cloudflare)
    cloudflare_api_token: str = ""
    cloudflare_token_file: Optional[str] = None
    cloudflare_zone_id: str = ""
    cloudflare_api_base: str = "https://api.cloudflare.com/client/v4"
    cloudflare_timeout: float = 10.0
    dns_record: DnsRecordTemplate = Field(default_factory=ARecordTemplate)

    # Public resolver used for propagation checks
    doh_resolver_url: str = "https://dns.google/resolve"
    propagation_timeout: float = 5.0

    # Reverse proxy (nginx)
    nginx_sites_available: str = "/etc/nginx/sites-available"
    nginx_sites_enabled: str = "/etc/nginx/sites-enabled"
    nginx_template_path: str = "infrastructure/nginx/domain-template.conf"
    nginx_ssl_certificate: str = "/etc/nginx/ssl/origin.pem"
    nginx_ssl_certificate_key: str = "/etc/nginx/ssl/origin.key"
    nginx_bin: str = "nginx"
    nginx_command_timeout: float = 30.0

    # Validation
    validation_cache_ttl: int = 600  # seconds
    ssl_check_timeout: float = 5.0
    dns_check_timeout: float = 5.0
    ssl_issuance_window_hours: int = 24
    ssl_expiry_warning_days: int = 30

    # Orchestration
    operation_timeout: float = 60.0

    # Health reconciliation
    health_concurrency: int = 10
    health_check_interval: int = 900  # seconds, 0 disables the scheduler

    # Certificate automation
    certbot_bin: str = "certbot"
    certbot_timeout: int = 600

    # Logging
    log_level: str = "INFO"

    # Debug mode
    debug: bool = False

    model_config = {
        "env_prefix": "DOMAINS_",
        "env_file": ".env",
        "extra": "ignore"
    }

    def validate_required(self) -> bool:
        """Validate that required settings are configured."""
        if not self.server_ip:
            raise ValueError(
                "DOMAINS_SERVER_IP is required: tenant A records point at it."
            )
        if not (self.cloudflare_api_token or self.cloudflare_token_file):
            raise ValueError(
                "DOMAINS_CLOUDFLARE_API_TOKEN (or DOMAINS_CLOUDFLARE_TOKEN_FILE) "
                "is required to manage DNS records."
            )
        if not self.cloudflare_zone_id:
            raise ValueError("DOMAINS_CLOUDFLARE_ZONE_ID is required.")
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    # In production, validate required fields
    if not settings.debug:
        try:
            settings.validate_required()
        except ValueError as e:
            logging.warning(f"Configuration warning: {e}")
    return settings
