"""
Real-time DNS and TLS validation for tenant domains.
"""

import asyncio
import logging
import ssl
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

import dns.asyncresolver
import dns.exception
import dns.resolver

from ..errors import DomainError, ValidationTimeout
from .models import DNSCheck, SSLCheck, ValidationResult

logger = logging.getLogger("tenant_domains.domains.verification")


class _CacheEntry:
    """TTL cache entry for probe results."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, expires_at: float):
        self.value = value
        self.expires_at = expires_at


class ValidationCache:
    """
    Probe results keyed by hostname, each expiring after ``ttl`` seconds.

    A hostname holds one entry per probe kind; invalidating the hostname
    drops all of them.
    """

    def __init__(self, ttl: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Dict[str, _CacheEntry]] = {}

    def get(self, hostname: str, probe: str) -> Optional[Any]:
        entry = self._entries.get(hostname, {}).get(probe)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._entries[hostname].pop(probe, None)
            return None
        return entry.value

    def set(self, hostname: str, probe: str, value: Any) -> None:
        self._entries.setdefault(hostname, {})[probe] = _CacheEntry(
            value, self._clock() + self.ttl
        )

    def invalidate(self, hostname: str) -> bool:
        return self._entries.pop(hostname, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, hostname: str) -> bool:
        return bool(self._entries.get(hostname))


class DomainValidator:
    """Checks that a hostname resolves to us and serves a valid certificate."""

    def __init__(
        self,
        expected_target: str,
        server_ip: str = "",
        ssl_timeout: float = 5.0,
        dns_timeout: float = 5.0,
        ssl_issuance_window_hours: int = 24,
        expiry_warning_days: int = 30,
        cache: Optional[ValidationCache] = None,
    ):
        self.expected_target = expected_target.lower().rstrip(".")
        self.server_ip = server_ip
        self.ssl_timeout = ssl_timeout
        self.dns_timeout = dns_timeout
        self.ssl_issuance_window_hours = ssl_issuance_window_hours
        self.expiry_warning_days = expiry_warning_days
        self.cache = cache if cache is not None else ValidationCache()

    def _get_resolver(self) -> "dns.asyncresolver.Resolver":
        resolver = dns.asyncresolver.Resolver()
        resolver.timeout = self.dns_timeout
        resolver.lifetime = self.dns_timeout
        return resolver

    # ── DNS ──────────────────────────────────────────────────────────

    async def validate_dns(self, hostname: str, expected_target: Optional[str] = None) -> bool:
        """True when *hostname* points at the expected target."""
        return (await self.check_dns(hostname, expected_target)).valid

    async def check_dns(self, hostname: str, expected_target: Optional[str] = None) -> DNSCheck:
        """
        Resolve CNAME first, falling back to A record comparison.

        Cached per hostname. Never raises; a timeout is an invalid result.
        """
        hostname = hostname.lower().rstrip(".")
        target = (expected_target or self.expected_target).lower().rstrip(".")
        probe = f"dns:{target}"

        cached = self.cache.get(hostname, probe)
        if cached is not None:
            return cached

        try:
            valid, message = await self._resolve_against(hostname, target)
        except DomainError as e:
            valid, message = False, e.message

        result = DNSCheck(valid=valid, message=message)
        self.cache.set(hostname, probe, result)
        return result

    async def _resolve_against(self, hostname: str, target: str) -> tuple:
        resolver = self._get_resolver()

        # Check CNAME
        try:
            answers = await resolver.resolve(hostname, "CNAME")
            targets = [str(rdata.target).rstrip(".").lower() for rdata in answers]
            if target in targets:
                return True, f"CNAME verified: {hostname} -> {target}"
            return False, (
                f"CNAME exists but points to {', '.join(targets)}, "
                f"expected {target}"
            )
        except dns.resolver.NoAnswer:
            pass
        except dns.resolver.NXDOMAIN:
            return False, f"Domain {hostname} does not exist (NXDOMAIN)"
        except dns.exception.Timeout as e:
            raise ValidationTimeout(f"DNS lookup for {hostname} timed out") from e
        except dns.exception.DNSException as e:
            logger.debug(f"CNAME lookup failed for {hostname}: {e}")

        # Fallback: compare A record IPs
        domain_ips = await self._resolve_a_records(hostname, resolver)
        if not domain_ips:
            return False, f"No CNAME or A records found for {hostname}"

        expected_ips = await self._resolve_a_records(target, resolver)
        if self.server_ip:
            expected_ips.add(self.server_ip)
        if domain_ips & expected_ips:
            return True, f"A record verified: {hostname} resolves to {target}"
        return False, (
            f"{hostname} resolves to {', '.join(sorted(domain_ips))}, "
            f"expected one of {', '.join(sorted(expected_ips)) or target}"
        )

    async def _resolve_a_records(
        self, name: str, resolver: "dns.asyncresolver.Resolver"
    ) -> Set[str]:
        """Resolve A records for a name."""
        ips: Set[str] = set()
        try:
            answers = await resolver.resolve(name, "A")
            for rdata in answers:
                ips.add(str(rdata))
        except dns.exception.Timeout as e:
            raise ValidationTimeout(f"DNS lookup for {name} timed out") from e
        except dns.exception.DNSException as e:
            logger.debug(f"A lookup failed for {name}: {e}")
        return ips

    # ── TLS ──────────────────────────────────────────────────────────

    async def validate_ssl(self, hostname: str) -> SSLCheck:
        """
        Inspect the certificate served on port 443.

        Cached per hostname. Never raises; connection failures and
        timeouts come back as ``valid=False`` with a reason.
        """
        hostname = hostname.lower().rstrip(".")
        cached = self.cache.get(hostname, "ssl")
        if cached is not None:
            return cached

        try:
            cert = await self._fetch_certificate(hostname)
            result = self._inspect_certificate(hostname, cert)
        except DomainError as e:
            result = SSLCheck(valid=False, error=e.message)

        self.cache.set(hostname, "ssl", result)
        return result

    async def _fetch_certificate(self, hostname: str) -> dict:
        context = ssl.create_default_context()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    hostname, 443, ssl=context, server_hostname=hostname
                ),
                timeout=self.ssl_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ValidationTimeout(
                f"SSL validation timeout after {self.ssl_timeout}s"
            ) from e
        except ssl.SSLCertVerificationError as e:
            raise DomainError(f"Certificate rejected: {e.verify_message}") from e
        except (ssl.SSLError, OSError) as e:
            raise DomainError(f"SSL connection failed: {e}") from e

        try:
            return writer.get_extra_info("peercert") or {}
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ssl.SSLError, OSError) as e:
                logger.debug(f"TLS close for {hostname} was not clean: {e}")

    def _inspect_certificate(self, hostname: str, cert: dict) -> SSLCheck:
        if not cert.get("notAfter"):
            return SSLCheck(valid=False, error="Peer certificate unavailable")

        not_before = datetime.fromtimestamp(
            ssl.cert_time_to_seconds(cert["notBefore"]), tz=timezone.utc
        )
        not_after = datetime.fromtimestamp(
            ssl.cert_time_to_seconds(cert["notAfter"]), tz=timezone.utc
        )
        issuer_fields = dict(pair for rdn in cert.get("issuer", ()) for pair in rdn)
        issuer = issuer_fields.get("organizationName") or issuer_fields.get("commonName")

        now = datetime.now(timezone.utc)
        valid = not_before <= now <= not_after
        days = (not_after - now).days

        if valid and days < self.expiry_warning_days:
            logger.warning(f"Certificate for {hostname} expires in {days} days")

        return SSLCheck(
            valid=valid,
            issuer=issuer,
            expires_at=not_after,
            days_until_expiry=days,
            error=None if valid else "Certificate outside its validity window",
        )

    # ── Combined ─────────────────────────────────────────────────────

    async def validate(self, hostname: str) -> ValidationResult:
        """Run both probes (read-through cache) and combine them."""
        hostname = hostname.lower().rstrip(".")
        dns_check, ssl_check = await asyncio.gather(
            self.check_dns(hostname),
            self.validate_ssl(hostname),
        )
        return ValidationResult(
            hostname=hostname,
            dns_valid=dns_check.valid,
            ssl_valid=ssl_check.valid,
            ssl_issuer=ssl_check.issuer,
            ssl_expires_at=ssl_check.expires_at,
            days_until_expiry=ssl_check.days_until_expiry,
            dns_error=None if dns_check.valid else dns_check.message,
            ssl_error=ssl_check.error,
            checked_at=min(dns_check.checked_at, ssl_check.checked_at),
        )

    def invalidate(self, hostname: str) -> bool:
        return self.cache.invalidate(hostname.lower().rstrip("."))

    def clear(self) -> None:
        self.cache.clear()

    def remediation(self, hostname: str) -> dict:
        """Machine-readable hints for fixing an invalid domain."""
        hostname = hostname.lower().rstrip(".")
        return {
            "dns": {
                "record_type": "CNAME",
                "record_name": hostname,
                "record_value": self.expected_target,
                "instructions": (
                    f"Add a CNAME record for {hostname} pointing to "
                    f"{self.expected_target}"
                ),
            },
            "ssl": {
                "issuance_window_hours": self.ssl_issuance_window_hours,
                "instructions": (
                    f"Certificates are issued automatically; allow up to "
                    f"{self.ssl_issuance_window_hours}h after DNS resolves"
                ),
            },
        }
