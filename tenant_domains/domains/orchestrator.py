"""
Domain setup and teardown across the DNS provider, nginx and the registry.

There is no transaction spanning the three systems. Setup is a saga:
each completed remote step is undone, best effort, when a later step
fails or the whole operation times out. Teardown does the opposite and
pushes on through failures.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from ..errors import (
    DomainError,
    PersistenceError,
    RemoteProvisioningError,
    ValidationError,
)
from .dns import DNSProvisioner
from .models import (
    PENDING,
    STATUS_ACTIVE,
    STATUS_ERROR,
    DnsRecord,
    Domain,
    SetupResult,
)
from .proxy import ReverseProxyProvisioner
from .registry import DomainRegistry
from .ssl import CertificateAutomation
from .verification import DomainValidator

if TYPE_CHECKING:
    from ..tenants.registry import Tenant, TenantRegistry

logger = logging.getLogger("tenant_domains.domains.orchestrator")

# Valid hostname: at least two labels, alphabetic TLD
_HOSTNAME_RE = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+"
    r"[a-z]{2,63}$"
)
MAX_HOSTNAME_LENGTH = 253


def normalize_hostname(hostname: str) -> str:
    """Lower-case and syntax-check a hostname. Raises ValidationError."""
    hostname = (hostname or "").strip().lower().rstrip(".")
    if not hostname:
        raise ValidationError("Hostname is required", reason="invalid_hostname")
    if len(hostname) > MAX_HOSTNAME_LENGTH:
        raise ValidationError(
            f"Hostname too long ({len(hostname)} > {MAX_HOSTNAME_LENGTH} characters)",
            reason="invalid_hostname",
        )
    if not _HOSTNAME_RE.match(hostname):
        raise ValidationError(f"Invalid hostname: {hostname}", reason="invalid_hostname")
    return hostname


@dataclass
class _SetupProgress:
    """Which remote steps a setup has started and finished."""

    dns_started: bool = False
    record: Optional[DnsRecord] = None
    proxy_started: bool = False
    proxy: Optional[dict] = None
    conflict: bool = False

    def breakdown(self) -> dict:
        return {
            "dns": "done" if self.record else ("failed" if self.dns_started else "not_started"),
            "proxy": "done" if self.proxy else ("failed" if self.proxy_started else "not_started"),
            "ssl": "not_started",
        }


class DomainOrchestrator:
    """Sequences DNS and proxy provisioning and owns the compensation policy."""

    def __init__(
        self,
        dns: DNSProvisioner,
        proxy: ReverseProxyProvisioner,
        validator: DomainValidator,
        domains: DomainRegistry,
        tenants: "TenantRegistry",
        server_ip: str,
        certificates: Optional[CertificateAutomation] = None,
        operation_timeout: float = 60.0,
    ):
        self.dns = dns
        self.proxy = proxy
        self.validator = validator
        self.domains = domains
        self.tenants = tenants
        self.server_ip = server_ip
        self.certificates = certificates
        self.operation_timeout = operation_timeout
        self._host_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, hostname: str) -> asyncio.Lock:
        """One lock per hostname, shared by setup and teardown."""
        lock = self._host_locks.get(hostname)
        if lock is None:
            lock = self._host_locks[hostname] = asyncio.Lock()
        return lock

    # ── Setup ────────────────────────────────────────────────────────

    async def _preflight(self, tenant_id: str, hostname: str) -> Tuple["Tenant", str, Optional[Domain]]:
        """Every check that must pass before the first remote call."""
        hostname = normalize_hostname(hostname)

        tenant = await self.tenants.find_by_id(tenant_id)
        if not tenant:
            raise ValidationError(f"Tenant {tenant_id} not found", reason="not_found")

        existing = await self.domains.get(hostname)
        if existing and existing.tenant_id != tenant.id:
            raise ValidationError(
                f"Domain {hostname} is already registered",
                reason="conflict",
            )

        if not existing:
            current = await self.domains.count_by_tenant(tenant.id)
            if current >= tenant.max_domains:
                raise ValidationError(
                    f"Domain limit reached for plan {tenant.plan} "
                    f"({tenant.max_domains} domains)",
                    details={"max_domains": tenant.max_domains, "current": current},
                    reason="plan_limit",
                )

        return tenant, hostname, existing

    async def setup_domain(self, tenant_id: str, hostname: str) -> SetupResult:
        """
        Provision DNS and proxy for a tenant hostname, then persist it.

        Safe to call again with the same arguments: existing records and
        vhosts are reused and the existing row is updated.
        """
        hostname = normalize_hostname(hostname)
        async with self._lock_for(hostname):
            return await self._setup_locked(tenant_id, hostname)

    async def _setup_locked(self, tenant_id: str, hostname: str) -> SetupResult:
        tenant, hostname, existing = await self._preflight(tenant_id, hostname)
        progress = _SetupProgress()
        logger.info(f"Setting up {hostname} for tenant {tenant.id}")

        try:
            result = await asyncio.wait_for(
                self._run_setup(tenant, hostname, existing, progress),
                timeout=self.operation_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Setup of {hostname} timed out after {self.operation_timeout}s")
            await self._handle_failure(hostname, existing, progress, in_flight=True)
            raise RemoteProvisioningError(
                f"Setup of {hostname} timed out after {self.operation_timeout}s",
                details=self._failure_details(hostname, progress),
            ) from e
        except DomainError as e:
            logger.error(f"Setup of {hostname} failed: {e.message}")
            await self._handle_failure(hostname, existing, progress, in_flight=False)
            e.details.update(self._failure_details(hostname, progress))
            raise
        except Exception as e:
            logger.exception(f"Setup of {hostname} failed unexpectedly")
            await self._handle_failure(hostname, existing, progress, in_flight=True)
            raise RemoteProvisioningError(
                f"Setup of {hostname} failed: {e}",
                details=self._failure_details(hostname, progress),
            ) from e

        self.validator.invalidate(hostname)
        logger.info(f"Domain {hostname} provisioned for tenant {tenant.id}")
        return result

    async def _run_setup(
        self,
        tenant: "Tenant",
        hostname: str,
        existing: Optional[Domain],
        progress: _SetupProgress,
    ) -> SetupResult:
        progress.dns_started = True
        record = await self.dns.ensure_record(hostname, self.server_ip)
        progress.record = record

        progress.proxy_started = True
        proxy_result = await self.proxy.activate(tenant.id, hostname)
        progress.proxy = proxy_result

        domain = await self._persist(tenant, hostname, record, existing, progress)

        return SetupResult(
            domain=domain,
            dns={"hostname": hostname, **record.to_dict()},
            proxy=proxy_result,
            next_steps=self.next_steps(hostname),
        )

    async def _persist(
        self,
        tenant: "Tenant",
        hostname: str,
        record: DnsRecord,
        existing: Optional[Domain],
        progress: _SetupProgress,
    ) -> Domain:
        try:
            if existing:
                existing.dns_record_id = record.id
                existing.target_ip = record.content
                existing.proxy_active = True
                existing.status = STATUS_ACTIVE
                return await self.domains.update(existing)

            await self.tenants.add_domain(tenant.id, {
                "hostname": hostname,
                "dns_record_id": record.id,
                "target_ip": record.content,
                "dns_status": PENDING,
                "ssl_status": PENDING,
                "proxy_active": True,
                "status": STATUS_ACTIVE,
            })
            domain = await self.domains.get(hostname)
        except ValidationError as e:
            # A conflict means another writer registered the hostname first
            # and owns the shared DNS record and vhost.
            progress.conflict = e.reason == "conflict"
            raise PersistenceError(
                f"Could not persist {hostname}: {e.message}",
                details={"reason": e.reason},
            ) from e
        except Exception as e:
            raise PersistenceError(
                f"Could not persist {hostname}: {getattr(e, 'message', None) or e}"
            ) from e

        if domain is None:
            raise PersistenceError(f"Domain {hostname} vanished right after insert")
        return domain

    async def _handle_failure(
        self,
        hostname: str,
        existing: Optional[Domain],
        progress: _SetupProgress,
        in_flight: bool,
    ) -> None:
        """
        Undo what a failed setup created.

        A hostname that already had a row keeps its remote resources (the
        row still references them) and is flagged as error instead.
        """
        if existing:
            try:
                await self.domains.update_status(hostname, status=STATUS_ERROR)
            except Exception as e:
                logger.error(f"Could not flag {hostname} as error: {e}")
            return

        if progress.conflict:
            logger.warning(f"{hostname} was registered concurrently; leaving remote resources in place")
            return

        await self._compensate(hostname, progress, in_flight)

    async def _compensate(self, hostname: str, progress: _SetupProgress, in_flight: bool) -> List[str]:
        """
        Best-effort, non-retried undo. Failures are logged and returned,
        never raised, so the original error stays the one the caller sees.
        """
        failures: List[str] = []

        if progress.proxy_started and (progress.proxy or in_flight):
            try:
                await self.proxy.deactivate(hostname)
                logger.info(f"Compensation: removed vhost for {hostname}")
            except Exception as e:
                failures.append(f"proxy: {e}")
                logger.error(f"Compensation failed to remove vhost for {hostname}: {e}")

        try:
            if progress.record:
                await self.dns.delete_record(progress.record.id)
                logger.info(f"Compensation: deleted DNS record {progress.record.id} for {hostname}")
            elif progress.dns_started and in_flight:
                await self.dns.remove_record(hostname)
        except Exception as e:
            failures.append(f"dns: {e}")
            logger.error(f"Compensation failed to delete DNS record for {hostname}: {e}")

        if in_flight and progress.proxy:
            try:
                await self.domains.delete(hostname)
            except Exception as e:
                failures.append(f"database: {e}")
                logger.error(f"Compensation failed to delete row for {hostname}: {e}")

        if failures:
            logger.error(f"Orphaned resources may remain for {hostname}: {failures}")
        return failures

    def _failure_details(self, hostname: str, progress: _SetupProgress) -> dict:
        return {
            "hostname": hostname,
            "steps": progress.breakdown(),
            "remediation": self.validator.remediation(hostname),
        }

    def next_steps(self, hostname: str) -> List[str]:
        hours = self.validator.ssl_issuance_window_hours
        return [
            f"DNS propagation for {hostname} is in progress (usually 5-15 minutes)",
            f"The TLS certificate is issued automatically within {hours}h of DNS resolving",
            f"Point a CNAME for {hostname} to {self.validator.expected_target} "
            f"if the zone is managed elsewhere",
        ]

    # ── Teardown ─────────────────────────────────────────────────────

    async def remove_domain(self, tenant_id: str, hostname: str) -> dict:
        """
        Disable the vhost, delete the DNS record, delete the row.

        Each step runs regardless of the others failing. Without a row,
        only leftovers of this tenant's own setup (a vhost staged for it)
        are torn down.
        """
        hostname = normalize_hostname(hostname)
        tenant_id = str(tenant_id)
        async with self._lock_for(hostname):
            return await self._remove_locked(tenant_id, hostname)

    async def _remove_locked(self, tenant_id: str, hostname: str) -> dict:
        domain = await self.domains.get(hostname)
        if domain and domain.tenant_id != tenant_id:
            raise ValidationError(
                f"Domain {hostname} belongs to another tenant",
                reason="forbidden",
            )

        if domain is None:
            if not await self.tenants.find_by_id(tenant_id):
                raise ValidationError(f"Tenant {tenant_id} not found", reason="not_found")
            if self.proxy.staged_owner(hostname) != tenant_id:
                raise ValidationError(
                    f"Domain {hostname} is not registered to tenant {tenant_id}",
                    reason="not_found",
                )
            logger.info(f"No row for {hostname}; removing leftovers staged for tenant {tenant_id}")

        logger.info(f"Removing {hostname} for tenant {tenant_id}")
        errors = {}
        steps = {}

        try:
            steps["proxy"] = await self.proxy.deactivate(hostname)
        except Exception as e:
            errors["proxy"] = str(e)
            logger.warning(f"Removing vhost for {hostname} failed (continuing): {e}")

        try:
            steps["dns"] = {"removed": await self.dns.remove_record(hostname)}
        except Exception as e:
            errors["dns"] = str(e)
            logger.warning(f"Removing DNS record for {hostname} failed (continuing): {e}")

        try:
            steps["database"] = {"removed": await self.domains.delete(hostname)}
        except Exception as e:
            errors["database"] = str(e)
            logger.warning(f"Deleting row for {hostname} failed: {e}")

        self.validator.invalidate(hostname)

        if errors:
            logger.warning(f"Domain {hostname} removed with errors: {errors}")
        else:
            logger.info(f"Domain {hostname} removed")

        return {
            "success": not errors,
            "hostname": hostname,
            "steps": steps,
            "errors": errors,
        }

    # ── Certificates & provider notifications ────────────────────────

    def renew_all_ssl(self) -> dict:
        """Ask certificate automation to renew; the outcome is not awaited."""
        if self.certificates is None:
            return {"scheduled": False, "message": "No certificate automation configured"}
        result = self.certificates.schedule_renewal()
        logger.info(f"Certificate renewal scheduled: {result}")
        return result

    def handle_webhook(self, event_type: str, hostname: Optional[str] = None) -> dict:
        """Acknowledge a provider notification and drop stale validation results."""
        logger.info(f"Provider webhook received: {event_type} ({hostname or 'no hostname'})")
        if hostname:
            self.validator.invalidate(hostname)
        return {"accepted": True, "event_type": event_type, "hostname": hostname}
