"""
Bulk health checks and status reconciliation for every registered domain.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from .dns import DNSProvisioner
from .models import (
    ACTIVE,
    DNS_PENDING,
    ERROR,
    NGINX_PENDING,
    OVERALL_ACTIVE,
    OVERALL_ERROR,
    PENDING,
    SSL_PENDING,
    STATUS_ACTIVE,
    STATUS_ERROR,
    STATUS_INACTIVE,
    Domain,
    derive_status,
)
from .proxy import ReverseProxyProvisioner
from .registry import DomainRegistry
from .verification import DomainValidator

logger = logging.getLogger("tenant_domains.domains.health")


def summarize(details: List[dict]) -> dict:
    """Bucket per-domain results by overall status."""
    def count(state: str) -> int:
        return sum(1 for d in details if d.get("overall_status") == state)

    return {
        "total": len(details),
        "active": count(OVERALL_ACTIVE),
        "ssl_pending": count(SSL_PENDING),
        "nginx_pending": count(NGINX_PENDING),
        "dns_pending": count(DNS_PENDING),
        "errors": count(OVERALL_ERROR),
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }


class HealthReconciler:
    """
    Probes DNS provider, proxy and live DNS/TLS for each domain.

    Probing never touches remote configuration. ``reconcile()`` writes the
    observed status and timestamps back into the registry.
    """

    def __init__(
        self,
        dns: DNSProvisioner,
        proxy: ReverseProxyProvisioner,
        validator: DomainValidator,
        domains: DomainRegistry,
        concurrency: int = 10,
        interval: int = 900,
    ):
        self.dns = dns
        self.proxy = proxy
        self.validator = validator
        self.domains = domains
        self.concurrency = max(1, concurrency)
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def check_hostname(self, hostname: str) -> dict:
        """Full status breakdown for one hostname."""
        hostname = hostname.lower().rstrip(".")
        dns_status, validation = await asyncio.gather(
            self.dns.get_status(hostname),
            self.validator.validate(hostname),
        )
        proxy_status = self.proxy.get_status(hostname)

        overall = derive_status(
            dns_ok=dns_status["dns_configured"],
            proxy_ok=proxy_status["active"],
            ssl_ok=validation.ssl_valid,
            error="error" in dns_status,
        )
        report = validation.to_dict()

        detail = {
            "hostname": hostname,
            "overall_status": overall,
            "dns": {
                **dns_status,
                "resolves": validation.dns_valid,
                "resolution_error": validation.dns_error,
            },
            "proxy": proxy_status,
            "ssl": report["ssl"],
            "checked_at": report["checked_at"],
        }
        if overall != OVERALL_ACTIVE:
            detail["remediation"] = self.validator.remediation(hostname)
        return detail

    async def check_domain(self, domain: Domain) -> dict:
        detail = await self.check_hostname(domain.hostname)
        detail["tenant_id"] = domain.tenant_id
        detail["is_primary"] = domain.is_primary
        return detail

    async def health_check_all(self) -> dict:
        """Check every registered domain with bounded concurrency."""
        domains = await self.domains.list_all()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _guarded(domain: Domain) -> dict:
            async with semaphore:
                try:
                    return await self.check_domain(domain)
                except Exception as e:
                    logger.error(f"Health check failed for {domain.hostname}: {e}")
                    return {
                        "hostname": domain.hostname,
                        "tenant_id": domain.tenant_id,
                        "overall_status": OVERALL_ERROR,
                        "error": str(e),
                    }

        details = list(await asyncio.gather(*(_guarded(d) for d in domains)))
        summary = summarize(details)
        logger.info(f"Health check finished: {summary}")
        return {"summary": summary, "details": details}

    # ── Reconciliation ───────────────────────────────────────────────

    @staticmethod
    def status_changes(domain: Domain, detail: dict, now: Optional[datetime] = None) -> dict:
        """Map one probe result onto the row's status/timestamp fields."""
        now = now or datetime.now(timezone.utc)
        changes = {"last_check_at": now}
        overall = detail.get("overall_status")

        if overall == OVERALL_ERROR and "dns" not in detail:
            changes["status"] = STATUS_ERROR
            return changes

        dns = detail["dns"]
        if dns.get("propagated") or dns.get("resolves"):
            changes["dns_status"] = ACTIVE
            if domain.verified_at is None:
                changes["verified_at"] = now
        elif "error" not in dns and not dns.get("dns_configured"):
            changes["dns_status"] = ERROR
        else:
            changes["dns_status"] = PENDING if domain.dns_status != ACTIVE else ACTIVE

        proxy_active = bool(detail["proxy"].get("active"))
        changes["proxy_active"] = proxy_active

        ssl = detail["ssl"]
        if ssl.get("valid"):
            changes["ssl_status"] = ACTIVE
            if ssl.get("expires_at"):
                changes["ssl_expires_at"] = datetime.fromisoformat(ssl["expires_at"])
        elif domain.ssl_status == ACTIVE:
            changes["ssl_status"] = ERROR
        else:
            changes["ssl_status"] = PENDING

        if overall == OVERALL_ERROR:
            changes["status"] = STATUS_ERROR
        elif not proxy_active:
            changes["status"] = STATUS_INACTIVE
        else:
            changes["status"] = STATUS_ACTIVE
        return changes

    async def reconcile(self) -> dict:
        """Health-check everything and record what was observed."""
        report = await self.health_check_all()
        updated = 0
        for detail in report["details"]:
            domain = await self.domains.get(detail["hostname"])
            if domain is None:
                continue
            await self.domains.update_status(
                domain.hostname, **self.status_changes(domain, detail)
            )
            updated += 1
        report["updated"] = updated
        return report

    async def refresh_propagation(self, hostname: str) -> Optional[Domain]:
        """Mark DNS active once a public resolver sees the record."""
        domain = await self.domains.get(hostname)
        if domain is None:
            return None

        now = datetime.now(timezone.utc)
        propagation = await self.dns.check_propagation(domain.hostname)
        changes = {"last_check_at": now}
        if propagation["propagated"] and domain.dns_status != ACTIVE:
            changes["dns_status"] = ACTIVE
            if domain.verified_at is None:
                changes["verified_at"] = now
            logger.info(f"DNS for {domain.hostname} is now visible publicly")
        return await self.domains.update_status(domain.hostname, **changes)

    # ── Scheduling ───────────────────────────────────────────────────

    async def run_forever(self) -> None:
        while True:
            try:
                await self.reconcile()
            except Exception as e:
                logger.error(f"Scheduled reconciliation failed: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> bool:
        """Start the scheduled job. No-op when the interval is 0."""
        if self.interval <= 0 or (self._task and not self._task.done()):
            return False
        self._task = asyncio.create_task(self.run_forever())
        logger.info(f"Health reconciliation scheduled every {self.interval}s")
        return True

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
