"""
DNS record provisioning at the DNS provider (Cloudflare v4 API).
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

import aiohttp

from ..config import ARecordTemplate, CNAMERecordTemplate
from ..errors import CredentialError, DomainError, RemoteProvisioningError
from .models import DnsRecord
from .retry import AuthRejected, TokenSource, call_with_refresh

logger = logging.getLogger("tenant_domains.domains.dns")


class DNSProvisioner:
    """Idempotent CRUD over tenant DNS records, plus public propagation checks."""

    def __init__(
        self,
        zone_id: str,
        token_source: TokenSource,
        record_template: Union[ARecordTemplate, CNAMERecordTemplate, None] = None,
        api_base: str = "https://api.cloudflare.com/client/v4",
        resolver_url: str = "https://dns.google/resolve",
        timeout: float = 10.0,
        propagation_timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.zone_id = zone_id
        self.token_source = token_source
        self.record_template = record_template or ARecordTemplate()
        self.api_base = api_base.rstrip("/")
        self.resolver_url = resolver_url
        self.timeout = timeout
        self.propagation_timeout = propagation_timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token_source.token}",
            "Content-Type": "application/json",
        }

    @property
    def record_type(self) -> str:
        return self.record_template.type

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """
        Send one provider API call and return the decoded envelope.

        Transport failures and ``success: false`` envelopes raise
        RemoteProvisioningError; auth rejections go through one refresh.
        """
        url = f"{self.api_base}{path}"
        description = f"DNS provider {method} {path}"

        async def _call() -> dict:
            session = await self._get_session()
            try:
                async with session.request(
                    method,
                    url,
                    headers=self._headers(),
                    params=params,
                    json=json_body,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status in (401, 403):
                        raise AuthRejected(resp.status)
                    payload = await resp.json(content_type=None)
                    status = resp.status
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                raise RemoteProvisioningError(
                    f"{description} failed: {e or type(e).__name__}"
                ) from e

            if not isinstance(payload, dict) or not payload.get("success"):
                errors = payload.get("errors") if isinstance(payload, dict) else None
                errors = errors or []
                message = errors[0].get("message") if errors else f"HTTP {status}"
                raise RemoteProvisioningError(
                    f"{description} rejected: {message}",
                    details={"errors": errors, "status": status},
                )
            return payload

        return await call_with_refresh(_call, self.token_source.refresh, description)

    async def validate_credentials(self) -> bool:
        """
        Check that the token is active and can read the configured zone.

        Raises CredentialError otherwise.
        """
        if not self.token_source.token:
            raise CredentialError("DNS provider token is not configured")
        if not self.zone_id:
            raise CredentialError("DNS provider zone id is not configured")

        try:
            payload = await self._request("GET", "/user/tokens/verify")
            status = (payload.get("result") or {}).get("status")
            if status != "active":
                raise CredentialError(
                    f"DNS provider token is {status or 'not active'}",
                    details={"token_status": status},
                )
            await self._request("GET", f"/zones/{self.zone_id}")
        except RemoteProvisioningError as e:
            raise CredentialError(
                f"DNS provider token lacks access: {e.message}",
                details=e.details,
            ) from e

        logger.info("DNS provider credentials verified")
        return True

    async def find_record(self, hostname: str) -> Optional[DnsRecord]:
        """Look a record up by name and configured type."""
        hostname = hostname.lower().rstrip(".")
        payload = await self._request(
            "GET",
            f"/zones/{self.zone_id}/dns_records",
            params={"name": hostname, "type": self.record_type},
        )
        results = payload.get("result") or []
        if not results:
            return None
        return DnsRecord.from_provider(results[0])

    async def ensure_record(self, hostname: str, ip: str) -> DnsRecord:
        """
        Make the provider hold exactly one record for *hostname*.

        Updates the existing record in place when its content differs,
        creates one otherwise.
        """
        hostname = hostname.lower().rstrip(".")
        body = self.record_template.payload(hostname, ip)
        if body["type"] == "A" and not ip:
            raise RemoteProvisioningError("Server IP is not configured for A records")

        existing = await self.find_record(hostname)
        if existing:
            if (
                existing.content == body["content"]
                and existing.proxied == body["proxied"]
            ):
                logger.info(f"DNS record already current: {hostname} -> {existing.content}")
                return existing
            logger.info(f"Updating DNS record {existing.id}: {hostname} -> {body['content']}")
            payload = await self._request(
                "PUT",
                f"/zones/{self.zone_id}/dns_records/{existing.id}",
                json_body=body,
            )
        else:
            logger.info(f"Creating DNS record: {hostname} -> {body['content']}")
            payload = await self._request(
                "POST",
                f"/zones/{self.zone_id}/dns_records",
                json_body=body,
            )

        return DnsRecord.from_provider(payload["result"])

    async def delete_record(self, record_id: str) -> bool:
        """Delete a record by provider id."""
        await self._request("DELETE", f"/zones/{self.zone_id}/dns_records/{record_id}")
        logger.info(f"Deleted DNS record {record_id}")
        return True

    async def remove_record(self, hostname: str) -> bool:
        """Delete the record for *hostname*. Returns False if none existed."""
        record = await self.find_record(hostname)
        if not record:
            logger.info(f"No DNS record to remove for {hostname}")
            return False
        return await self.delete_record(record.id)

    async def list_records(self) -> List[DnsRecord]:
        """List every record in the zone."""
        records: List[DnsRecord] = []
        page = 1
        while True:
            payload = await self._request(
                "GET",
                f"/zones/{self.zone_id}/dns_records",
                params={"page": page, "per_page": 100},
            )
            records.extend(DnsRecord.from_provider(r) for r in payload.get("result") or [])
            total_pages = (payload.get("result_info") or {}).get("total_pages", 1)
            if page >= total_pages:
                break
            page += 1
        return records

    async def check_propagation(self, hostname: str) -> dict:
        """
        Ask a public resolver whether *hostname* is visible yet.

        Never raises: errors and timeouts report ``propagated=False``.
        """
        hostname = hostname.lower().rstrip(".")
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            session = await self._get_session()
            async with session.get(
                self.resolver_url,
                params={"name": hostname, "type": "A"},
                headers={"Accept": "application/dns-json"},
                timeout=aiohttp.ClientTimeout(total=self.propagation_timeout),
            ) as resp:
                data = await resp.json(content_type=None)
        except Exception as e:
            logger.debug(f"Propagation check failed for {hostname}: {e}")
            return {
                "hostname": hostname,
                "propagated": False,
                "records": [],
                "checked_at": checked_at,
                "error": str(e) or type(e).__name__,
            }

        answers = data.get("Answer") or []
        return {
            "hostname": hostname,
            "propagated": data.get("Status") == 0 and len(answers) > 0,
            "records": answers,
            "checked_at": checked_at,
        }

    async def get_status(self, hostname: str) -> dict:
        """Provider view plus public view of a hostname. Never raises."""
        hostname = hostname.lower().rstrip(".")
        try:
            record = await self.find_record(hostname)
        except DomainError as e:
            return {
                "hostname": hostname,
                "dns_configured": False,
                "propagated": False,
                "error": e.message,
                "last_checked": datetime.now(timezone.utc).isoformat(),
            }

        propagation = await self.check_propagation(hostname)
        return {
            "hostname": hostname,
            "dns_configured": record is not None,
            "dns_record_id": record.id if record else None,
            "target_ip": record.content if record else None,
            "propagated": propagation["propagated"],
            "last_checked": propagation["checked_at"],
        }

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.info("DNS provider HTTP session closed")
        self._session = None
