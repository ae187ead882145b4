"""
Domain registry: persisted Domain rows keyed by hostname.
"""

import json
import logging
from typing import Dict, List, Optional

import redis.asyncio as redis

from ..errors import ValidationError
from .models import Domain

logger = logging.getLogger("tenant_domains.domains.registry")


class DomainRegistry:
    """
    Registry for tenant hostname -> Domain rows.

    Uses Redis for persistence with in-memory fallback when Redis
    cannot be reached. Hostnames are globally unique and each tenant
    has at most one primary domain.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "tenant_domains:",
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None
        self._use_redis = True
        # In-memory fallback
        self._memory_store: Dict[str, dict] = {}
        self._tenant_index: Dict[str, set] = {}

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get Redis connection."""
        if not self._use_redis:
            return None

        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
                logger.info("Domain registry connected to Redis")
            except Exception as e:
                logger.warning(
                    f"Redis unavailable for domain registry, using in-memory: {e}"
                )
                self._redis = None
                self._use_redis = False
                return None

        return self._redis

    def _domain_key(self, hostname: str) -> str:
        return f"{self.key_prefix}domain:{hostname}"

    def _tenant_key(self, tenant_id: str) -> str:
        return f"{self.key_prefix}tenant_domains:{tenant_id}"

    async def _write(self, domain: Domain) -> None:
        data = domain.to_dict()
        r = await self._get_redis()
        if r:
            await r.set(self._domain_key(domain.hostname), json.dumps(data))
            await r.sadd(self._tenant_key(domain.tenant_id), domain.hostname)
        else:
            self._memory_store[domain.hostname] = data
            self._tenant_index.setdefault(domain.tenant_id, set()).add(domain.hostname)

    async def add(self, domain: Domain) -> Domain:
        """
        Insert a new Domain row.

        Raises ValidationError if the hostname is already registered.
        Registering a primary domain demotes the tenant's other domains.
        """
        existing = await self.get(domain.hostname)
        if existing:
            raise ValidationError(
                f"Domain {domain.hostname} is already registered",
                reason="conflict",
            )

        siblings = await self.list_by_tenant(domain.tenant_id)
        if not siblings:
            domain.is_primary = True
        elif domain.is_primary:
            for other in siblings:
                if other.is_primary:
                    other.is_primary = False
                    await self._write(other)

        await self._write(domain)
        logger.info(f"Registered domain: {domain.hostname} -> tenant {domain.tenant_id}")
        return domain

    async def get(self, hostname: str) -> Optional[Domain]:
        """Get a Domain row by hostname."""
        hostname = hostname.lower().rstrip(".")
        r = await self._get_redis()

        if r:
            data = await r.get(self._domain_key(hostname))
            if not data:
                return None
            info = json.loads(data) if isinstance(data, str) else data
        else:
            info = self._memory_store.get(hostname)
            if not info:
                return None

        return Domain.from_dict(info)

    async def update(self, domain: Domain) -> Domain:
        """Replace an existing Domain row."""
        if not await self.get(domain.hostname):
            raise KeyError(domain.hostname)
        await self._write(domain)
        logger.info(f"Updated domain: {domain.hostname}")
        return domain

    async def update_status(self, hostname: str, **changes) -> Optional[Domain]:
        """
        Apply status/timestamp changes to a row.

        Identity fields (tenant, hostname, record id, token) are refused.
        Returns None when the row has disappeared in the meantime.
        """
        illegal = set(changes) - set(Domain.MUTABLE_FIELDS)
        if illegal:
            raise ValueError(f"Refusing to update identity fields: {sorted(illegal)}")

        entry = await self.get(hostname)
        if not entry:
            return None
        for name, value in changes.items():
            setattr(entry, name, value)
        await self._write(entry)
        return entry

    async def delete(self, hostname: str) -> bool:
        """Delete a Domain row."""
        hostname = hostname.lower().rstrip(".")
        entry = await self.get(hostname)
        if not entry:
            return False

        r = await self._get_redis()
        if r:
            await r.delete(self._domain_key(hostname))
            await r.srem(self._tenant_key(entry.tenant_id), hostname)
        else:
            self._memory_store.pop(hostname, None)
            tenant_set = self._tenant_index.get(entry.tenant_id)
            if tenant_set:
                tenant_set.discard(hostname)

        logger.info(f"Deleted domain: {hostname}")
        return True

    async def list_by_tenant(self, tenant_id: str) -> List[Domain]:
        """List all domains for a tenant."""
        tenant_id = str(tenant_id)
        r = await self._get_redis()
        if r:
            members = await r.smembers(self._tenant_key(tenant_id))
        else:
            members = set(self._tenant_index.get(tenant_id, set()))

        domains: List[Domain] = []
        for hostname in sorted(members):
            entry = await self.get(hostname)
            if entry:
                domains.append(entry)
        return domains

    async def count_by_tenant(self, tenant_id: str) -> int:
        return len(await self.list_by_tenant(tenant_id))

    async def list_all(self) -> List[Domain]:
        """List every registered domain."""
        domains: List[Domain] = []

        r = await self._get_redis()
        if r:
            cursor = 0
            pattern = f"{self.key_prefix}domain:*"
            while True:
                cursor, keys = await r.scan(cursor, match=pattern, count=100)
                for key in keys:
                    data = await r.get(key)
                    if data:
                        domains.append(Domain.from_dict(json.loads(data)))
                if cursor == 0:
                    break
        else:
            for data in self._memory_store.values():
                domains.append(Domain.from_dict(data))

        domains.sort(key=lambda d: (d.tenant_id, d.hostname))
        return domains

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None
            logger.info("Domain registry Redis connection closed")
