"""
Tenant registry: the narrow slice of tenant data the domain core needs.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import redis.asyncio as redis

from ..domains.models import Domain
from ..domains.registry import DomainRegistry
from ..errors import ValidationError

logger = logging.getLogger("tenant_domains.tenants.registry")

# Domains allowed per plan
PLAN_LIMITS = {
    "starter": 1,
    "pro": 3,
    "enterprise": 10,
}


@dataclass
class Tenant:
    """A tenant as seen by domain provisioning."""

    id: str
    name: str = ""
    plan: str = "starter"
    max_domains: Optional[int] = None

    def __post_init__(self):
        self.id = str(self.id)
        if self.max_domains is None:
            self.max_domains = PLAN_LIMITS.get(self.plan, 1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "plan": self.plan,
            "max_domains": self.max_domains,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Tenant":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            plan=data.get("plan", "starter"),
            max_domains=data.get("max_domains"),
        )


class TenantRegistry:
    """
    Tenant lookup plus the domain-row insert used by the orchestrator's
    persistence step.

    Uses Redis for persistence with in-memory fallback.
    """

    def __init__(
        self,
        domain_registry: DomainRegistry,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "tenant_domains:",
    ):
        self.domain_registry = domain_registry
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None
        self._use_redis = True
        self._memory_store: Dict[str, dict] = {}

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
                logger.info("Tenant registry connected to Redis")
            except Exception as e:
                logger.warning(
                    f"Redis unavailable for tenant registry, using in-memory: {e}"
                )
                self._redis = None
                self._use_redis = False
                return None

        return self._redis

    def _tenant_key(self, tenant_id: str) -> str:
        return f"{self.key_prefix}tenant:{tenant_id}"

    async def save(self, tenant: Tenant) -> Tenant:
        """Create or replace a tenant record."""
        r = await self._get_redis()
        if r:
            await r.set(self._tenant_key(tenant.id), json.dumps(tenant.to_dict()))
        else:
            self._memory_store[tenant.id] = tenant.to_dict()
        logger.info(f"Saved tenant {tenant.id} (plan={tenant.plan}, max_domains={tenant.max_domains})")
        return tenant

    async def find_by_id(self, tenant_id: str) -> Optional[Tenant]:
        tenant_id = str(tenant_id)
        r = await self._get_redis()
        if r:
            data = await r.get(self._tenant_key(tenant_id))
            info = json.loads(data) if data else None
        else:
            info = self._memory_store.get(tenant_id)
        return Tenant.from_dict(info) if info else None

    async def list_all(self) -> List[Tenant]:
        r = await self._get_redis()
        tenants: List[Tenant] = []
        if r:
            cursor = 0
            pattern = f"{self.key_prefix}tenant:*"
            while True:
                cursor, keys = await r.scan(cursor, match=pattern, count=100)
                for key in keys:
                    data = await r.get(key)
                    if data:
                        tenants.append(Tenant.from_dict(json.loads(data)))
                if cursor == 0:
                    break
        else:
            tenants = [Tenant.from_dict(d) for d in self._memory_store.values()]
        return sorted(tenants, key=lambda t: t.id)

    async def add_domain(self, tenant_id: str, attrs: dict) -> str:
        """
        Insert a Domain row for the tenant and return its id.

        Re-checks the plan limit so the row count can never exceed it,
        even when two setups for the same tenant race.
        """
        tenant = await self.find_by_id(tenant_id)
        if not tenant:
            raise ValidationError(f"Tenant {tenant_id} not found", reason="not_found")

        current = await self.domain_registry.count_by_tenant(tenant.id)
        if current >= tenant.max_domains:
            raise ValidationError(
                f"Domain limit reached for plan {tenant.plan} "
                f"({tenant.max_domains} domains)",
                reason="plan_limit",
            )

        domain = Domain(tenant_id=tenant.id, **attrs)
        await self.domain_registry.add(domain)
        return domain.id

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None
            logger.info("Tenant registry Redis connection closed")
