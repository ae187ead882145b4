"""Tenant lookup used by domain provisioning."""

from .registry import PLAN_LIMITS, Tenant, TenantRegistry

__all__ = [
    "PLAN_LIMITS",
    "Tenant",
    "TenantRegistry",
]
