"""Custom-domain provisioning and health reconciliation for multi-tenant storefronts."""

__version__ = "0.1.0"
