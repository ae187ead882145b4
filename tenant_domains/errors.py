"""
Error taxonomy for domain provisioning and validation.
"""

from typing import Optional


class DomainError(Exception):
    """Base class for every error raised by the domain core."""

    code = "domain_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainError):
    """Rejected before any remote call: bad hostname, unknown tenant, plan limit."""

    code = "validation_error"

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        reason: str = "invalid",
    ):
        super().__init__(message, details)
        self.reason = reason


class CredentialError(DomainError):
    """DNS provider token is missing, inactive or lacks the required scope."""

    code = "credential_error"


class RemoteProvisioningError(DomainError):
    """A call to the DNS provider or the reverse proxy failed."""

    code = "remote_provisioning_error"


class ConfigValidationError(RemoteProvisioningError):
    """The serving set failed the proxy's syntax check; reload never ran."""

    code = "config_validation_error"


class PersistenceError(DomainError):
    """Writing the domain row failed after remote provisioning succeeded."""

    code = "persistence_error"


class ValidationTimeout(DomainError):
    """A DNS or TLS probe exceeded its bound. Always counted as invalid."""

    code = "validation_timeout"
