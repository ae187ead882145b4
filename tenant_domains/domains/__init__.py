"""Custom domain provisioning and validation for tenant storefronts."""

from .dns import DNSProvisioner
from .health import HealthReconciler
from .models import Domain, ValidationResult, derive_status
from .orchestrator import DomainOrchestrator
from .proxy import ReverseProxyProvisioner
from .registry import DomainRegistry
from .ssl import CertificateAutomation
from .verification import DomainValidator, ValidationCache

__all__ = [
    "CertificateAutomation",
    "DNSProvisioner",
    "Domain",
    "DomainOrchestrator",
    "DomainRegistry",
    "DomainValidator",
    "HealthReconciler",
    "ReverseProxyProvisioner",
    "ValidationCache",
    "ValidationResult",
    "derive_status",
]
