import importlib.metadata

from fastapi_license_key.domain.entities import AuditEvent, LicenseKey
from fastapi_license_key.repositories.sql import LicenseKeyModelMixin
from fastapi_license_key.security import AdminAuthorizer
from fastapi_license_key.services.base import LicenseKeyService

__all__ = [
    "AdminAuthorizer",
    "AuditEvent",
    "LicenseKey",
    "LicenseKeyService",
    "LicenseKeyModelMixin",
]

__version__ = importlib.metadata.version("fastapi_license_key")
