"""
Navigation engine error hierarchy.

Provides:
- NavGateError: base for all engine failures (carries error_code + to_dict)
- FeatureNotFoundError / TenantNotFoundError: lookup misses
- InsufficientPermissionsError: role check failed
- DependencyNotMetError: paid feature enabled without its prerequisites
- CacheError: malformed cached entry
- NetworkError: fetch against the feature backend failed
- ValidationError: invalid admin request (bulk updates, feature keys)
- CatalogConfigError: static feature table is inconsistent (raised at load)
"""

from typing import Iterable, Optional


class NavGateError(Exception):
    """Base exception for navigation engine failures."""

    error_code = "NAVGATE_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": dict(self.details),
            }
        }


class FeatureNotFoundError(NavGateError):
    """Raised when a feature key is not part of the catalog."""

    error_code = "FEATURE_NOT_FOUND"
    http_status = 404

    def __init__(self, feature_key: str):
        self.feature_key = feature_key
        super().__init__(
            f"Feature {feature_key} not found",
            details={"feature_key": feature_key},
        )


class TenantNotFoundError(NavGateError):
    """Raised when the backend has no record of a tenant."""

    error_code = "TENANT_NOT_FOUND"
    http_status = 404

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(
            f"Tenant {tenant_id} not found",
            details={"tenant_id": tenant_id},
        )


class InsufficientPermissionsError(NavGateError):
    error_code = "INSUFFICIENT_PERMISSIONS"
    http_status = 403

    def __init__(self, message: str = "Insufficient role permissions", required: Iterable[str] = ()):
        self.required = tuple(required)
        super().__init__(message, details={"required": list(self.required)})


class DependencyNotMetError(NavGateError):
    """Raised when a paid feature is enabled without its prerequisites."""

    error_code = "DEPENDENCY_NOT_MET"
    http_status = 409

    def __init__(self, feature_key: str, missing: Iterable[str]):
        self.feature_key = feature_key
        self.missing = tuple(missing)
        super().__init__(
            f"Feature {feature_key} requires {', '.join(self.missing)} to be enabled first",
            details={"feature_key": feature_key, "missing": list(self.missing)},
        )


class CacheError(NavGateError):
    error_code = "CACHE_ERROR"


class NetworkError(NavGateError):
    """
    Raised when a call to the feature backend fails.

    The message is safe to log but must not be shown to end users;
    guards translate it into a fixed denial reason.
    """

    error_code = "NETWORK_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
    ):
        self.status_code = status_code
        self.endpoint = endpoint
        details: dict = {}
        if status_code is not None:
            details["status_code"] = status_code
        if endpoint is not None:
            details["endpoint"] = endpoint
        super().__init__(message, details=details)


class ValidationError(NavGateError):
    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, details={"field": field} if field else None)


class CatalogConfigError(NavGateError):
    """Raised at load time when the feature table is inconsistent."""

    error_code = "CATALOG_CONFIG_ERROR"


class FeatureAlreadyEnabledError(NavGateError):
    error_code = "FEATURE_ALREADY_ENABLED"
    http_status = 409

    def __init__(self, tenant_id: str, feature_key: str):
        super().__init__(
            f"Feature {feature_key} is already enabled for {tenant_id}",
            details={"tenant_id": tenant_id, "feature_key": feature_key},
        )


class FeatureAlreadyDisabledError(NavGateError):
    error_code = "FEATURE_ALREADY_DISABLED"
    http_status = 409

    def __init__(self, tenant_id: str, feature_key: str):
        super().__init__(
            f"Feature {feature_key} is already disabled for {tenant_id}",
            details={"tenant_id": tenant_id, "feature_key": feature_key},
        )
