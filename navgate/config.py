"""
Configuration for the navigation engine.

TTLs, limits and backend endpoints live here so call sites never hard-code
them. Values can be overridden through environment variables via
NavGateConfig.from_env().
"""

import os
import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Cache windows (seconds) per payload class
USER_FEATURES_TTL_SECONDS = 5 * 60
ADMIN_FEATURES_TTL_SECONDS = 10 * 60
AUDIT_LOG_TTL_SECONDS = 2 * 60
ACCESS_CHECK_TTL_SECONDS = 5 * 60
MAX_CACHE_SIZE = 100

# Admin tooling limits
RECENT_TENANTS_LIMIT = 5
MAX_BULK_OPERATIONS = 50
BULK_TENANT_BATCH_SIZE = 5
REASON_MAX_LENGTH = 500

FEATURE_KEY_PATTERN = re.compile(r"^[a-z0-9_]+$")
FEATURE_KEY_MAX_LENGTH = 100

DEFAULT_API_BASE_URL = "http://localhost:5000"
DEFAULT_API_TIMEOUT_SECONDS = 30.0
DEFAULT_UNAUTHORIZED_PATH = "/unauthorized"

# Feature backend endpoints
FEATURES_ENDPOINT = "/api/Features"
FEATURE_BY_ID_ENDPOINT = "/api/Features/{feature_id}"
TENANT_FEATURES_ENDPOINT = "/api/tenant-features"
TENANT_ENABLED_FEATURES_ENDPOINT = "/api/tenant-features/enabled"
FEATURE_ENABLED_CHECK_ENDPOINT = "/api/tenant-features/{feature_key}/enabled"
ADMIN_TENANT_FEATURES_ENDPOINT = "/api/tenant-features/tenant/{tenant_id}"
ADMIN_ENABLE_FEATURE_ENDPOINT = "/api/tenant-features/tenant/{tenant_id}/features/{feature_id}/enable"
ADMIN_DISABLE_FEATURE_ENDPOINT = "/api/tenant-features/tenant/{tenant_id}/features/{feature_id}/disable"
ADMIN_BULK_UPDATE_ENDPOINT = "/api/tenant-features/tenant/{tenant_id}/features/bulk"
AUDIT_ENDPOINT = "/api/Audit"
PERMISSIONS_ENDPOINT = "/api/Permission"
ROLES_ENDPOINT = "/api/Role"


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(
            "Ignoring non-integer configuration value",
            extra={"variable": name, "value": raw},
        )
        return default
    if value <= 0:
        logger.warning(
            "Ignoring non-positive configuration value",
            extra={"variable": name, "value": raw},
        )
        return default
    return value


@dataclass
class NavGateConfig:
    """Runtime configuration from environment."""
    api_base_url: str = DEFAULT_API_BASE_URL
    api_timeout_seconds: float = DEFAULT_API_TIMEOUT_SECONDS
    user_features_ttl_seconds: int = USER_FEATURES_TTL_SECONDS
    admin_features_ttl_seconds: int = ADMIN_FEATURES_TTL_SECONDS
    audit_log_ttl_seconds: int = AUDIT_LOG_TTL_SECONDS
    max_cache_size: int = MAX_CACHE_SIZE
    redis_url: Optional[str] = None
    unauthorized_path: str = DEFAULT_UNAUTHORIZED_PATH

    @classmethod
    def from_env(cls) -> "NavGateConfig":
        """Load configuration from environment variables."""
        timeout = _int_from_env("NAVGATE_API_TIMEOUT_SECONDS", int(DEFAULT_API_TIMEOUT_SECONDS))
        return cls(
            api_base_url=os.getenv("NAVGATE_API_URL", DEFAULT_API_BASE_URL).rstrip("/"),
            api_timeout_seconds=float(timeout),
            user_features_ttl_seconds=_int_from_env(
                "NAVGATE_USER_FEATURES_TTL_SECONDS", USER_FEATURES_TTL_SECONDS
            ),
            admin_features_ttl_seconds=_int_from_env(
                "NAVGATE_ADMIN_FEATURES_TTL_SECONDS", ADMIN_FEATURES_TTL_SECONDS
            ),
            audit_log_ttl_seconds=_int_from_env(
                "NAVGATE_AUDIT_LOG_TTL_SECONDS", AUDIT_LOG_TTL_SECONDS
            ),
            max_cache_size=_int_from_env("NAVGATE_MAX_CACHE_SIZE", MAX_CACHE_SIZE),
            redis_url=os.getenv("REDIS_URL") or None,
            unauthorized_path=os.getenv("NAVGATE_UNAUTHORIZED_PATH", DEFAULT_UNAUTHORIZED_PATH),
        )


def is_valid_feature_key(feature_key: str) -> bool:
    if not feature_key or len(feature_key) > FEATURE_KEY_MAX_LENGTH:
        return False
    return bool(FEATURE_KEY_PATTERN.match(feature_key))
