from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Generic, Iterable, Optional, Sequence, TypeVar

T = TypeVar("T")

ROLE_CS_ADMIN = "CS-Admin"
ROLE_CS_USER = "CS-User"
ROLE_TENANT_ADMIN = "Tenant-Admin"
ROLE_END_USER = "End-User"

# Highest privilege first
ROLE_PRECEDENCE: Sequence[str] = (ROLE_CS_ADMIN, ROLE_CS_USER, ROLE_TENANT_ADMIN, ROLE_END_USER)

ROLE_HOME_PATHS = {
    ROLE_CS_ADMIN: "/tenantportal/dashboard",
    ROLE_CS_USER: "/admin/dashboard",
    ROLE_TENANT_ADMIN: "/app/tenant-dashboard",
    ROLE_END_USER: "/app/tenant-dashboard",
}
ACCESS_DENIED_PATH = "/access-denied"


class FeatureCategory(str, Enum):
    FREE = "free"
    PAID = "paid"


def _normalize_keys(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(str(v).strip() for v in values if str(v).strip())


@dataclass(frozen=True)
class FeatureDefinition:
    """A licensable capability in the static catalog."""

    key: str
    name: str
    category: FeatureCategory
    menu_path: str = ""
    description: str = ""
    required_roles: FrozenSet[str] = field(default_factory=frozenset)
    dependencies: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        key = str(self.key).strip()
        if not key:
            raise ValueError("feature key is required")
        object.__setattr__(self, "key", key)
        object.__setattr__(self, "category", FeatureCategory(self.category))
        object.__setattr__(self, "required_roles", _normalize_keys(self.required_roles))
        object.__setattr__(self, "dependencies", _normalize_keys(self.dependencies))

    @property
    def is_free(self) -> bool:
        return self.category is FeatureCategory.FREE


@dataclass(frozen=True)
class Permission:
    id: str
    name: str
    category: Optional[str] = None
    description: str = ""


@dataclass(frozen=True)
class Role:
    """A role and the permission ids it grants."""

    id: str
    name: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", _normalize_keys(self.permissions))


@dataclass(frozen=True)
class PrincipalContext:
    """The authenticated user plus their tenant and role set."""

    user_id: str
    tenant_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    authenticated: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_id", str(self.user_id).strip())
        object.__setattr__(self, "tenant_id", str(self.tenant_id).strip())
        object.__setattr__(self, "roles", _normalize_keys(self.roles))

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return not self.roles.isdisjoint(roles)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached payload with its fetch and expiry timestamps (epoch seconds)."""

    data: T
    fetched_at: float
    expiry: float
    invalidated: bool = False

    def __post_init__(self) -> None:
        if self.expiry <= self.fetched_at:
            raise ValueError("expiry must be later than fetched_at")

    def is_stale(self, now: Optional[float] = None) -> bool:
        if self.invalidated:
            return True
        compare_at = time.time() if now is None else now
        return compare_at > self.expiry


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a single feature access check."""

    feature_key: str
    has_access: bool
    reason: str
    is_free_feature: bool = False
    show_upgrade: bool = False
    is_loading: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_key": self.feature_key,
            "has_access": self.has_access,
            "reason": self.reason,
            "is_free_feature": self.is_free_feature,
            "show_upgrade": self.show_upgrade,
            "is_loading": self.is_loading,
        }


def highest_role(roles: Iterable[str]) -> Optional[str]:
    held = set(roles)
    for role in ROLE_PRECEDENCE:
        if role in held:
            return role
    return None


def home_path_for_roles(roles: Iterable[str]) -> str:
    role = highest_role(roles)
    if role is None:
        return ACCESS_DENIED_PATH
    return ROLE_HOME_PATHS[role]
