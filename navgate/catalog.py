from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .config import is_valid_feature_key
from .errors import CatalogConfigError, DependencyNotMetError, FeatureNotFoundError
from .models import ROLE_END_USER, ROLE_TENANT_ADMIN, FeatureCategory, FeatureDefinition

logger = logging.getLogger(__name__)

DASHBOARD_BASIC = "dashboard_basic"
SHOP_KPI_BASIC = "shop_kpi_basic"
SHOP_PROPERTIES_BASIC = "shop_properties_basic"
SUBSCRIPTIONS_BASIC = "subscriptions_basic"
REPORTS_BASIC = "reports_basic"
KPI_GOALS_ADVANCED = "kpi_goals_advanced"
PARTS_MANAGEMENT_FULL = "parts_management_full"
ACCOUNTING_ADVANCED = "accounting_advanced"

_TENANT_ROLES = frozenset({ROLE_TENANT_ADMIN, ROLE_END_USER})

DEFAULT_FEATURE_DEFINITIONS: Tuple[FeatureDefinition, ...] = (
    FeatureDefinition(
        key=DASHBOARD_BASIC,
        name="Dashboard",
        description="Basic dashboard with essential metrics and overview",
        category=FeatureCategory.FREE,
        menu_path="tenantDashboard",
        required_roles=_TENANT_ROLES,
    ),
    FeatureDefinition(
        key=SHOP_KPI_BASIC,
        name="Shop KPI",
        description="Basic shop KPI overview and monitoring",
        category=FeatureCategory.FREE,
        menu_path="shopKPI",
        required_roles=_TENANT_ROLES,
    ),
    FeatureDefinition(
        key=SHOP_PROPERTIES_BASIC,
        name="Shop Properties",
        description="View and manage basic shop properties and information",
        category=FeatureCategory.FREE,
        menu_path="shopKPI.shopProperties",
        required_roles=_TENANT_ROLES,
        dependencies=frozenset({SHOP_KPI_BASIC}),
    ),
    FeatureDefinition(
        key=SUBSCRIPTIONS_BASIC,
        name="Subscriptions",
        description="Access to basic subscription information and status",
        category=FeatureCategory.FREE,
        menu_path="subscriptions",
        required_roles=_TENANT_ROLES,
    ),
    FeatureDefinition(
        key=REPORTS_BASIC,
        name="Reports",
        description="Basic reporting capabilities with standard templates",
        category=FeatureCategory.FREE,
        menu_path="reports",
        required_roles=_TENANT_ROLES,
    ),
    FeatureDefinition(
        key=KPI_GOALS_ADVANCED,
        name="KPI and Goals",
        description="Advanced KPI tracking with detailed analytics, goals, and performance insights",
        category=FeatureCategory.PAID,
        menu_path="shopKPI.shopKpi",
        required_roles=_TENANT_ROLES,
        dependencies=frozenset({SHOP_KPI_BASIC}),
    ),
    FeatureDefinition(
        key=PARTS_MANAGEMENT_FULL,
        name="Parts Management",
        description="Complete parts management with manufacturers, brands, suppliers, "
        "categories, master parts, supplier parts, and match parts",
        category=FeatureCategory.PAID,
        menu_path="partsManagement",
        required_roles=_TENANT_ROLES,
    ),
    FeatureDefinition(
        key=ACCOUNTING_ADVANCED,
        name="Accounting",
        description="Advanced accounting features including master chart of accounts, "
        "chart of accounts, shop chart of accounts, and GL upload",
        category=FeatureCategory.PAID,
        menu_path="accounting",
        required_roles=_TENANT_ROLES,
    ),
)

# One feature may control a parent menu and all of its descendants.
FEATURE_TO_MENU_MAPPING: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    DASHBOARD_BASIC: ("tenantDashboard",),
    SHOP_KPI_BASIC: ("shopKPI", "shopKPI.shopProperties", "shopKPI.shopKpi"),
    SHOP_PROPERTIES_BASIC: ("shopKPI.shopProperties",),
    KPI_GOALS_ADVANCED: ("shopKPI.shopKpi",),
    PARTS_MANAGEMENT_FULL: (
        "partsManagement",
        "partsManagement.manufacturers",
        "partsManagement.brands",
        "partsManagement.suppliers",
        "partsManagement.partCategories",
        "partsManagement.masterParts",
        "partsManagement.supplierParts",
        "partsManagement.matchParts",
    ),
    ACCOUNTING_ADVANCED: (
        "accounting",
        "accounting.masterChartOfAccount",
        "accounting.chartOfAccounts",
        "accounting.shopChartOfAccount",
        "accounting.uploadGL",
    ),
    SUBSCRIPTIONS_BASIC: ("subscriptions",),
    REPORTS_BASIC: ("reports",),
})


def invert_menu_mapping(feature_to_menu: Mapping[str, Iterable[str]]) -> Dict[str, Tuple[str, ...]]:
    """Derive menu key -> feature keys, keeping first-seen feature order."""
    menu_to_feature: Dict[str, List[str]] = {}
    for feature_key, menu_keys in feature_to_menu.items():
        for menu_key in menu_keys:
            bucket = menu_to_feature.setdefault(menu_key, [])
            if feature_key not in bucket:
                bucket.append(feature_key)
    return {menu_key: tuple(keys) for menu_key, keys in menu_to_feature.items()}


MENU_TO_FEATURE_MAPPING: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    invert_menu_mapping(FEATURE_TO_MENU_MAPPING)
)


class FeatureCatalog:
    """
    Static, read-only table of feature definitions and menu mappings.

    The dependency graph is validated once at construction: unknown
    dependencies and cycles raise CatalogConfigError so a bad table never
    reaches runtime.
    """

    def __init__(
        self,
        definitions: Iterable[FeatureDefinition],
        feature_to_menu: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        by_key: Dict[str, FeatureDefinition] = {}
        for definition in definitions:
            if definition.key in by_key:
                raise CatalogConfigError(f"duplicate feature key: {definition.key}")
            if not is_valid_feature_key(definition.key):
                raise CatalogConfigError(f"invalid feature key: {definition.key!r}")
            by_key[definition.key] = definition

        mapping = {k: tuple(v) for k, v in (feature_to_menu or {}).items()}
        for feature_key in mapping:
            if feature_key not in by_key:
                raise CatalogConfigError(f"menu mapping references unknown feature: {feature_key}")

        self._definitions: Mapping[str, FeatureDefinition] = MappingProxyType(by_key)
        self._feature_to_menu: Mapping[str, Tuple[str, ...]] = MappingProxyType(mapping)
        self._menu_to_feature: Mapping[str, Tuple[str, ...]] = MappingProxyType(
            invert_menu_mapping(mapping)
        )
        self._free_keys = frozenset(k for k, d in by_key.items() if d.is_free)
        self._validate_dependency_graph()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def default(cls) -> "FeatureCatalog":
        return cls(DEFAULT_FEATURE_DEFINITIONS, FEATURE_TO_MENU_MAPPING)

    @classmethod
    def from_file(cls, path: str) -> "FeatureCatalog":
        """Load a catalog from a JSON file with `features` and `menu_mapping` fields."""
        with Path(path).open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise CatalogConfigError(f"{path} must contain a top-level object")
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: Mapping) -> "FeatureCatalog":
        features_raw = raw.get("features")
        if not isinstance(features_raw, list) or not features_raw:
            raise CatalogConfigError("catalog must include a non-empty list field named 'features'")

        definitions: List[FeatureDefinition] = []
        for item in features_raw:
            if not isinstance(item, dict):
                raise CatalogConfigError(f"feature entry must be an object: {item!r}")
            key = item.get("key")
            if not isinstance(key, str) or not key.strip():
                raise CatalogConfigError(f"feature entry has invalid key: {key!r}")
            try:
                category = FeatureCategory(str(item.get("category", "")).strip().lower())
            except ValueError as exc:
                raise CatalogConfigError(
                    f"feature '{key}' has invalid category: {item.get('category')!r}"
                ) from exc
            for list_field in ("required_roles", "dependencies"):
                if not isinstance(item.get(list_field, []), list):
                    raise CatalogConfigError(f"feature '{key}' {list_field} must be a list")
            definitions.append(
                FeatureDefinition(
                    key=key,
                    name=str(item.get("name") or key),
                    description=str(item.get("description", "")),
                    category=category,
                    menu_path=str(item.get("menu_path", "")),
                    required_roles=frozenset(item.get("required_roles", [])),
                    dependencies=frozenset(item.get("dependencies", [])),
                )
            )

        menu_raw = raw.get("menu_mapping", {})
        if not isinstance(menu_raw, dict):
            raise CatalogConfigError("catalog field 'menu_mapping' must be an object")
        for feature_key, menu_keys in menu_raw.items():
            if not isinstance(menu_keys, list):
                raise CatalogConfigError(f"menu mapping for '{feature_key}' must be a list")

        return cls(definitions, menu_raw)

    def _validate_dependency_graph(self) -> None:
        for definition in self._definitions.values():
            for dependency in definition.dependencies:
                if dependency not in self._definitions:
                    raise CatalogConfigError(
                        f"feature '{definition.key}' depends on unknown feature '{dependency}'"
                    )

        visiting: set[str] = set()
        done: set[str] = set()

        def visit(key: str, trail: List[str]) -> None:
            if key in done:
                return
            if key in visiting:
                cycle = " -> ".join(trail[trail.index(key):] + [key])
                raise CatalogConfigError(f"feature dependency cycle: {cycle}")
            visiting.add(key)
            for dependency in sorted(self._definitions[key].dependencies):
                visit(dependency, trail + [key])
            visiting.discard(key)
            done.add(key)

        for key in sorted(self._definitions):
            visit(key, [])

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def __contains__(self, feature_key: object) -> bool:
        return feature_key in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def keys(self) -> Tuple[str, ...]:
        return tuple(self._definitions)

    def get(self, feature_key: str) -> Optional[FeatureDefinition]:
        return self._definitions.get(feature_key)

    def definition(self, feature_key: str) -> FeatureDefinition:
        found = self._definitions.get(feature_key)
        if found is None:
            raise FeatureNotFoundError(feature_key)
        return found

    def definitions(self) -> Tuple[FeatureDefinition, ...]:
        return tuple(self._definitions.values())

    @property
    def free_keys(self) -> FrozenSet[str]:
        return self._free_keys

    @property
    def paid_keys(self) -> FrozenSet[str]:
        return frozenset(self._definitions) - self._free_keys

    def is_free(self, feature_key: str) -> bool:
        return feature_key in self._free_keys

    def category_of(self, feature_key: str) -> FeatureCategory:
        return self.definition(feature_key).category

    def menu_keys_for(self, feature_key: str) -> Tuple[str, ...]:
        return self._feature_to_menu.get(feature_key, ())

    def features_for_menu(self, menu_key: str) -> Tuple[str, ...]:
        return self._menu_to_feature.get(menu_key, ())

    @property
    def menu_to_feature(self) -> Mapping[str, Tuple[str, ...]]:
        return self._menu_to_feature

    # ------------------------------------------------------------------
    # Enablement
    # ------------------------------------------------------------------

    def validate_dependencies(self, feature_key: str, enabled_keys: Iterable[str]) -> Tuple[bool, List[str]]:
        """Check direct dependencies against a tenant's enabled list."""
        definition = self.definition(feature_key)
        enabled = set(enabled_keys)
        missing = sorted(dep for dep in definition.dependencies if dep not in enabled)
        return not missing, missing

    def missing_dependencies(self, feature_key: str, enabled_keys: Iterable[str]) -> List[str]:
        """
        Return every dependency (transitively) that blocks `feature_key`.

        A dependency counts as satisfied only when the tenant's enabled set
        lists it and its own dependencies are satisfied in turn. Order is
        depth-first, dependencies before dependents.
        """
        enabled = set(enabled_keys)
        missing: List[str] = []
        seen: set[str] = set()

        def walk(key: str) -> None:
            for dependency in sorted(self.definition(key).dependencies):
                if dependency in seen:
                    continue
                seen.add(dependency)
                walk(dependency)
                if dependency not in enabled:
                    missing.append(dependency)

        walk(feature_key)
        return missing

    def require_dependencies(self, feature_key: str, enabled_keys: Iterable[str]) -> None:
        missing = self.missing_dependencies(feature_key, enabled_keys)
        if missing:
            raise DependencyNotMetError(feature_key, missing)

    def is_enabled(self, feature_key: str, enabled_keys: Iterable[str]) -> bool:
        """Free features are always enabled; paid ones need membership plus dependencies."""
        definition = self._definitions.get(feature_key)
        if definition is None:
            return False
        if definition.is_free:
            return True
        enabled = set(enabled_keys)
        if feature_key not in enabled:
            return False
        return not self.missing_dependencies(feature_key, enabled)

    def effective_enabled(self, enabled_keys: Iterable[str]) -> FrozenSet[str]:
        enabled = set(enabled_keys)
        effective = set(self._free_keys)
        for key in enabled:
            if key in self._definitions and self.is_enabled(key, enabled):
                effective.add(key)
        return frozenset(effective)


_default_catalog: Optional[FeatureCatalog] = None


def default_catalog() -> FeatureCatalog:
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = FeatureCatalog.default()
    return _default_catalog
