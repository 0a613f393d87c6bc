"""
Feature-gated navigation resolution.

This package provides:
- FeatureCatalog: feature definitions, free/paid split and menu mapping
- FeatureAccessResolver: per-tenant enabled sets with fail-closed decisions
- NavigationTreeFilter: prunes the navigation tree for a principal
- Guards for routes, page regions, buttons/links and feature combinations
- FeatureAdminService: CS-side enable/disable, bulk updates and audit log
- NavigationSession: wires all of the above for one signed-in principal

Usage:
    from navgate import NavigationSession, PrincipalContext

    session = NavigationSession()
    await session.init(PrincipalContext(user_id="u1", tenant_id="t1", roles=("End-User",)))
    menu = session.use_hybrid_navigation().navigation_items
"""

from navgate.access import FeatureAccessResolver
from navgate.admin import AdminCapabilities, FeatureAdminService
from navgate.cache import FeatureCache
from navgate.catalog import FeatureCatalog, default_catalog
from navgate.client import FeatureApiClient
from navgate.config import NavGateConfig
from navgate.errors import (
    CacheError,
    CatalogConfigError,
    DependencyNotMetError,
    FeatureNotFoundError,
    InsufficientPermissionsError,
    NavGateError,
    NetworkError,
    TenantNotFoundError,
    ValidationError,
)
from navgate.events import FeatureEvent, FeatureEventEmitter, FeatureEventType
from navgate.guards import (
    ComponentGuard,
    ControlGuard,
    Denied,
    Granted,
    Loading,
    MultiFeatureGuard,
    Redirect,
    RouteGuard,
)
from navgate.models import AccessDecision, FeatureCategory, FeatureDefinition, PrincipalContext
from navgate.navigation import NavCollapse, NavItem, NavTitle, NavigationTreeFilter, parse_navigation
from navgate.session import HybridNavigation, NavigationSession

__all__ = [
    # Catalog & models
    "FeatureCatalog",
    "default_catalog",
    "FeatureDefinition",
    "FeatureCategory",
    "PrincipalContext",
    "AccessDecision",
    # Resolution
    "FeatureCache",
    "FeatureApiClient",
    "FeatureAccessResolver",
    "NavGateConfig",
    # Navigation
    "NavItem",
    "NavCollapse",
    "NavTitle",
    "NavigationTreeFilter",
    "parse_navigation",
    # Guards
    "RouteGuard",
    "ComponentGuard",
    "ControlGuard",
    "MultiFeatureGuard",
    "Granted",
    "Denied",
    "Loading",
    "Redirect",
    # Events
    "FeatureEvent",
    "FeatureEventEmitter",
    "FeatureEventType",
    # Admin
    "AdminCapabilities",
    "FeatureAdminService",
    # Session
    "HybridNavigation",
    "NavigationSession",
    # Errors
    "NavGateError",
    "CacheError",
    "CatalogConfigError",
    "DependencyNotMetError",
    "FeatureNotFoundError",
    "InsufficientPermissionsError",
    "NetworkError",
    "TenantNotFoundError",
    "ValidationError",
]
