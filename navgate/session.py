"""
Navigation session: the explicitly constructed service that owns the
cache, resolvers, event channel and guards for one signed-in principal.

Lifecycle:
    session = NavigationSession(config)
    await session.init(principal)   # fetch enabled features + permissions
    ...                             # use_hybrid_navigation(), guards
    session.sign_out()              # synchronous, clears tenant/user state
    await session.dispose()
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .access import FeatureAccessResolver
from .admin import FeatureAdminService
from .background import BackgroundTasks
from .cache import (
    FeatureCache,
    access_check_prefix,
    global_admin_keys,
    tenant_features_key,
    tenant_scope_keys,
)
from .catalog import FeatureCatalog, default_catalog
from .client import FeatureApiClient
from .config import NavGateConfig
from .default_navigation import DEFAULT_NAVIGATION
from .errors import NetworkError
from .events import FeatureEvent, FeatureEventEmitter, FeatureEventType
from .guards import (
    ComponentGuard,
    ControlGuard,
    FeatureGuardStatus,
    MultiFeatureGuard,
    RouteGuard,
    use_feature_guard,
)
from .models import PrincipalContext
from .navigation import NavigationTreeFilter, NavNode, count_nodes
from .permissions import PermissionResolver
from .store import LocalStateStore
from .tenant_selection import RecentTenantStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HybridNavigation:
    """What a menu renderer needs from the session."""

    navigation_items: List[NavNode]
    is_loading: bool
    has_menu_access: Callable[[str], bool]
    has_feature_access: Callable[[str], bool]
    refresh_features: Callable[[], Any]
    clear_cache: Callable[[], None]
    debug_info: Dict[str, Any]


class NavigationSession:
    def __init__(
        self,
        config: Optional[NavGateConfig] = None,
        *,
        client=None,
        catalog: Optional[FeatureCatalog] = None,
        navigation: Optional[Sequence[NavNode]] = None,
        cache: Optional[FeatureCache] = None,
        store: Optional[LocalStateStore] = None,
        events: Optional[FeatureEventEmitter] = None,
    ) -> None:
        self.config = config or NavGateConfig.from_env()
        self.catalog = catalog or default_catalog()
        self.navigation = tuple(navigation) if navigation is not None else DEFAULT_NAVIGATION
        self.cache = cache or FeatureCache(max_size=self.config.max_cache_size)
        self.store = store or LocalStateStore(redis_url=self.config.redis_url)
        self.events = events or FeatureEventEmitter()
        self._owns_client = client is None
        self.client = client or FeatureApiClient(self.config)
        self._background = BackgroundTasks()
        self.access = FeatureAccessResolver(
            self.catalog,
            self.cache,
            self.client,
            events=self.events,
            background=self._background,
            ttl_seconds=self.config.user_features_ttl_seconds,
        )
        self.permissions = PermissionResolver(self.client, store=self.store, background=BackgroundTasks())
        self.tree_filter = NavigationTreeFilter(self.access)
        self.recent_tenants = RecentTenantStore(self.store)
        self._principal: Optional[PrincipalContext] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def principal(self) -> Optional[PrincipalContext]:
        return self._principal

    async def init(self, principal: PrincipalContext, *, warm: bool = True) -> None:
        """
        Bind a principal and warm its caches. Fetch failures fail closed.

        With `warm=False` nothing is fetched up front; the first reads answer
        "loading" and schedule the fetches in the background.
        """
        if self._principal is not None:
            self.sign_out()
        self._principal = principal
        self.access.bind(principal)
        self.permissions.bind(principal)
        if not principal.authenticated or not warm:
            return
        logger.info(
            "Navigation session started",
            extra={"tenant_id": principal.tenant_id, "user_id": principal.user_id},
        )
        await asyncio.gather(self.access.ensure_loaded(), self.permissions.ensure_loaded())

    def sign_out(self) -> None:
        """Synchronously drop every tenant- and user-scoped entry."""
        principal = self._principal
        if principal is None:
            return
        self._background.cancel_all()
        for key in tenant_scope_keys(principal.tenant_id) + global_admin_keys():
            self.cache.invalidate(key)
        self.cache.invalidate_prefix(access_check_prefix(principal.tenant_id))
        self.permissions.clear()
        if principal.user_id:
            self.recent_tenants.clear(principal.user_id)
        self.access.unbind()
        self._principal = None
        logger.info(
            "Navigation session signed out",
            extra={"tenant_id": principal.tenant_id, "user_id": principal.user_id},
        )
        self.events.emit(
            FeatureEvent(
                type=FeatureEventType.CACHE_INVALIDATED,
                tenant_id=principal.tenant_id,
                user_id=principal.user_id,
                reason="sign-out",
            )
        )

    async def dispose(self) -> None:
        self.sign_out()
        self.events.clear()
        if self._owns_client:
            await self.client.aclose()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def is_loading(self) -> bool:
        return self.access.is_loading

    def navigation_items(self) -> List[NavNode]:
        return self.tree_filter.filter(self.navigation, self._principal)

    def has_menu_access(self, menu_key: str) -> bool:
        return self.access.has_menu_access(menu_key)

    def has_feature_access(self, feature_key: str) -> bool:
        return self.access.has_feature_access(feature_key)

    async def refresh_features(self) -> Optional[frozenset]:
        """Re-fetch the tenant's enabled set; the previous set stays readable meanwhile."""
        principal = self._principal
        if principal is None or not principal.authenticated:
            return None
        self.cache.expire(tenant_features_key(principal.tenant_id))
        self.cache.invalidate_prefix(access_check_prefix(principal.tenant_id))
        try:
            return await self.access.refresh(principal.tenant_id)
        except NetworkError:
            return None

    def clear_cache(self) -> None:
        """Mark the tenant's cached state stale and schedule a background re-fetch."""
        principal = self._principal
        if principal is None:
            return
        self.cache.expire(tenant_features_key(principal.tenant_id))
        self.cache.invalidate_prefix(access_check_prefix(principal.tenant_id))
        self.events.emit(
            FeatureEvent(
                type=FeatureEventType.CACHE_INVALIDATED,
                tenant_id=principal.tenant_id,
                user_id=principal.user_id,
            )
        )
        if principal.authenticated:
            self.access.schedule_refresh(principal.tenant_id)

    def debug_info(self) -> Dict[str, Any]:
        items = self.navigation_items()
        enabled = self.access.enabled_keys()
        return {
            "enabled_feature_keys": sorted(enabled) if enabled is not None else [],
            "effective_feature_keys": sorted(self.access.effective_features()),
            "total_menu_items": count_nodes(self.navigation),
            "accessible_menu_items": count_nodes(items),
            "last_error": self.access.last_error(),
        }

    def use_hybrid_navigation(self) -> HybridNavigation:
        return HybridNavigation(
            navigation_items=self.navigation_items(),
            is_loading=self.is_loading,
            has_menu_access=self.has_menu_access,
            has_feature_access=self.has_feature_access,
            refresh_features=self.refresh_features,
            clear_cache=self.clear_cache,
            debug_info=self.debug_info(),
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def use_feature_guard(self, feature_key: str) -> FeatureGuardStatus:
        return use_feature_guard(self.access, feature_key)

    def route_guard(self, feature_key: str, *, redirect_to: Optional[str] = None) -> RouteGuard:
        return RouteGuard(self.access, feature_key, redirect_to=redirect_to or self.config.unauthorized_path)

    def component_guard(self, feature_key: str, **kwargs) -> ComponentGuard:
        return ComponentGuard(self.access, feature_key, **kwargs)

    def control_guard(self, feature_key: str, **kwargs) -> ControlGuard:
        return ControlGuard(self.access, feature_key, **kwargs)

    def multi_feature_guard(self, feature_keys: Sequence[str], *, require_all: bool = True, **kwargs) -> MultiFeatureGuard:
        return MultiFeatureGuard(self.access, feature_keys, require_all=require_all, **kwargs)

    # ------------------------------------------------------------------
    # Admin tooling
    # ------------------------------------------------------------------

    def admin(self) -> FeatureAdminService:
        principal = self._principal
        return FeatureAdminService(
            self.client,
            self.cache,
            self.events,
            user_id=principal.user_id if principal else None,
            roles=principal.roles if principal else (),
            catalog=self.catalog,
            admin_ttl_seconds=self.config.admin_features_ttl_seconds,
            audit_ttl_seconds=self.config.audit_log_ttl_seconds,
        )

    def select_tenant(self, tenant_id: str, name: Optional[str] = None):
        principal = self._principal
        if principal is None or not principal.user_id:
            raise ValueError("an authenticated principal is required")
        return self.recent_tenants.record(principal.user_id, tenant_id, name)
