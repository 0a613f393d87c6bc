"""
Feature access resolution.

Combines the static catalog, the tenant's cached enabled-feature set and
the principal's roles into one decision per feature key or menu key.

Evaluation order for a feature key:
1. Free features are granted unconditionally (even before any fetch).
2. Without a cached enabled set the answer is "denied" and a background
   fetch is scheduled. Stale sets are still used while they refresh.
3. A feature whose required roles miss the principal's roles is denied.
4. Otherwise the feature must be in the enabled set with every
   dependency satisfied.

Background reads share one pending fetch per tenant. Explicit refresh()
calls are not coalesced: whichever fetch resolves last overwrites the
cached set, even if it was issued first.
"""

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional

from .background import BackgroundTasks
from .cache import FeatureCache, access_check_key, access_check_prefix, tenant_features_key
from .catalog import FeatureCatalog
from .config import ACCESS_CHECK_TTL_SECONDS, USER_FEATURES_TTL_SECONDS
from .errors import NavGateError, NetworkError
from .events import FeatureEvent, FeatureEventEmitter, FeatureEventType
from .models import AccessDecision, FeatureCategory, PrincipalContext

logger = logging.getLogger(__name__)

REASON_FREE = "Free feature"
REASON_ENABLED = "Feature enabled"
REASON_NOT_ENABLED = "Feature not enabled for tenant"
REASON_INSUFFICIENT_ROLE = "Insufficient role permissions"
REASON_LOADING = "Feature access is still loading"
REASON_UNKNOWN = "Unknown feature"
REASON_UNAUTHENTICATED = "Not authenticated"
REASON_CHECK_FAILED = "Error checking feature access"


def dependency_reason(missing: Iterable[str]) -> str:
    return f"Requires {', '.join(missing)} to be enabled first"


def _tenant_of(principal: Optional[PrincipalContext]) -> Optional[str]:
    if principal is None or not principal.authenticated:
        return None
    return principal.tenant_id or None


class FeatureAccessResolver:
    def __init__(
        self,
        catalog: FeatureCatalog,
        cache: FeatureCache,
        client,
        *,
        events: Optional[FeatureEventEmitter] = None,
        background: Optional[BackgroundTasks] = None,
        ttl_seconds: float = USER_FEATURES_TTL_SECONDS,
        access_check_ttl_seconds: float = ACCESS_CHECK_TTL_SECONDS,
    ) -> None:
        self.catalog = catalog
        self.cache = cache
        self._client = client
        self._events = events or FeatureEventEmitter()
        self._background = background or BackgroundTasks()
        self._ttl_seconds = ttl_seconds
        self._access_check_ttl_seconds = access_check_ttl_seconds
        self._principal: Optional[PrincipalContext] = None
        self._failed_tenants: Dict[str, str] = {}
        self._epoch = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def principal(self) -> Optional[PrincipalContext]:
        return self._principal

    def bind(self, principal: PrincipalContext) -> None:
        self._epoch += 1
        self._principal = principal
        self._failed_tenants = {}

    def unbind(self) -> None:
        """Forget the principal; results of in-flight fetches are discarded."""
        self._epoch += 1
        self._principal = None
        self._failed_tenants = {}

    def _tenant_id(self) -> Optional[str]:
        return _tenant_of(self._principal)

    # ------------------------------------------------------------------
    # Enabled set
    # ------------------------------------------------------------------

    def enabled_keys(self) -> Optional[FrozenSet[str]]:
        """Raw enabled keys from the cache (possibly stale), or None if never fetched."""
        tenant_id = self._tenant_id()
        if tenant_id is None:
            return None
        entry = self.cache.get(tenant_features_key(tenant_id))
        if entry is None:
            return None
        return entry.data

    def effective_features(self) -> FrozenSet[str]:
        """Free features plus every paid feature currently enabled with its dependencies."""
        enabled = self.enabled_keys()
        return self.catalog.effective_enabled(enabled or ())

    @property
    def is_loading(self) -> bool:
        tenant_id = self._tenant_id()
        if tenant_id is None:
            return False
        if self.cache.get(tenant_features_key(tenant_id)) is not None:
            return False
        return tenant_id not in self._failed_tenants

    def last_error(self) -> Optional[str]:
        tenant_id = self._tenant_id()
        return self._failed_tenants.get(tenant_id) if tenant_id else None

    async def refresh(self, tenant_id: Optional[str] = None) -> FrozenSet[str]:
        """
        Fetch the tenant's enabled set and replace the cached entry.

        Raises NetworkError on failure; the previous entry stays in place.
        """
        tenant_id = tenant_id or self._tenant_id()
        if not tenant_id:
            raise ValueError("tenant_id is required")
        epoch = self._epoch

        try:
            keys = await self._client.fetch_tenant_enabled_features(tenant_id)
        except NavGateError as exc:
            logger.warning(
                "Failed to fetch tenant features",
                extra={"tenant_id": tenant_id, "error": str(exc)},
            )
            if epoch == self._epoch:
                self._failed_tenants[tenant_id] = str(exc)
            raise

        if epoch != self._epoch:
            logger.info(
                "Discarding tenant features fetched for a previous principal",
                extra={"tenant_id": tenant_id},
            )
            return frozenset(keys)

        enabled = frozenset(keys)
        self.cache.set(tenant_features_key(tenant_id), enabled, self._ttl_seconds)
        self.cache.invalidate_prefix(access_check_prefix(tenant_id))
        self._failed_tenants.pop(tenant_id, None)

        principal = self._principal
        self._events.emit(
            FeatureEvent(
                type=FeatureEventType.FEATURES_REFRESHED,
                tenant_id=tenant_id,
                feature_keys=tuple(sorted(enabled)),
                user_id=principal.user_id if principal else None,
            )
        )
        return enabled

    async def ensure_loaded(self) -> Optional[FrozenSet[str]]:
        """Fetch when nothing fresh is cached; returns None if the fetch failed."""
        tenant_id = self._tenant_id()
        if tenant_id is None:
            return None
        entry = self.cache.get(tenant_features_key(tenant_id))
        if entry is not None and not entry.is_stale(self.cache.now()):
            return entry.data
        try:
            return await self.refresh(tenant_id)
        except NetworkError:
            return self.enabled_keys()

    def schedule_refresh(self, tenant_id: Optional[str] = None):
        """Start a background fetch unless one is already pending for the tenant."""
        tenant_id = tenant_id or self._tenant_id()
        if not tenant_id:
            return None
        return self._background.spawn(f"tenant-features:{tenant_id}", lambda: self.refresh(tenant_id))

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def evaluate(
        self,
        feature_key: str,
        *,
        fetch: bool = True,
        principal: Optional[PrincipalContext] = None,
    ) -> AccessDecision:
        """
        Decide access for `principal`, defaulting to the bound principal.

        Tenant and roles come from the principal being evaluated. Fetches are
        only scheduled on behalf of the bound principal.
        """
        subject = principal if principal is not None else self._principal
        definition = self.catalog.get(feature_key)
        if definition is None:
            return AccessDecision(feature_key=feature_key, has_access=False, reason=REASON_UNKNOWN)
        if definition.is_free:
            return AccessDecision(
                feature_key=feature_key,
                has_access=True,
                reason=REASON_FREE,
                is_free_feature=True,
            )

        tenant_id = _tenant_of(subject)
        if tenant_id is None:
            return AccessDecision(feature_key=feature_key, has_access=False, reason=REASON_UNAUTHENTICATED)

        fetch = fetch and subject is self._principal
        entry = self.cache.get(tenant_features_key(tenant_id))
        if entry is None:
            if tenant_id in self._failed_tenants:
                return self._denied(feature_key, REASON_NOT_ENABLED)
            if fetch:
                self.schedule_refresh(tenant_id)
            return AccessDecision(
                feature_key=feature_key,
                has_access=False,
                reason=REASON_LOADING,
                is_loading=True,
            )
        if fetch and entry.is_stale(self.cache.now()):
            self.schedule_refresh(tenant_id)

        return self._evaluate_against(feature_key, entry.data, subject.roles)

    def _evaluate_against(
        self, feature_key: str, enabled: FrozenSet[str], roles: FrozenSet[str]
    ) -> AccessDecision:
        definition = self.catalog.definition(feature_key)
        if definition.required_roles and roles.isdisjoint(definition.required_roles):
            return AccessDecision(feature_key=feature_key, has_access=False, reason=REASON_INSUFFICIENT_ROLE)
        if feature_key not in enabled:
            return self._denied(feature_key, REASON_NOT_ENABLED)
        missing = self.catalog.missing_dependencies(feature_key, enabled)
        if missing:
            return self._denied(feature_key, dependency_reason(missing))
        return AccessDecision(feature_key=feature_key, has_access=True, reason=REASON_ENABLED)

    def _denied(self, feature_key: str, reason: str) -> AccessDecision:
        definition = self.catalog.get(feature_key)
        paid = definition is not None and definition.category is FeatureCategory.PAID
        return AccessDecision(
            feature_key=feature_key,
            has_access=False,
            reason=reason,
            show_upgrade=paid,
        )

    def has_feature_access(
        self,
        feature_key: str,
        *,
        fetch: bool = True,
        principal: Optional[PrincipalContext] = None,
    ) -> bool:
        return self.evaluate(feature_key, fetch=fetch, principal=principal).has_access

    async def check_feature_access(self, feature_key: str, *, use_cache: bool = True) -> AccessDecision:
        """
        Async check that may re-fetch the tenant's enabled set.

        Decisions are memoized per tenant and key; `use_cache=False` forces a
        fresh fetch and a fresh decision.
        """
        if self.catalog.is_free(feature_key):
            return self.evaluate(feature_key)
        tenant_id = self._tenant_id()
        if tenant_id is None or feature_key not in self.catalog:
            return self.evaluate(feature_key)

        memo_key = access_check_key(tenant_id, feature_key)
        if use_cache:
            memo = self.cache.get_fresh(memo_key)
            if memo is not None:
                return memo.data

        entry = self.cache.get(tenant_features_key(tenant_id))
        enabled: Optional[FrozenSet[str]] = entry.data if entry is not None else None
        if entry is None or entry.is_stale(self.cache.now()) or not use_cache:
            try:
                enabled = await self.refresh(tenant_id)
            except NetworkError:
                if enabled is None:
                    return AccessDecision(feature_key=feature_key, has_access=False, reason=REASON_CHECK_FAILED)

        decision = self._evaluate_against(feature_key, enabled, self._principal.roles)
        self.cache.set(memo_key, decision, self._access_check_ttl_seconds)
        return decision

    def has_menu_access(
        self,
        menu_key: str,
        *,
        fetch: bool = True,
        principal: Optional[PrincipalContext] = None,
    ) -> bool:
        """
        OR over the features mapped to `menu_key`.

        Menu keys with no mapped feature are allowed; role gating for them
        happens in the navigation filter.
        """
        feature_keys = self.catalog.features_for_menu(menu_key)
        if not feature_keys:
            return True
        return any(
            self.has_feature_access(key, fetch=fetch, principal=principal) for key in feature_keys
        )

    def validate_user_access(self, feature_key: str, roles: Iterable[str]) -> bool:
        """Role-only check against the feature's required roles."""
        definition = self.catalog.get(feature_key)
        if definition is None:
            return False
        if not definition.required_roles:
            return True
        return not definition.required_roles.isdisjoint(roles)

    def decisions(self, feature_keys: Optional[Iterable[str]] = None) -> List[AccessDecision]:
        keys = list(feature_keys) if feature_keys is not None else list(self.catalog.keys())
        return [self.evaluate(key) for key in keys]
