"""
Admin-side tenant feature management.

Handles:
- Listing system features and a tenant's feature states (admin TTL)
- Enabling/disabling single features and bulk updates
- Bulk updates across many tenants, processed in small batches
- Audit log retrieval (audit TTL) and enablement statistics

Mutations never touch cached state until the backend confirms them. On
success the affected cache keys are invalidated and an event is emitted;
on failure the cache is left as-is and a features:update-failed event
carries a human-readable reason.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .cache import (
    FeatureCache,
    access_check_prefix,
    admin_features_key,
    admin_tenant_features_key,
    audit_log_key,
    tenant_features_key,
)
from .catalog import FeatureCatalog, default_catalog
from .config import (
    ADMIN_FEATURES_TTL_SECONDS,
    AUDIT_LOG_TTL_SECONDS,
    BULK_TENANT_BATCH_SIZE,
    MAX_BULK_OPERATIONS,
    REASON_MAX_LENGTH,
)
from .errors import (
    FeatureAlreadyDisabledError,
    FeatureAlreadyEnabledError,
    InsufficientPermissionsError,
    NavGateError,
    ValidationError,
)
from .events import FeatureEvent, FeatureEventEmitter, FeatureEventType
from .models import ROLE_CS_ADMIN, ROLE_CS_USER
from .schemas import AuditEntry, AuditQuery, BulkFeatureUpdate, FeatureResponse, TenantFeatureResponse

logger = logging.getLogger(__name__)

BulkUpdateInput = Union[BulkFeatureUpdate, Mapping[str, Any]]


@dataclass(frozen=True)
class AdminCapabilities:
    can_view_features: bool = False
    can_create_features: bool = False
    can_edit_features: bool = False
    can_delete_features: bool = False
    can_assign_features: bool = False
    can_view_tenant_features: bool = False
    can_bulk_update: bool = False
    can_view_audit_log: bool = False
    can_export_data: bool = False

    @classmethod
    def for_roles(cls, roles: Iterable[str]) -> "AdminCapabilities":
        held = set(roles)
        is_cs_admin = ROLE_CS_ADMIN in held
        is_cs_staff = is_cs_admin or ROLE_CS_USER in held
        return cls(
            can_view_features=is_cs_staff,
            can_create_features=is_cs_admin,
            can_edit_features=is_cs_admin,
            can_delete_features=is_cs_admin,
            can_assign_features=is_cs_staff,
            can_view_tenant_features=is_cs_staff,
            can_bulk_update=is_cs_staff,
            can_view_audit_log=is_cs_staff,
            can_export_data=is_cs_staff,
        )


@dataclass(frozen=True)
class FeatureStats:
    total_features: int
    total_tenants: int
    features_enabled_count: int
    active_features: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_features": self.total_features,
            "total_tenants": self.total_tenants,
            "features_enabled_count": self.features_enabled_count,
            "active_features": self.active_features,
        }


def validate_bulk_operation(updates: Optional[Sequence[BulkUpdateInput]]) -> Tuple[bool, List[str]]:
    """Collect every problem with a bulk request instead of stopping at the first."""
    errors: List[str] = []
    if not updates:
        errors.append("No feature updates provided")
        return False, errors
    if len(updates) > MAX_BULK_OPERATIONS:
        errors.append(f"Maximum {MAX_BULK_OPERATIONS} features can be updated in a single operation")

    for index, update in enumerate(updates, start=1):
        if isinstance(update, BulkFeatureUpdate):
            feature_id, reason = update.feature_id, update.reason
        else:
            feature_id = update.get("feature_id", update.get("featureId"))
            reason = update.get("reason")
        if not feature_id:
            errors.append(f"Feature ID is required for update {index}")
        if reason and len(reason) > REASON_MAX_LENGTH:
            errors.append(f"Reason for update {index} must not exceed {REASON_MAX_LENGTH} characters")
    return not errors, errors


def _to_bulk_updates(updates: Sequence[BulkUpdateInput]) -> List[BulkFeatureUpdate]:
    return [
        u if isinstance(u, BulkFeatureUpdate) else BulkFeatureUpdate.model_validate(dict(u))
        for u in updates
    ]


def compute_feature_stats(features_by_tenant: Mapping[str, Sequence[TenantFeatureResponse]]) -> FeatureStats:
    per_feature: Dict[str, int] = {}
    enabled_count = 0
    for features in features_by_tenant.values():
        for feature in features:
            per_feature.setdefault(feature.feature_id, 0)
            if feature.is_enabled:
                per_feature[feature.feature_id] += 1
                enabled_count += 1
    return FeatureStats(
        total_features=len(per_feature),
        total_tenants=len(features_by_tenant),
        features_enabled_count=enabled_count,
        active_features=sum(1 for count in per_feature.values() if count > 0),
    )


def search_tenant_features(
    features: Iterable[TenantFeatureResponse],
    *,
    feature_key: Optional[str] = None,
    is_enabled: Optional[bool] = None,
    category: Optional[str] = None,
    search_query: Optional[str] = None,
) -> List[TenantFeatureResponse]:
    results = list(features)
    if feature_key:
        results = [f for f in results if f.feature_key == feature_key]
    if is_enabled is not None:
        results = [f for f in results if f.is_enabled == is_enabled]
    if category:
        results = [f for f in results if f.category.value == category.lower()]
    if search_query:
        query = search_query.lower()
        results = [
            f for f in results
            if query in f.feature_name.lower()
            or query in f.feature_key.lower()
            or query in (f.description or "").lower()
        ]
    return results


class FeatureAdminService:
    def __init__(
        self,
        client,
        cache: FeatureCache,
        events: FeatureEventEmitter,
        *,
        user_id: Optional[str] = None,
        roles: Iterable[str] = (),
        catalog: Optional[FeatureCatalog] = None,
        admin_ttl_seconds: float = ADMIN_FEATURES_TTL_SECONDS,
        audit_ttl_seconds: float = AUDIT_LOG_TTL_SECONDS,
    ) -> None:
        self._client = client
        self.catalog = catalog or default_catalog()
        self.cache = cache
        self._events = events
        self.user_id = user_id
        self.capabilities = AdminCapabilities.for_roles(roles)
        self._admin_ttl_seconds = admin_ttl_seconds
        self._audit_ttl_seconds = audit_ttl_seconds

    def _require(self, allowed: bool, action: str) -> None:
        if not allowed:
            logger.warning(
                "Admin action denied",
                extra={"user_id": self.user_id, "action": action},
            )
            raise InsufficientPermissionsError(
                f"Insufficient permissions to {action}",
                required=(ROLE_CS_ADMIN, ROLE_CS_USER),
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_all_features(self, *, force: bool = False) -> List[FeatureResponse]:
        self._require(self.capabilities.can_view_features, "view features")
        key = admin_features_key()
        if not force:
            cached = self.cache.get_fresh(key)
            if cached is not None:
                return cached.data
        features = await self._client.fetch_all_features()
        self.cache.set(key, features, self._admin_ttl_seconds)
        return features

    async def fetch_tenant_features(self, tenant_id: str, *, force: bool = False) -> List[TenantFeatureResponse]:
        self._require(self.capabilities.can_view_tenant_features, "view tenant features")
        key = admin_tenant_features_key(tenant_id)
        if not force:
            cached = self.cache.get_fresh(key)
            if cached is not None:
                return cached.data
        features = await self._client.fetch_tenant_features(tenant_id)
        self.cache.set(key, features, self._admin_ttl_seconds)
        return features

    async def fetch_audit_log(
        self,
        tenant_id: Optional[str] = None,
        *,
        query: Optional[AuditQuery] = None,
        force: bool = False,
    ) -> List[AuditEntry]:
        self._require(self.capabilities.can_view_audit_log, "view the audit log")
        query = query or AuditQuery(tenant_id=tenant_id)
        key = audit_log_key(query.tenant_id)
        use_cache = query == AuditQuery(tenant_id=query.tenant_id)
        if use_cache and not force:
            cached = self.cache.get_fresh(key)
            if cached is not None:
                return cached.data
        entries = await self._client.fetch_audit_log(query)
        if use_cache:
            self.cache.set(key, entries, self._audit_ttl_seconds)
        return entries

    async def feature_stats(self, tenant_ids: Sequence[str]) -> FeatureStats:
        results = await asyncio.gather(*(self.fetch_tenant_features(t) for t in tenant_ids))
        return compute_feature_stats(dict(zip(tenant_ids, results)))

    async def search_tenant_features(self, tenant_id: str, **filters) -> List[TenantFeatureResponse]:
        return search_tenant_features(await self.fetch_tenant_features(tenant_id), **filters)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def enable_feature(
        self, tenant_id: str, feature_id: str, reason: Optional[str] = None
    ) -> Optional[TenantFeatureResponse]:
        return await self._toggle(tenant_id, feature_id, reason, enable=True)

    async def disable_feature(
        self, tenant_id: str, feature_id: str, reason: Optional[str] = None
    ) -> Optional[TenantFeatureResponse]:
        return await self._toggle(tenant_id, feature_id, reason, enable=False)

    async def _toggle(
        self, tenant_id: str, feature_id: str, reason: Optional[str], *, enable: bool
    ) -> Optional[TenantFeatureResponse]:
        self._require(self.capabilities.can_assign_features, "assign features")
        if reason and len(reason) > REASON_MAX_LENGTH:
            raise ValidationError(
                f"Reason must not exceed {REASON_MAX_LENGTH} characters", field="reason"
            )
        current = self._cached_tenant_feature(tenant_id, feature_id)
        if current is not None and current.is_enabled == enable:
            if enable:
                raise FeatureAlreadyEnabledError(tenant_id, current.feature_key)
            raise FeatureAlreadyDisabledError(tenant_id, current.feature_key)
        if enable and current is not None and current.feature_key in self.catalog:
            enabled = [f.feature_key for f in self._cached_tenant_features(tenant_id) if f.is_enabled]
            self.catalog.require_dependencies(current.feature_key, enabled)

        action = "enable" if enable else "disable"
        try:
            if enable:
                result = await self._client.enable_tenant_feature(tenant_id, feature_id, reason)
            else:
                result = await self._client.disable_tenant_feature(tenant_id, feature_id, reason)
        except NavGateError as exc:
            self._report_failure(tenant_id, f"Failed to {action} feature", exc, feature_key=feature_id)
            raise

        feature_key = result.feature_key if result is not None else (
            current.feature_key if current is not None else feature_id
        )
        self._invalidate_tenant(tenant_id)
        self._events.emit(
            FeatureEvent(
                type=FeatureEventType.FEATURE_ENABLED if enable else FeatureEventType.FEATURE_DISABLED,
                tenant_id=tenant_id,
                feature_key=feature_key,
                user_id=self.user_id,
                reason=reason,
            )
        )
        return result

    async def bulk_update(
        self, tenant_id: str, updates: Sequence[BulkUpdateInput]
    ) -> List[TenantFeatureResponse]:
        self._require(self.capabilities.can_bulk_update, "bulk update features")
        valid, errors = validate_bulk_operation(updates)
        if not valid:
            raise ValidationError("; ".join(errors), field="updates")
        models = _to_bulk_updates(updates)

        try:
            results = await self._client.bulk_update_tenant_features(tenant_id, models)
        except NavGateError as exc:
            self._report_failure(tenant_id, "Failed to update features", exc)
            raise

        self._invalidate_tenant(tenant_id)
        changed = tuple(r.feature_key for r in results) or tuple(u.feature_id for u in models)
        reasons = {u.reason for u in models if u.reason}
        self._events.emit(
            FeatureEvent(
                type=FeatureEventType.FEATURES_BULK_UPDATED,
                tenant_id=tenant_id,
                feature_keys=changed,
                user_id=self.user_id,
                reason=reasons.pop() if len(reasons) == 1 else None,
            )
        )
        return results

    async def bulk_update_multiple_tenants(
        self,
        tenant_ids: Sequence[str],
        updates: Sequence[BulkUpdateInput],
        *,
        batch_size: int = BULK_TENANT_BATCH_SIZE,
    ) -> Dict[str, list]:
        """Apply the same updates to many tenants, `batch_size` at a time."""
        valid, errors = validate_bulk_operation(updates)
        if not valid:
            raise ValidationError("; ".join(errors), field="updates")

        succeeded: List[str] = []
        failed: List[Dict[str, str]] = []
        for start in range(0, len(tenant_ids), batch_size):
            batch = tenant_ids[start:start + batch_size]
            outcomes = await asyncio.gather(
                *(self.bulk_update(tenant_id, updates) for tenant_id in batch),
                return_exceptions=True,
            )
            for tenant_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, NavGateError):
                    failed.append({"tenant_id": tenant_id, "error": outcome.message})
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    succeeded.append(tenant_id)
        return {"success": succeeded, "failed": failed}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cached_tenant_features(self, tenant_id: str) -> List[TenantFeatureResponse]:
        cached = self.cache.get_fresh(admin_tenant_features_key(tenant_id))
        return list(cached.data) if cached is not None else []

    def _cached_tenant_feature(self, tenant_id: str, feature_id: str) -> Optional[TenantFeatureResponse]:
        for feature in self._cached_tenant_features(tenant_id):
            if feature.feature_id == feature_id:
                return feature
        return None

    def _invalidate_tenant(self, tenant_id: str) -> None:
        self.cache.invalidate(admin_tenant_features_key(tenant_id))
        self.cache.invalidate(audit_log_key(tenant_id))
        self.cache.invalidate(audit_log_key())
        self.cache.invalidate_prefix(access_check_prefix(tenant_id))
        # Readers keep the previous set until the next fetch lands.
        self.cache.expire(tenant_features_key(tenant_id))

    def _report_failure(
        self,
        tenant_id: str,
        reason: str,
        exc: NavGateError,
        *,
        feature_key: Optional[str] = None,
    ) -> None:
        logger.error(
            reason,
            extra={
                "tenant_id": tenant_id,
                "feature_key": feature_key,
                "user_id": self.user_id,
                "error_code": exc.error_code,
                "error": exc.message,
            },
        )
        self._events.emit(
            FeatureEvent(
                type=FeatureEventType.FEATURES_UPDATE_FAILED,
                tenant_id=tenant_id,
                feature_key=feature_key,
                user_id=self.user_id,
                reason=reason,
            )
        )
