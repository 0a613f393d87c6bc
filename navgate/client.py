"""
HTTP client for the feature/permission backend.

Handles:
- Tenant enabled-feature lookups (user-facing)
- Permission and role tables
- Admin feature management (list, enable/disable, bulk update, audit log)

Every failure surfaces as NetworkError (or TenantNotFoundError for a 404 on
a tenant-scoped admin endpoint). Response bodies are never echoed into the
error message shown to users.
"""

import logging
from typing import Any, List, Optional, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from . import config as cfg
from .config import NavGateConfig
from .errors import FeatureNotFoundError, NetworkError, TenantNotFoundError
from .models import FeatureDefinition, Permission, Role
from .schemas import (
    ApiEnvelope,
    AuditEntry,
    AuditQuery,
    BulkFeatureUpdate,
    BulkFeatureUpdateRequest,
    FeatureKeyList,
    FeatureResponse,
    FeatureToggleRequest,
    PermissionSchema,
    RoleSchema,
    TenantFeatureResponse,
)

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"


class FeatureApiClient:
    """
    Async client for the feature backend.

    One instance is shared by the session; call `aclose()` on dispose.
    """

    def __init__(
        self,
        config: NavGateConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        access_token: Optional[str] = None,
    ):
        self.config = config
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            base_url=config.api_base_url,
            timeout=config.api_timeout_seconds,
        )
        self._access_token = access_token

    def set_access_token(self, access_token: Optional[str]) -> None:
        self._access_token = access_token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self, tenant_id: Optional[str]) -> dict:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        if tenant_id:
            headers[TENANT_HEADER] = tenant_id
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        tenant_id: Optional[str] = None,
        params: Optional[dict] = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await self._http_client.request(
                method,
                path,
                headers=self._headers(tenant_id),
                params=params,
                json=json,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Feature backend request failed",
                extra={
                    "method": method,
                    "endpoint": path,
                    "status_code": e.response.status_code,
                    "tenant_id": tenant_id,
                },
            )
            raise NetworkError(
                f"{method} {path} failed with status {e.response.status_code}",
                status_code=e.response.status_code,
                endpoint=path,
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "Feature backend unreachable",
                extra={"method": method, "endpoint": path, "error": str(e), "tenant_id": tenant_id},
            )
            raise NetworkError(f"{method} {path} failed: {e}", endpoint=path) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"{method} {path} returned invalid JSON", endpoint=path) from e

    @staticmethod
    def _unwrap(payload: Any, path: str) -> Any:
        """Accept both enveloped `{success, data}` bodies and bare payloads."""
        if isinstance(payload, dict) and "success" in payload:
            try:
                envelope = ApiEnvelope[Any].model_validate(payload)
            except PydanticValidationError as e:
                raise NetworkError(f"{path} returned a malformed envelope", endpoint=path) from e
            if not envelope.success:
                raise NetworkError(envelope.message or f"{path} reported failure", endpoint=path)
            return envelope.data
        return payload

    async def _get_data(self, path: str, **kwargs) -> Any:
        return self._unwrap(await self._request("GET", path, **kwargs), path)

    @staticmethod
    def _parse_one(model, item: Any, path: str):
        try:
            return model.model_validate(item)
        except PydanticValidationError as e:
            raise NetworkError(f"{path} returned a malformed item", endpoint=path) from e

    @staticmethod
    def _parse_list(model, items: Any, path: str) -> list:
        if items is None:
            return []
        if not isinstance(items, list):
            raise NetworkError(f"{path} returned a non-list payload", endpoint=path)
        try:
            return [model.model_validate(item) for item in items]
        except PydanticValidationError as e:
            raise NetworkError(f"{path} returned malformed items: {e.error_count()} errors", endpoint=path) from e

    # ------------------------------------------------------------------
    # User-facing lookups
    # ------------------------------------------------------------------

    async def fetch_tenant_enabled_features(self, tenant_id: str) -> List[str]:
        """Enabled feature keys for a tenant."""
        path = cfg.TENANT_ENABLED_FEATURES_ENDPOINT
        data = await self._get_data(path, tenant_id=tenant_id)
        if data is not None and not isinstance(data, list):
            raise NetworkError(f"{path} returned a non-list payload", endpoint=path)
        return FeatureKeyList(keys=data).keys

    async def check_feature_enabled(self, tenant_id: str, feature_key: str) -> bool:
        path = cfg.FEATURE_ENABLED_CHECK_ENDPOINT.format(feature_key=feature_key)
        return bool(await self._get_data(path, tenant_id=tenant_id))

    async def fetch_permissions(self) -> List[Permission]:
        path = cfg.PERMISSIONS_ENDPOINT
        items = self._parse_list(PermissionSchema, await self._get_data(path), path)
        return [item.to_permission() for item in items]

    async def fetch_roles(self) -> List[Role]:
        path = cfg.ROLES_ENDPOINT
        items = self._parse_list(RoleSchema, await self._get_data(path), path)
        return [item.to_role() for item in items]

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def fetch_all_features(self) -> List[FeatureResponse]:
        path = cfg.FEATURES_ENDPOINT
        return self._parse_list(FeatureResponse, await self._get_data(path), path)

    async def fetch_all_feature_definitions(self) -> List[FeatureDefinition]:
        return [feature.to_definition() for feature in await self.fetch_all_features()]

    async def fetch_feature(self, feature_id: str) -> FeatureResponse:
        path = cfg.FEATURE_BY_ID_ENDPOINT.format(feature_id=feature_id)
        try:
            data = await self._get_data(path)
        except NetworkError as e:
            if e.status_code == 404:
                raise FeatureNotFoundError(feature_id) from e
            raise
        return self._parse_one(FeatureResponse, data, path)

    async def fetch_tenant_features(self, tenant_id: str) -> List[TenantFeatureResponse]:
        path = cfg.ADMIN_TENANT_FEATURES_ENDPOINT.format(tenant_id=tenant_id)
        try:
            data = await self._get_data(path)
        except NetworkError as e:
            if e.status_code == 404:
                raise TenantNotFoundError(tenant_id) from e
            raise
        return self._parse_list(TenantFeatureResponse, data, path)

    async def enable_tenant_feature(
        self, tenant_id: str, feature_id: str, reason: Optional[str] = None
    ) -> Optional[TenantFeatureResponse]:
        path = cfg.ADMIN_ENABLE_FEATURE_ENDPOINT.format(tenant_id=tenant_id, feature_id=feature_id)
        return await self._toggle(path, tenant_id, reason)

    async def disable_tenant_feature(
        self, tenant_id: str, feature_id: str, reason: Optional[str] = None
    ) -> Optional[TenantFeatureResponse]:
        path = cfg.ADMIN_DISABLE_FEATURE_ENDPOINT.format(tenant_id=tenant_id, feature_id=feature_id)
        return await self._toggle(path, tenant_id, reason)

    async def _toggle(
        self, path: str, tenant_id: str, reason: Optional[str]
    ) -> Optional[TenantFeatureResponse]:
        body = FeatureToggleRequest(reason=reason).model_dump(by_alias=True, exclude_none=True)
        try:
            payload = await self._request("POST", path, json=body)
        except NetworkError as e:
            if e.status_code == 404:
                raise TenantNotFoundError(tenant_id) from e
            raise
        data = self._unwrap(payload, path)
        return self._parse_one(TenantFeatureResponse, data, path) if isinstance(data, dict) else None

    async def bulk_update_tenant_features(
        self, tenant_id: str, updates: Sequence[BulkFeatureUpdate]
    ) -> List[TenantFeatureResponse]:
        path = cfg.ADMIN_BULK_UPDATE_ENDPOINT.format(tenant_id=tenant_id)
        request = BulkFeatureUpdateRequest(updates=list(updates))
        body = [u.model_dump(by_alias=True, exclude_none=True) for u in request.updates]
        data = self._unwrap(await self._request("PUT", path, json=body), path)
        return self._parse_list(TenantFeatureResponse, data, path)

    async def fetch_audit_log(self, query: Optional[AuditQuery] = None) -> List[AuditEntry]:
        path = cfg.AUDIT_ENDPOINT
        params = (query or AuditQuery()).to_params()
        params.setdefault("entityType", "TenantFeature")
        return self._parse_list(AuditEntry, await self._get_data(path, params=params), path)
