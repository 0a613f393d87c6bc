"""
Pydantic wire models for the feature backend.

The backend speaks camelCase JSON; models accept either the camelCase
alias or the snake_case field name.
"""

from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .config import MAX_BULK_OPERATIONS, REASON_MAX_LENGTH, is_valid_feature_key
from .models import FeatureCategory, FeatureDefinition, Permission, Role

DataT = TypeVar("DataT")


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ApiEnvelope(WireModel, Generic[DataT]):
    """Standard `{success, data, message, errors}` response wrapper."""
    success: bool = True
    data: Optional[DataT] = None
    message: Optional[str] = None
    errors: Optional[List[str]] = None


class UserSummary(WireModel):
    user_id: str
    user_name: str
    email: Optional[str] = None


class FeatureResponse(WireModel):
    """A feature as defined system-wide (admin view)."""
    feature_id: str
    feature_key: str
    feature_name: str
    description: Optional[str] = None
    category: FeatureCategory
    menu_path: Optional[str] = None
    is_active: bool = True
    required_roles: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v):
        return str(v).strip().lower() if v is not None else v

    def to_definition(self) -> FeatureDefinition:
        return FeatureDefinition(
            key=self.feature_key,
            name=self.feature_name,
            description=self.description or "",
            category=self.category,
            menu_path=self.menu_path or "",
            required_roles=frozenset(self.required_roles),
            dependencies=frozenset(self.dependencies),
        )


class TenantFeatureResponse(WireModel):
    """A feature together with its enablement state for one tenant."""
    feature_id: str
    feature_key: str
    feature_name: str
    description: Optional[str] = None
    category: FeatureCategory
    menu_path: Optional[str] = None
    is_enabled: bool = False
    enabled_at: Optional[datetime] = None
    enabled_by: Optional[UserSummary] = None
    disabled_at: Optional[datetime] = None
    disabled_by: Optional[UserSummary] = None

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v):
        return str(v).strip().lower() if v is not None else v


class PermissionSchema(WireModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None

    def to_permission(self) -> Permission:
        return Permission(
            id=self.id,
            name=self.name,
            category=self.category or None,
            description=self.description or "",
        )


class RoleSchema(WireModel):
    id: str
    name: str
    description: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)

    @field_validator("permissions", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []

    def to_role(self) -> Role:
        return Role(id=self.id, name=self.name, permissions=frozenset(self.permissions))


class AuditEntry(WireModel):
    audit_id: str
    entity_type: str
    entity_id: str
    action: str
    user_id: str
    user_name: Optional[str] = None
    tenant_id: Optional[str] = None
    timestamp: datetime
    changes: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None


class BulkFeatureUpdate(WireModel):
    """One entry of a bulk enable/disable request."""
    feature_id: str = Field(..., min_length=1)
    is_enabled: bool
    reason: Optional[str] = Field(default=None, max_length=REASON_MAX_LENGTH)


class BulkFeatureUpdateRequest(WireModel):
    updates: List[BulkFeatureUpdate] = Field(..., min_length=1, max_length=MAX_BULK_OPERATIONS)


class FeatureToggleRequest(WireModel):
    reason: Optional[str] = Field(default=None, max_length=REASON_MAX_LENGTH)


class FeatureAccessResponse(WireModel):
    feature_key: str
    has_access: bool
    reason: Optional[str] = None
    is_free_feature: bool = False
    show_upgrade: bool = False


class AuditQuery(WireModel):
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=200)

    @model_validator(mode="after")
    def validate_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be before or equal to end_date")
        return self

    def to_params(self) -> Dict[str, Any]:
        params = self.model_dump(by_alias=True, exclude_none=True)
        for name in ("startDate", "endDate"):
            if name in params:
                params[name] = params[name].isoformat()
        return params


class FeatureKeyList(BaseModel):
    """Enabled feature keys; blank and malformed keys are dropped."""
    keys: List[str]

    @field_validator("keys", mode="before")
    @classmethod
    def clean_keys(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("feature keys must be a list")
        cleaned: List[str] = []
        for item in v:
            key = str(item).strip()
            if is_valid_feature_key(key) and key not in cleaned:
                cleaned.append(key)
        return cleaned
