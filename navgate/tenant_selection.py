"""
Recently selected tenants for admin tooling.

The list is persisted per user through LocalStateStore: most recent first,
de-duplicated by tenant id and capped at RECENT_TENANTS_LIMIT.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .config import RECENT_TENANTS_LIMIT
from .store import LocalStateStore

logger = logging.getLogger(__name__)

RECENT_TENANTS_SCOPE = "recent-tenants"


@dataclass(frozen=True)
class RecentTenant:
    tenant_id: str
    name: str = ""

    def to_dict(self) -> dict:
        return {"tenant_id": self.tenant_id, "name": self.name}


class RecentTenantStore:
    def __init__(self, store: LocalStateStore, *, limit: int = RECENT_TENANTS_LIMIT) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self._store = store
        self._limit = limit

    def list(self, user_id: str) -> List[RecentTenant]:
        raw = self._store.read(RECENT_TENANTS_SCOPE, user_id)
        if raw is None:
            return []
        tenants: List[RecentTenant] = []
        seen: set[str] = set()
        for item in raw.get("tenants", []):
            if not isinstance(item, dict):
                continue
            tenant_id = str(item.get("tenant_id", "")).strip()
            if not tenant_id or tenant_id in seen:
                continue
            seen.add(tenant_id)
            tenants.append(RecentTenant(tenant_id=tenant_id, name=str(item.get("name") or "")))
        return tenants[: self._limit]

    def record(self, user_id: str, tenant_id: str, name: Optional[str] = None) -> List[RecentTenant]:
        """Move `tenant_id` to the front of the user's list."""
        normalized = str(tenant_id).strip()
        if not normalized:
            raise ValueError("tenant_id is required")
        existing = self.list(user_id)
        previous = next((t for t in existing if t.tenant_id == normalized), None)
        entry = RecentTenant(
            tenant_id=normalized,
            name=name if name is not None else (previous.name if previous else ""),
        )
        updated = [entry] + [t for t in existing if t.tenant_id != normalized]
        updated = updated[: self._limit]
        self._store.write(
            RECENT_TENANTS_SCOPE,
            user_id,
            {"tenants": [t.to_dict() for t in updated]},
        )
        logger.debug(
            "Recorded recent tenant",
            extra={"user_id": user_id, "tenant_id": normalized},
        )
        return updated

    def clear(self, user_id: str) -> None:
        self._store.delete(RECENT_TENANTS_SCOPE, user_id)
