"""
Role-to-permission resolution for the signed-in principal.

The permission and role tables are fetched lazily, kept for the session,
and persisted through LocalStateStore so a process restart does not force
a mid-session re-fetch. Fetch failures leave the resolver with empty
tables: every check answers False (fail-closed).
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from .background import BackgroundTasks
from .errors import CacheError, NavGateError
from .models import Permission, PrincipalContext, Role
from .store import LocalStateStore, decode_permission_snapshot, encode_permission_snapshot

logger = logging.getLogger(__name__)

PERMISSION_SNAPSHOT_SCOPE = "permissions"
DEFAULT_PERMISSION_CATEGORY = "Other"


class PermissionResolver:
    def __init__(
        self,
        client,
        *,
        store: Optional[LocalStateStore] = None,
        background: Optional[BackgroundTasks] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._background = background or BackgroundTasks()
        self._principal: Optional[PrincipalContext] = None
        self._permissions: List[Permission] = []
        self._roles: Dict[str, Role] = {}
        self._user_roles: frozenset = frozenset()
        self._loaded = False
        self._load_failed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def bind(self, principal: PrincipalContext) -> None:
        """Attach a principal, restoring its persisted snapshot when present."""
        self._reset_tables()
        self._principal = principal
        self._user_roles = principal.roles
        if self._store is None or not principal.user_id:
            return
        raw = self._store.read(PERMISSION_SNAPSHOT_SCOPE, principal.user_id)
        if raw is None:
            return
        try:
            permissions, roles, _ = decode_permission_snapshot(raw)
        except CacheError as exc:
            logger.warning(
                "Discarding permission snapshot",
                extra={"user_id": principal.user_id, "error": str(exc)},
            )
            self._store.delete(PERMISSION_SNAPSHOT_SCOPE, principal.user_id)
            return
        self._apply(permissions, roles)

    def clear(self) -> None:
        """Drop in-memory and persisted state for the bound principal."""
        principal = self._principal
        self._background.cancel_all()
        self._reset_tables()
        self._principal = None
        self._user_roles = frozenset()
        if self._store is not None and principal is not None and principal.user_id:
            self._store.delete(PERMISSION_SNAPSHOT_SCOPE, principal.user_id)

    def _reset_tables(self) -> None:
        self._permissions = []
        self._roles = {}
        self._loaded = False
        self._load_failed = False

    def _apply(self, permissions: Iterable[Permission], roles: Iterable[Role]) -> None:
        self._permissions = list(permissions)
        self._roles = {role.id: role for role in roles}
        self._loaded = True
        self._load_failed = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def load_failed(self) -> bool:
        return self._load_failed

    async def ensure_loaded(self) -> bool:
        if self._loaded:
            return True
        return await self.load()

    async def load(self) -> bool:
        """Fetch both tables; on failure keep empty tables and return False."""
        principal = self._principal
        try:
            permissions, roles = await asyncio.gather(
                self._client.fetch_permissions(),
                self._client.fetch_roles(),
            )
        except NavGateError as exc:
            logger.error(
                "Failed to fetch permissions",
                extra={
                    "user_id": principal.user_id if principal else None,
                    "error": str(exc),
                },
            )
            if principal is self._principal:
                self._load_failed = True
            return False

        if principal is not self._principal:
            # Principal changed while the fetch was in flight.
            return False

        self._apply(permissions, roles)
        if self._store is not None and principal is not None and principal.user_id:
            self._store.write(
                PERMISSION_SNAPSHOT_SCOPE,
                principal.user_id,
                encode_permission_snapshot(permissions, roles, self._user_roles),
            )
        return True

    def _schedule_load(self) -> None:
        if self._loaded or self._load_failed or self._principal is None:
            return
        self._background.spawn("permissions", self.load)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def has_permission(self, permission_id: str) -> bool:
        """True iff one of the principal's roles grants `permission_id`."""
        self._schedule_load()
        for role_id in self._user_roles:
            role = self._roles.get(role_id)
            if role is not None and permission_id in role.permissions:
                return True
        return False

    def has_role(self, role_id: str) -> bool:
        return role_id in self._user_roles

    def permissions_for_role(self, role_id: str) -> List[Permission]:
        self._schedule_load()
        role = self._roles.get(role_id)
        if role is None:
            return []
        return [p for p in self._permissions if p.id in role.permissions]

    def permissions_by_category(self) -> Dict[str, List[Permission]]:
        self._schedule_load()
        grouped: Dict[str, List[Permission]] = {}
        for permission in self._permissions:
            grouped.setdefault(permission.category or DEFAULT_PERMISSION_CATEGORY, []).append(permission)
        return grouped
