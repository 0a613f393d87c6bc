from __future__ import annotations

import json
import logging
import os
from typing import Dict, Iterable, List, Optional, Tuple

import redis

from .errors import CacheError
from .models import Permission, Role

logger = logging.getLogger(__name__)

STATE_SCHEMA_VERSION = 1


class LocalStateStore:
    """
    Persisted per-user state (permission snapshot, recent tenants).

    Redis-backed when REDIS_URL is reachable, otherwise an in-memory dict.
    Keys are always scoped by user id so sign-out can drop them all.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None) -> None:
        self._redis = client
        self._mem: Dict[str, str] = {}
        redis_url = redis_url or os.getenv("REDIS_URL")

        if self._redis is None and redis_url:
            try:
                self._redis = redis.from_url(redis_url, decode_responses=True)
                self._redis.ping()
            except (redis.RedisError, ValueError) as exc:
                logger.warning(
                    "Redis unavailable, using in-memory state store",
                    extra={"error": str(exc)},
                )
                self._redis = None

    @property
    def is_persistent(self) -> bool:
        return self._redis is not None

    @staticmethod
    def _require_user_id(user_id: str) -> str:
        normalized = str(user_id).strip()
        if not normalized:
            raise ValueError("user_id is required")
        return normalized

    @staticmethod
    def _key(scope: str, user_id: str) -> str:
        return f"navgate:v{STATE_SCHEMA_VERSION}:{scope}:{user_id}"

    def read(self, scope: str, user_id: str) -> Optional[dict]:
        key = self._key(scope, self._require_user_id(user_id))
        raw: Optional[str]
        if self._redis is not None:
            try:
                raw = self._redis.get(key)
            except redis.RedisError as exc:
                logger.warning("State store read failed", extra={"key": key, "error": str(exc)})
                return None
        else:
            raw = self._mem.get(key)
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable state entry", extra={"key": key})
            self._delete_key(key)
            return None
        return payload if isinstance(payload, dict) else None

    def write(self, scope: str, user_id: str, payload: dict) -> None:
        key = self._key(scope, self._require_user_id(user_id))
        encoded = json.dumps(payload)
        if self._redis is not None:
            try:
                self._redis.set(key, encoded)
                return
            except redis.RedisError as exc:
                logger.warning("State store write failed", extra={"key": key, "error": str(exc)})
                return
        self._mem[key] = encoded

    def delete(self, scope: str, user_id: str) -> None:
        self._delete_key(self._key(scope, self._require_user_id(user_id)))

    def clear_user(self, user_id: str, scopes: Iterable[str]) -> None:
        for scope in scopes:
            self.delete(scope, user_id)

    def _delete_key(self, key: str) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(key)
            except redis.RedisError as exc:
                logger.warning("State store delete failed", extra={"key": key, "error": str(exc)})
        self._mem.pop(key, None)


def encode_permission_snapshot(
    permissions: Iterable[Permission],
    roles: Iterable[Role],
    user_roles: Iterable[str],
) -> dict:
    return {
        "schema_version": STATE_SCHEMA_VERSION,
        "permissions": [
            {
                "id": p.id,
                "name": p.name,
                "category": p.category,
                "description": p.description,
            }
            for p in permissions
        ],
        "roles": [
            {"id": r.id, "name": r.name, "permissions": sorted(r.permissions)}
            for r in roles
        ],
        "user_roles": sorted(set(user_roles)),
    }


def decode_permission_snapshot(raw: dict) -> Tuple[List[Permission], List[Role], List[str]]:
    try:
        version = int(raw.get("schema_version", STATE_SCHEMA_VERSION))
        if version != STATE_SCHEMA_VERSION:
            raise CacheError("Unsupported permission snapshot schema version")
        permissions = [
            Permission(
                id=item["id"],
                name=item["name"],
                category=item.get("category"),
                description=item.get("description", ""),
            )
            for item in raw["permissions"]
        ]
        roles = [
            Role(id=item["id"], name=item["name"], permissions=frozenset(item.get("permissions", [])))
            for item in raw["roles"]
        ]
        user_roles = [str(role_id) for role_id in raw.get("user_roles", [])]
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise CacheError(f"Malformed permission snapshot: {exc}") from exc
    return permissions, roles, user_roles
