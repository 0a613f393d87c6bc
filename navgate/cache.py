from __future__ import annotations

import logging
import time
from dataclasses import replace
from threading import RLock
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .config import MAX_CACHE_SIZE
from .models import CacheEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


def tenant_features_key(tenant_id: str) -> str:
    return f"tenant-features:{tenant_id}"


def access_check_key(tenant_id: str, feature_key: str) -> str:
    return f"access-check:{tenant_id}:{feature_key}"


def admin_features_key() -> str:
    return "admin:features"


def admin_tenant_features_key(tenant_id: str) -> str:
    return f"admin:tenant-features:{tenant_id}"


def audit_log_key(tenant_id: Optional[str] = None) -> str:
    return f"audit-log:{tenant_id or 'all'}"


def access_check_prefix(tenant_id: str) -> str:
    return f"access-check:{tenant_id}:"


def tenant_scope_keys(tenant_id: str) -> List[str]:
    """Exact keys holding data for one tenant (access checks are cleared by prefix)."""
    return [
        tenant_features_key(tenant_id),
        admin_tenant_features_key(tenant_id),
        audit_log_key(tenant_id),
    ]


def global_admin_keys() -> List[str]:
    """Entries fetched by an admin that are not scoped to one tenant."""
    return [admin_features_key(), audit_log_key()]


class FeatureCache(Generic[T]):
    """
    In-process TTL cache for fetched feature payloads.

    Stale entries stay readable until overwritten so callers can keep
    rendering while a refresh is in flight. Once the entry count exceeds
    `max_size`, entries with the oldest `fetched_at` are evicted first.
    Reads and writes never raise; a failure is a miss.
    """

    def __init__(self, *, max_size: int = MAX_CACHE_SIZE, clock: Optional[Clock] = None) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._clock: Clock = clock or time.time
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = RLock()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[CacheEntry[T]]:
        with self._lock:
            return self._entries.get(key)

    def get_fresh(self, key: str) -> Optional[CacheEntry[T]]:
        entry = self.get(key)
        if entry is None or entry.is_stale(self.now()):
            return None
        return entry

    def is_stale(self, key: str) -> bool:
        entry = self.get(key)
        return entry is None or entry.is_stale(self.now())

    def set(self, key: str, data: T, ttl_seconds: float) -> Optional[CacheEntry[T]]:
        try:
            fetched_at = self.now()
            entry: CacheEntry[T] = CacheEntry(
                data=data,
                fetched_at=fetched_at,
                expiry=fetched_at + ttl_seconds,
            )
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Rejected cache write",
                extra={"cache_key": key, "ttl_seconds": ttl_seconds, "error": str(exc)},
            )
            return None

        # The entry is fully built before it becomes visible.
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            self._evict_overflow()
        return entry

    def expire(self, key: str) -> bool:
        """Flag one entry stale without removing it."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            self._entries[key] = replace(entry, invalidated=True)
        return True

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def invalidate_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries = {}
        return count

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        now = self.now()
        with self._lock:
            entries = list(self._entries.values())
        return {
            "size": len(entries),
            "max_size": self._max_size,
            "stale": sum(1 for entry in entries if entry.is_stale(now)),
        }

    def _evict_overflow(self) -> None:
        overflow = len(self._entries) - self._max_size
        if overflow <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1].fetched_at)[:overflow]
        for key, _ in oldest:
            del self._entries[key]
        logger.debug("Evicted cache entries", extra={"evicted": [key for key, _ in oldest]})
