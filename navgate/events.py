"""
Feature state event stream.

Listeners subscribe to one event type or to all of them. A listener that
raises is logged and skipped; emitting never fails the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class FeatureEventType(str, Enum):
    FEATURE_ENABLED = "feature:enabled"
    FEATURE_DISABLED = "feature:disabled"
    FEATURES_BULK_UPDATED = "features:bulk-updated"
    FEATURES_REFRESHED = "features:refreshed"
    CACHE_INVALIDATED = "cache:invalidated"
    FEATURES_UPDATE_FAILED = "features:update-failed"


@dataclass(frozen=True)
class FeatureEvent:
    type: FeatureEventType
    tenant_id: Optional[str]
    feature_key: Optional[str] = None
    feature_keys: Tuple[str, ...] = ()
    user_id: Optional[str] = None
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        payload = {
            "type": self.type.value,
            "tenant_id": self.tenant_id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
        }
        if self.feature_key is not None:
            payload["feature_key"] = self.feature_key
        if self.feature_keys:
            payload["feature_keys"] = list(self.feature_keys)
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


Listener = Callable[[FeatureEvent], None]


class FeatureEventEmitter:
    """Single notification channel shared by every consumer of a session."""

    def __init__(self) -> None:
        self._listeners: Dict[Optional[FeatureEventType], List[Listener]] = {}
        self._lock = RLock()

    def subscribe(
        self,
        listener: Listener,
        event_type: Optional[FeatureEventType] = None,
    ) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener, event_type)

        return unsubscribe

    def unsubscribe(self, listener: Listener, event_type: Optional[FeatureEventType] = None) -> None:
        with self._lock:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

    def clear(self) -> None:
        with self._lock:
            self._listeners = {}

    def emit(self, event: FeatureEvent) -> None:
        with self._lock:
            targets = list(self._listeners.get(event.type, [])) + list(self._listeners.get(None, []))

        logger.info(
            "Feature event",
            extra={
                "event_type": event.type.value,
                "tenant_id": event.tenant_id,
                "feature_key": event.feature_key,
                "user_id": event.user_id,
            },
        )
        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Feature event listener failed",
                    extra={"event_type": event.type.value, "tenant_id": event.tenant_id},
                )
