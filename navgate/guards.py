"""
Guard primitives for routes, page regions, buttons and links.

Each guard answers with an explicit result instead of rendering:
- Loading: the access check has not settled yet.
- Granted: carries the content built by the caller's factory.
- Denied: carries an AccessDenial (and the caller's fallback, if any).
Route guards answer Redirect instead of Denied.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar, Union

from .access import FeatureAccessResolver
from .config import DEFAULT_UNAUTHORIZED_PATH
from .models import AccessDecision, FeatureCategory

logger = logging.getLogger(__name__)

T = TypeVar("T")

FALLBACK_TITLE = "Feature Not Available"
LOADING_MESSAGE = "Checking feature access..."
UPGRADE_LABEL = "Upgrade to Access This Feature"
REASON_GUARD_ERROR = "An error occurred while checking feature access"
ACCESS_DENIED_STATE_TYPE = "feature_access_denied"


class GuardState(str, Enum):
    LOADING = "loading"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class FeatureGuardStatus:
    """Snapshot returned by use_feature_guard()."""

    feature_key: str
    can_access: bool
    is_loading: bool
    reason: str
    is_free_feature: bool
    show_upgrade: bool = False

    @property
    def state(self) -> GuardState:
        if self.is_loading:
            return GuardState.LOADING
        return GuardState.GRANTED if self.can_access else GuardState.DENIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_access": self.can_access,
            "is_loading": self.is_loading,
            "reason": self.reason,
            "is_free_feature": self.is_free_feature,
        }


def status_from_decision(decision: AccessDecision) -> FeatureGuardStatus:
    return FeatureGuardStatus(
        feature_key=decision.feature_key,
        can_access=decision.has_access,
        is_loading=decision.is_loading,
        reason=decision.reason,
        is_free_feature=decision.is_free_feature,
        show_upgrade=decision.show_upgrade,
    )


def use_feature_guard(resolver: FeatureAccessResolver, feature_key: str) -> FeatureGuardStatus:
    return status_from_decision(resolver.evaluate(feature_key))


@dataclass(frozen=True)
class AccessDenial:
    feature_key: str
    reason: str
    message: str = ""
    show_upgrade: bool = False
    title: str = FALLBACK_TITLE

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "feature_key": self.feature_key,
            "title": self.title,
            "message": self.message,
            "reason": self.reason,
            "show_upgrade": self.show_upgrade,
        }
        if self.show_upgrade:
            payload["upgrade_label"] = UPGRADE_LABEL
        return payload


@dataclass(frozen=True)
class Loading:
    feature_key: str
    message: str = LOADING_MESSAGE
    state: GuardState = field(default=GuardState.LOADING, init=False)


@dataclass(frozen=True)
class Granted(Generic[T]):
    content: T
    state: GuardState = field(default=GuardState.GRANTED, init=False)


@dataclass(frozen=True)
class Denied(Generic[T]):
    denial: AccessDenial
    fallback: Optional[T] = None
    state: GuardState = field(default=GuardState.DENIED, init=False)


@dataclass(frozen=True)
class Redirect:
    to: str
    from_path: str
    feature_key: str
    reason: str

    @property
    def navigation_state(self) -> Dict[str, Any]:
        return {
            "from_path": self.from_path,
            "feature_key": self.feature_key,
            "reason": self.reason,
            "type": ACCESS_DENIED_STATE_TYPE,
        }


GuardResult = Union[Granted[T], Denied[T], Loading]


def build_denial(
    resolver: FeatureAccessResolver,
    feature_key: str,
    reason: str,
    *,
    allow_upgrade: bool = True,
) -> AccessDenial:
    """Default fallback panel; paid features get an upgrade affordance."""
    definition = resolver.catalog.get(feature_key)
    message = (definition.description if definition and definition.description else
               f"The {feature_key} feature is not enabled for your account.")
    paid = definition is not None and definition.category is FeatureCategory.PAID
    return AccessDenial(
        feature_key=feature_key,
        reason=reason,
        message=message,
        show_upgrade=allow_upgrade and paid,
    )


class RouteGuard:
    """Redirects denied navigations, carrying where they came from and why."""

    def __init__(
        self,
        resolver: FeatureAccessResolver,
        feature_key: str,
        *,
        redirect_to: str = DEFAULT_UNAUTHORIZED_PATH,
    ) -> None:
        self._resolver = resolver
        self.feature_key = feature_key
        self.redirect_to = redirect_to

    def evaluate(self, from_path: str, render: Callable[[], T]) -> Union[Granted[T], Redirect, Loading]:
        status = use_feature_guard(self._resolver, self.feature_key)
        if status.is_loading:
            return Loading(feature_key=self.feature_key)
        if not status.can_access:
            logger.info(
                "Route access denied",
                extra={"feature_key": self.feature_key, "from_path": from_path, "reason": status.reason},
            )
            return Redirect(
                to=self.redirect_to,
                from_path=from_path,
                feature_key=self.feature_key,
                reason=status.reason,
            )
        return Granted(content=render())


class ComponentGuard(Generic[T]):
    """
    Guards a page region.

    Errors raised while building the guarded content are turned into a
    Denied result for that region only.
    """

    def __init__(
        self,
        resolver: FeatureAccessResolver,
        feature_key: str,
        *,
        fallback: Optional[Callable[[AccessDenial], T]] = None,
        show_upgrade: bool = True,
        on_access_denied: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        self._resolver = resolver
        self.feature_key = feature_key
        self._fallback = fallback
        self._show_upgrade = show_upgrade
        self._on_access_denied = on_access_denied

    def evaluate(self, content: Callable[[], T]) -> GuardResult:
        status = use_feature_guard(self._resolver, self.feature_key)
        if status.is_loading:
            return Loading(feature_key=self.feature_key)
        if not status.can_access:
            self._notify_denied(status.reason)
            denial = build_denial(
                self._resolver,
                self.feature_key,
                status.reason,
                allow_upgrade=self._show_upgrade and not status.is_free_feature,
            )
            return self._deny(denial)

        try:
            return Granted(content=content())
        except Exception:
            logger.exception("Feature guard content failed", extra={"feature_key": self.feature_key})
            denial = build_denial(
                self._resolver,
                self.feature_key,
                REASON_GUARD_ERROR,
                allow_upgrade=False,
            )
            return self._deny(denial)

    def _notify_denied(self, reason: str) -> None:
        if self._on_access_denied is None:
            return
        try:
            self._on_access_denied(self.feature_key, reason)
        except Exception:
            logger.exception("Access denied callback failed", extra={"feature_key": self.feature_key})

    def _deny(self, denial: AccessDenial) -> Denied:
        if self._fallback is None:
            return Denied(denial=denial)
        try:
            return Denied(denial=denial, fallback=self._fallback(denial))
        except Exception:
            logger.exception("Feature guard fallback failed", extra={"feature_key": self.feature_key})
            return Denied(denial=denial)


@dataclass(frozen=True)
class ControlState:
    """How a guarded button or link should be presented."""

    enabled: bool
    loading: bool = False
    tooltip: Optional[str] = None
    href: Optional[str] = None


class ControlGuard:
    """Buttons and links are never hidden: they are disabled with a tooltip."""

    def __init__(
        self,
        resolver: FeatureAccessResolver,
        feature_key: str,
        *,
        disabled_tooltip: Optional[str] = None,
    ) -> None:
        self._resolver = resolver
        self.feature_key = feature_key
        self._disabled_tooltip = disabled_tooltip

    def _tooltip(self, status: FeatureGuardStatus) -> Optional[str]:
        if self._disabled_tooltip:
            return self._disabled_tooltip
        if not status.can_access and not status.is_loading:
            return f"Feature {self.feature_key} is not available"
        return None

    def button(self, *, disabled: bool = False) -> ControlState:
        status = use_feature_guard(self._resolver, self.feature_key)
        enabled = not disabled and not status.is_loading and status.can_access
        return ControlState(
            enabled=enabled,
            loading=status.is_loading,
            tooltip=None if enabled else self._tooltip(status),
        )

    def link(self, to: str, *, disabled: bool = False) -> ControlState:
        state = self.button(disabled=disabled)
        if not state.enabled:
            return state
        return ControlState(enabled=True, href=to)


class MultiFeatureGuard(Generic[T]):
    """
    Guards content needing several features.

    With `require_all` every key must be granted; otherwise one suffices.
    No result is reported before every lookup has settled, except that an
    any-of guard may grant as soon as one key is granted.
    """

    def __init__(
        self,
        resolver: FeatureAccessResolver,
        feature_keys: Sequence[str],
        *,
        require_all: bool = True,
        fallback: Optional[Callable[[AccessDenial], T]] = None,
    ) -> None:
        self._resolver = resolver
        self.feature_keys: List[str] = list(feature_keys)
        self.require_all = require_all
        self._fallback = fallback

    def _denial(self) -> AccessDenial:
        mode = "all" if self.require_all else "one"
        first = self.feature_keys[0] if self.feature_keys else ""
        return build_denial(
            self._resolver,
            first,
            f"Access requires {mode} of: {', '.join(self.feature_keys)}",
        )

    def _combine(self, decisions: Sequence[AccessDecision], content: Callable[[], T]) -> GuardResult:
        granted = [d.has_access for d in decisions]
        loading = any(d.is_loading for d in decisions)
        if self.require_all:
            if loading:
                return Loading(feature_key=",".join(self.feature_keys))
            allowed = all(granted)
        else:
            if any(granted):
                allowed = True
            elif loading:
                return Loading(feature_key=",".join(self.feature_keys))
            else:
                allowed = False

        if allowed:
            return Granted(content=content())
        denial = self._denial()
        fallback = self._fallback(denial) if self._fallback is not None else None
        return Denied(denial=denial, fallback=fallback)

    def current(self, content: Callable[[], T]) -> GuardResult:
        """Synchronous snapshot from the cached enabled set."""
        return self._combine([self._resolver.evaluate(key) for key in self.feature_keys], content)

    async def evaluate(self, content: Callable[[], T]) -> GuardResult:
        """Resolve every key (re-fetching as needed), then combine."""
        decisions = await asyncio.gather(
            *(self._resolver.check_feature_access(key) for key in self.feature_keys)
        )
        return self._combine(decisions, content)
