"""
Navigation tree model and feature/role filtering.

Nodes are a closed set of variants keyed by `type`:
- NavItem ("item"): a routable entry; kept or dropped on its own check.
- NavCollapse ("collapse"): an expandable group; dropped when no child survives.
- NavTitle ("title"): a section header; pruned like a collapse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import NavGateError
from .models import PrincipalContext

logger = logging.getLogger(__name__)

NAV_ITEM_TYPE_ITEM = "item"
NAV_ITEM_TYPE_COLLAPSE = "collapse"
NAV_ITEM_TYPE_TITLE = "title"


class NavigationConfigError(NavGateError):
    error_code = "NAVIGATION_CONFIG_ERROR"


@dataclass(frozen=True)
class _NavBase:
    key: str
    title: str
    path: str = ""
    icon: str = ""
    translate_key: str = ""
    authority: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        key = str(self.key).strip()
        if not key:
            raise NavigationConfigError("navigation node key is required")
        object.__setattr__(self, "key", key)
        object.__setattr__(self, "authority", frozenset(self.authority))

    def role_allows(self, roles: FrozenSet[str]) -> bool:
        return not self.authority or not self.authority.isdisjoint(roles)


@dataclass(frozen=True)
class NavItem(_NavBase):
    children: Tuple["NavNode", ...] = ()
    type: str = field(default=NAV_ITEM_TYPE_ITEM, init=False)


@dataclass(frozen=True)
class NavCollapse(_NavBase):
    children: Tuple["NavNode", ...] = ()
    type: str = field(default=NAV_ITEM_TYPE_COLLAPSE, init=False)


@dataclass(frozen=True)
class NavTitle(_NavBase):
    children: Tuple["NavNode", ...] = ()
    type: str = field(default=NAV_ITEM_TYPE_TITLE, init=False)


NavNode = Union[NavItem, NavCollapse, NavTitle]

_NODE_TYPES = {
    NAV_ITEM_TYPE_ITEM: NavItem,
    NAV_ITEM_TYPE_COLLAPSE: NavCollapse,
    NAV_ITEM_TYPE_TITLE: NavTitle,
}


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------

def parse_navigation(raw: Sequence[Mapping[str, Any]]) -> Tuple[NavNode, ...]:
    """Build typed nodes from config dicts; keys must be unique across the tree."""
    if not isinstance(raw, (list, tuple)):
        raise NavigationConfigError("navigation config must be a list of nodes")
    seen: set[str] = set()
    return tuple(_parse_node(item, seen) for item in raw)


def _parse_node(raw: Mapping[str, Any], seen: set[str]) -> NavNode:
    if not isinstance(raw, Mapping):
        raise NavigationConfigError(f"navigation node must be an object: {raw!r}")
    key = raw.get("key")
    if not isinstance(key, str) or not key.strip():
        raise NavigationConfigError(f"navigation node has invalid key: {key!r}")
    if key in seen:
        raise NavigationConfigError(f"duplicate navigation key: {key}")
    seen.add(key)

    node_type = raw.get("type", NAV_ITEM_TYPE_ITEM)
    node_cls = _NODE_TYPES.get(node_type)
    if node_cls is None:
        raise NavigationConfigError(f"navigation node '{key}' has unknown type: {node_type!r}")

    authority = raw.get("authority") or []
    if not isinstance(authority, (list, tuple, set, frozenset)):
        raise NavigationConfigError(f"navigation node '{key}' authority must be a list")
    children_raw = raw.get("children", raw.get("sub_menu", raw.get("subMenu"))) or []
    if not isinstance(children_raw, (list, tuple)):
        raise NavigationConfigError(f"navigation node '{key}' children must be a list")

    return node_cls(
        key=key,
        title=str(raw.get("title") or key),
        path=str(raw.get("path") or ""),
        icon=str(raw.get("icon") or ""),
        translate_key=str(raw.get("translate_key") or raw.get("translateKey") or ""),
        authority=frozenset(str(a) for a in authority),
        children=tuple(_parse_node(child, seen) for child in children_raw),
    )


def node_to_dict(node: NavNode) -> Dict[str, Any]:
    return {
        "key": node.key,
        "type": node.type,
        "title": node.title,
        "path": node.path,
        "icon": node.icon,
        "translate_key": node.translate_key,
        "authority": sorted(node.authority),
        "children": [node_to_dict(child) for child in node.children],
    }


def iter_nodes(tree: Iterable[NavNode]) -> Iterator[NavNode]:
    """Pre-order walk."""
    for node in tree:
        yield node
        yield from iter_nodes(node.children)


def count_nodes(tree: Iterable[NavNode]) -> int:
    return sum(1 for _ in iter_nodes(tree))


def find_node(tree: Iterable[NavNode], key: str) -> Optional[NavNode]:
    for node in iter_nodes(tree):
        if node.key == key:
            return node
    return None


# ----------------------------------------------------------------------
# Filtering
# ----------------------------------------------------------------------

class NavigationTreeFilter:
    """
    Prunes a static tree down to what a principal may see.

    A node is eligible when its menu key passes the feature check AND its
    authority is empty or intersects the principal's roles. Filtering reads
    the current cache snapshot only; it never schedules a fetch.
    """

    def __init__(self, resolver) -> None:
        self._resolver = resolver

    def filter(self, tree: Sequence[NavNode], principal: Optional[PrincipalContext]) -> List[NavNode]:
        if principal is None or not principal.authenticated:
            return []
        return self._filter_level(tree, principal)

    def _filter_level(self, nodes: Sequence[NavNode], principal: PrincipalContext) -> List[NavNode]:
        kept: List[NavNode] = []
        for node in nodes:
            filtered = self._filter_node(node, principal)
            if filtered is not None:
                kept.append(filtered)
        return kept

    def _filter_node(self, node: NavNode, principal: PrincipalContext) -> Optional[NavNode]:
        if not self._resolver.has_menu_access(node.key, fetch=False, principal=principal):
            return None
        if not node.role_allows(principal.roles):
            return None

        children = tuple(self._filter_level(node.children, principal))
        if isinstance(node, NavItem):
            return replace(node, children=children)
        if not children:
            logger.debug("Pruned empty navigation group", extra={"menu_key": node.key})
            return None
        return replace(node, children=children)
