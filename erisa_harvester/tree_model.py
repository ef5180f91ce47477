"""
In-memory model of the Fancytree widget.

Every node carries an explicit expansion state instead of reading the widget's
own flags, and all state changes go through transition(). The expander and the
flattener only ever see TreeNode objects, so both run without a browser.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional


class TreeUnavailable(RuntimeError):
    """The tree widget (or a handle to it) could not be obtained."""


class NodeState(Enum):
    COLLAPSED = "collapsed"
    EXPANDING = "expanding"
    EXPANDED = "expanded"


# event -> (allowed source states, target state)
_TRANSITIONS = {
    "request": ({NodeState.COLLAPSED}, NodeState.EXPANDING),
    "settled": ({NodeState.EXPANDING}, NodeState.EXPANDED),
    "failed": ({NodeState.EXPANDING}, NodeState.COLLAPSED),
}


@dataclass
class TreeNode:
    title: str
    children: Optional[List["TreeNode"]] = None
    state: NodeState = NodeState.COLLAPSED
    lazy: bool = False
    data: Dict[str, Any] = field(default_factory=dict)
    key: str = ""

    @property
    def expanded(self) -> bool:
        return self.state is NodeState.EXPANDED

    def has_children(self) -> bool:
        return bool(self.children)

    def is_leaf(self) -> bool:
        # lazy is ignored on purpose: flattening runs after expansion
        return not self.children

    def needs_expansion(self) -> bool:
        return self.state is NodeState.COLLAPSED and (self.has_children() or self.lazy)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TreeNode":
        """Build a node (and its loaded subtree) from the widget snapshot shape."""
        raw_children = d.get("children")
        children = None
        if raw_children is not None:
            children = [cls.from_dict(c) for c in raw_children]
        expanded = bool(d.get("expanded"))
        # Fancytree leaves lazy=true on nodes it has already loaded
        lazy = bool(d.get("lazy")) and not (expanded and children is not None)
        return cls(
            title=str(d.get("title") or ""),
            children=children,
            state=NodeState.EXPANDED if expanded else NodeState.COLLAPSED,
            lazy=lazy,
            data=dict(d.get("data") or {}),
            key=str(d.get("key") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "title": self.title,
            "expanded": self.expanded,
            "lazy": self.lazy,
            "data": dict(self.data),
            "children": None if self.children is None else [c.to_dict() for c in self.children],
        }


def transition(node: TreeNode, event: str) -> NodeState:
    """
    Apply an expansion event to a node and return its new state.

    request:  COLLAPSED -> EXPANDING
    settled:  EXPANDING -> EXPANDED (children are now concrete, lazy cleared)
    failed:   EXPANDING -> COLLAPSED (lazy kept, the widget still owes children)
    """
    if event not in _TRANSITIONS:
        raise ValueError(f"unknown transition event: {event!r}")
    sources, target = _TRANSITIONS[event]
    if node.state not in sources:
        raise ValueError(f"cannot apply {event!r} to {node.title!r} in state {node.state.value}")
    node.state = target
    if target is NodeState.EXPANDED:
        node.lazy = False
    return node.state


def iter_nodes(roots: Iterable[TreeNode]) -> Iterator[TreeNode]:
    """Pre-order, document-order walk over every loaded node."""
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        yield node
        if node.children:
            stack.extend(reversed(node.children))


def normalize_selection(titles: Iterable[str]) -> set:
    return {t.strip() for t in titles if t and t.strip()}


def match_roots(roots: Iterable[TreeNode], selection: Iterable[str]) -> List[TreeNode]:
    """
    Every node whose trimmed title is in the selection, in traversal order.

    Exact equality only. A matched node nested under another matched node is
    returned as well.
    """
    wanted = normalize_selection(selection)
    return [n for n in iter_nodes(roots) if n.title.strip() in wanted]


# =========================
# Handles
# =========================

class TreeHandle:
    """What the expander needs from a tree: the loaded roots and an expand call."""

    def roots(self) -> List[TreeNode]:
        raise NotImplementedError

    async def set_expanded(self, node: TreeNode) -> None:
        """Ask the widget to expand `node`; populate node.children when done. May raise."""
        raise NotImplementedError


ChildLoader = Callable[[TreeNode], Awaitable[Optional[List[TreeNode]]]]


class StaticTreeHandle(TreeHandle):
    """
    Handle over an in-memory tree, e.g. a saved snapshot.

    `loader` supplies the children of lazy nodes; without it lazy nodes expand
    to no children.
    """

    def __init__(self, roots: List[TreeNode], loader: Optional[ChildLoader] = None):
        self._roots = roots
        self._loader = loader
        self.expand_calls = 0

    @classmethod
    def from_snapshot(cls, snapshot: List[Dict[str, Any]]) -> "StaticTreeHandle":
        return cls([TreeNode.from_dict(d) for d in snapshot])

    def roots(self) -> List[TreeNode]:
        return self._roots

    async def set_expanded(self, node: TreeNode) -> None:
        self.expand_calls += 1
        if node.lazy and node.children is None and self._loader is not None:
            node.children = await self._loader(node)
