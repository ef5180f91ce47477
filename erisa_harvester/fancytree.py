"""
Live handle over the Fancytree widget in an ERISApedia page (Playwright async API).

The page keeps the real tree; this module mirrors the loaded part of it as
TreeNode objects and forwards expand requests to the widget by node key.
"""

import json
from typing import Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError, Page

from .config import TREE_SELECTOR
from .tree_model import TreeHandle, TreeNode, TreeUnavailable

# Shared serializer, prepended to every evaluate() body.
_SERIALIZE_JS = """
const ser = (n) => ({
  key: n.key,
  title: n.title,
  expanded: !!n.expanded,
  lazy: !!n.lazy,
  data: {Source: (n.data && n.data.Source) || "", ID: (n.data && n.data.ID) || ""},
  children: n.children ? n.children.map(ser) : null,
});
const getTree = (sel) => {
  if (typeof jQuery === 'undefined') return null;
  const el = jQuery(sel);
  if (!el.length) return null;
  try { return el.fancytree('getTree'); } catch (e) { return null; }
};
"""

_SNAPSHOT_JS = "async (sel) => {" + _SERIALIZE_JS + """
  const tree = getTree(sel);
  if (!tree) return {error: 'Fancytree not found on this page.'};
  const root = tree.getRootNode();
  return {children: (root.children || []).map(ser)};
}"""

_EXPAND_JS = "async ([sel, key]) => {" + _SERIALIZE_JS + """
  const tree = getTree(sel);
  if (!tree) return {error: 'Fancytree not found on this page.'};
  const node = tree.getNodeByKey(key);
  if (!node) return {missing: true};
  await node.setExpanded(true);
  return {node: ser(node)};
}"""


class FancytreeHandle(TreeHandle):
    def __init__(self, page: Page, roots: List[TreeNode], selector: str = TREE_SELECTOR):
        self.page = page
        self.selector = selector
        self._roots = roots

    @classmethod
    async def load(cls, page: Optional[Page], selector: str = TREE_SELECTOR) -> "FancytreeHandle":
        """Snapshot the currently loaded tree. Raises TreeUnavailable when there is none."""
        if page is None:
            raise TreeUnavailable("no page to read the tree from")
        try:
            result = await page.evaluate(_SNAPSHOT_JS, selector)
        except PlaywrightError as e:
            raise TreeUnavailable(f"could not read the tree: {e}")
        if not result or result.get("error"):
            raise TreeUnavailable((result or {}).get("error") or "Fancytree not found on this page.")
        roots = [TreeNode.from_dict(d) for d in result.get("children") or []]
        return cls(page, roots, selector=selector)

    def roots(self) -> List[TreeNode]:
        return self._roots

    async def set_expanded(self, node: TreeNode) -> None:
        if not node.key:
            raise LookupError(f"node {node.title!r} has no widget key")
        result = await self.page.evaluate(_EXPAND_JS, [self.selector, node.key])
        if result.get("error"):
            raise TreeUnavailable(result["error"])
        if result.get("missing"):
            raise LookupError(f"node {node.key} ({node.title!r}) is no longer in the tree")
        fresh = TreeNode.from_dict(result["node"])
        node.children = fresh.children

    def snapshot(self) -> List[Dict[str, Any]]:
        return [n.to_dict() for n in self._roots]

    def dump(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.snapshot(), f, indent=2, ensure_ascii=False)
        print(f"[saved] {path}")
