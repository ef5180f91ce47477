"""
Flatten the expanded tree into CSV rows, one row per leaf.

The number of "Level N" columns is the deepest leaf path found under any
selected root; shallower paths are padded on the right with empty cells so
every row has the same width.
"""

import csv
import io
from dataclasses import dataclass
from typing import Iterable, Iterator, List

from .citations import resolve_leaf_data
from .tree_model import TreeNode, match_roots

SOURCE_URL_HEADER = "Source URL"


@dataclass
class FlatTable:
    header: List[str]
    rows: List[List[str]]
    max_depth: int

    @property
    def width(self) -> int:
        return len(self.header)


def leaf_depths(node: TreeNode, level: int = 1) -> Iterator[int]:
    """Level (root = 1) of every leaf under node."""
    if node.is_leaf():
        yield level
        return
    for child in node.children:
        yield from leaf_depths(child, level + 1)


def max_leaf_depth(roots: Iterable[TreeNode]) -> int:
    deepest = 0
    for root in roots:
        for depth in leaf_depths(root):
            deepest = max(deepest, depth)
    return deepest or 1


def leaf_paths(node: TreeNode, ancestors: List[str] = None) -> Iterator[tuple]:
    """(titles from root to leaf, leaf node), depth-first in document order."""
    path = (ancestors or []) + [node.title]
    if node.is_leaf():
        yield path, node
        return
    for child in node.children:
        yield from leaf_paths(child, path)


def build_header(max_depth: int, with_citations: bool = True) -> List[str]:
    header = [f"Level {i}" for i in range(1, max_depth + 1)]
    if with_citations:
        header.append(SOURCE_URL_HEADER)
    return header


def flatten_tree(roots: List[TreeNode], selection: Iterable[str], with_citations: bool = True) -> FlatTable:
    matched = match_roots(roots, selection)
    max_depth = max_leaf_depth(matched)

    rows = []
    for root in matched:
        for path, leaf in leaf_paths(root):
            row = path + [""] * (max_depth - len(path))
            if with_citations:
                row.append(resolve_leaf_data(leaf.data))
            rows.append(row)

    return FlatTable(header=build_header(max_depth, with_citations), rows=rows, max_depth=max_depth)


# =========================
# CSV
# =========================

def to_csv(table: FlatTable) -> str:
    """
    Header plus rows, "\\n" separated, no trailing newline.

    Cells are quoted only when they contain a comma, a quote or a line break.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(table.header)
    writer.writerows(table.rows)
    text = buf.getvalue()
    if text.endswith("\n"):
        text = text[:-1]
    return text


def count_rows(csv_text: str) -> int:
    """Data rows in a CSV produced by to_csv() (header excluded)."""
    if not csv_text:
        return 0
    return max(0, sum(1 for _ in csv.reader(io.StringIO(csv_text))) - 1)
