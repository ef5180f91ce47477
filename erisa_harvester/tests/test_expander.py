import asyncio

import pytest

from erisa_harvester.expander import BatchedPolicy, SequentialPolicy, expand_selected
from erisa_harvester.flattener import flatten_tree
from erisa_harvester.tree_model import (
    NodeState,
    StaticTreeHandle,
    TreeNode,
    TreeUnavailable,
    iter_nodes,
    transition,
)


def lazy(title, key=None):
    return TreeNode(title=title, lazy=True, key=key or title)


class LazyWidget(StaticTreeHandle):
    """
    Fake Fancytree: lazy children come from a dict keyed by node key, every
    expand yields once, and in-flight expands are counted.
    """

    def __init__(self, roots, lazy_children, fail_keys=()):
        super().__init__(roots)
        self.lazy_children = lazy_children
        self.fail_keys = set(fail_keys)
        self.in_flight = 0
        self.peak_in_flight = 0
        self.order = []

    async def set_expanded(self, node):
        self.expand_calls += 1
        self.order.append(node.key)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if node.key in self.fail_keys:
                raise RuntimeError("widget rejected setExpanded")
            if node.lazy and node.children is None:
                node.children = [f() for f in self.lazy_children.get(node.key, [])]
        finally:
            self.in_flight -= 1


def build_widget(fail_keys=()):
    """
    Laws (lazy)
      Title I (lazy)
        Part 1 (lazy) -> s101, s102
        Part 2 (lazy) -> s201
      Title IV (lazy) -> s4001
    Forms (lazy, not selected)
    """
    roots = [lazy("Laws"), lazy("Forms")]
    lazy_children = {
        "Laws": [lambda: lazy("Title I"), lambda: lazy("Title IV")],
        "Title I": [lambda: lazy("Part 1"), lambda: lazy("Part 2")],
        "Part 1": [lambda: TreeNode(title="s101", key="s101"), lambda: TreeNode(title="s102", key="s102")],
        "Part 2": [lambda: TreeNode(title="s201", key="s201")],
        "Title IV": [lambda: TreeNode(title="s4001", key="s4001")],
        "Forms": [lambda: TreeNode(title="5500", key="5500")],
    }
    return LazyWidget(roots, lazy_children, fail_keys=fail_keys)


def run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize("policy", [SequentialPolicy(), BatchedPolicy(5), BatchedPolicy(1)])
def test_selected_subtree_is_fully_realized(policy):
    widget = build_widget()
    count = run(expand_selected(widget, ["Laws"], policy=policy, settle_delay=0))

    assert count == 1
    laws = widget.roots()[0]
    for node in iter_nodes([laws]):
        assert node.lazy is False, node.title
        if node.children:
            assert node.expanded, node.title

    titles = [n.title for n in iter_nodes([laws])]
    assert titles == ["Laws", "Title I", "Part 1", "s101", "s102", "Part 2", "s201", "Title IV", "s4001"]


def test_unselected_roots_are_left_alone():
    widget = build_widget()
    run(expand_selected(widget, ["Laws"], settle_delay=0))
    forms = widget.roots()[1]
    assert forms.children is None
    assert forms.lazy is True
    assert forms.state is NodeState.COLLAPSED
    assert "Forms" not in widget.order


def test_rerun_is_a_no_op():
    widget = build_widget()
    first = run(expand_selected(widget, ["Laws"], settle_delay=0))
    calls = widget.expand_calls
    second = run(expand_selected(widget, ["Laws"], settle_delay=0))

    assert first == second == 1
    assert widget.expand_calls == calls


def test_sequential_policy_expands_in_document_order():
    widget = build_widget()
    run(expand_selected(widget, ["Laws"], policy=SequentialPolicy(), settle_delay=0))
    assert widget.order == ["Laws", "Title I", "Part 1", "Part 2", "Title IV"]
    assert widget.peak_in_flight == 1


def test_batched_policy_runs_siblings_concurrently():
    children = {f"c{i}": [] for i in range(7)}
    root = TreeNode(title="Root", key="Root", children=[lazy(k) for k in children])
    widget = LazyWidget([root], {})
    root.state = NodeState.EXPANDED

    run(expand_selected(widget, ["Root"], policy=BatchedPolicy(3), settle_delay=0))
    assert widget.peak_in_flight == 3
    assert widget.order[:3] == ["c0", "c1", "c2"]
    assert sorted(widget.order) == sorted(children)


def test_failed_expand_does_not_stop_the_walk():
    widget = build_widget(fail_keys={"Title I"})
    count = run(expand_selected(widget, ["Laws"], policy=SequentialPolicy(), settle_delay=0))

    assert count == 1
    title_i, title_iv = widget.roots()[0].children
    assert title_i.state is NodeState.COLLAPSED
    assert title_i.lazy is True
    # sibling branch still harvested
    assert [c.title for c in title_iv.children] == ["s4001"]


def test_failed_node_with_known_children_is_still_descended():
    child = lazy("child")
    parent = TreeNode(title="parent", key="parent", children=[child])
    widget = LazyWidget([parent], {"child": [lambda: TreeNode(title="leaf", key="leaf")]}, fail_keys={"parent"})

    run(expand_selected(widget, ["parent"], settle_delay=0))
    assert parent.state is NodeState.COLLAPSED
    assert [c.title for c in child.children] == ["leaf"]


def test_no_match_returns_zero():
    widget = build_widget()
    assert run(expand_selected(widget, ["Regulations"], settle_delay=0)) == 0
    assert widget.expand_calls == 0


def test_missing_handle_is_tree_unavailable():
    with pytest.raises(TreeUnavailable):
        run(expand_selected(None, ["Laws"], settle_delay=0))


def test_expand_then_flatten():
    widget = build_widget()
    run(expand_selected(widget, ["Laws"], settle_delay=0))
    table = flatten_tree(widget.roots(), ["Laws"], with_citations=False)

    assert table.max_depth == 4
    assert table.rows == [
        ["Laws", "Title I", "Part 1", "s101"],
        ["Laws", "Title I", "Part 1", "s102"],
        ["Laws", "Title I", "Part 2", "s201"],
        ["Laws", "Title IV", "s4001", ""],
    ]


def test_transition_rejects_illegal_moves():
    node = TreeNode(title="n")
    with pytest.raises(ValueError):
        transition(node, "settled")
    transition(node, "request")
    with pytest.raises(ValueError):
        transition(node, "request")
    with pytest.raises(ValueError):
        transition(node, "explode")


def test_static_handle_from_snapshot_round_trip():
    snap = [{"key": "1", "title": "A", "expanded": True, "lazy": False,
             "data": {}, "children": [{"key": "2", "title": "b", "expanded": False,
                                       "lazy": False, "data": {"Source": "IRSStatutes", "ID": "401"},
                                       "children": None}]}]
    handle = StaticTreeHandle.from_snapshot(snap)
    assert [n.to_dict() for n in handle.roots()] == snap


def test_preloaded_lazy_node_counts_as_realized():
    snapshot = [{
        "key": "1", "title": "ERISA", "expanded": True, "lazy": True, "data": {},
        "children": [{"key": "2", "title": "Sec. 101", "expanded": False, "lazy": False,
                      "data": {}, "children": None}],
    }]
    handle = StaticTreeHandle.from_snapshot(snapshot)
    erisa = handle.roots()[0]
    assert erisa.lazy is False, "loaded children should clear the lazy flag"

    run(expand_selected(handle, ["ERISA"], settle_delay=0))
    assert handle.expand_calls == 0
    assert not any(n.lazy for n in iter_nodes([erisa]))


def test_expanded_lazy_node_without_children_stays_lazy():
    snapshot = [{"key": "1", "title": "ERISA", "expanded": True, "lazy": True,
                 "data": {}, "children": None}]
    assert StaticTreeHandle.from_snapshot(snapshot).roots()[0].lazy is True
