"""
Expansion controller: open every folder under the selected roots.

The tree is lazy, so a folder's children only exist after the widget has
fetched them. expand_node() requests expansion, waits a short settle delay,
then recurses into whatever children the node has by then. How siblings are
scheduled is up to the policy:

  SequentialPolicy  one child at a time, in document order
  BatchedPolicy     batches of N siblings expanded concurrently (default N=5)

Siblings in the same batch can hit the widget at the same moment. The
widget has tolerated this so far; switch to --sequential if it stops doing so.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional

from .config import BATCH_SIZE, EXPAND_DELAY
from .tree_model import TreeHandle, TreeNode, TreeUnavailable, match_roots, transition

Worker = Callable[[TreeNode], Awaitable[None]]


class SequentialPolicy:
    name = "sequential"

    async def run(self, nodes: List[TreeNode], worker: Worker) -> None:
        for node in nodes:
            await worker(node)


class BatchedPolicy:
    name = "batched"

    def __init__(self, batch_size: int = BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size

    async def run(self, nodes: List[TreeNode], worker: Worker) -> None:
        for i in range(0, len(nodes), self.batch_size):
            batch = nodes[i:i + self.batch_size]
            await asyncio.gather(*(worker(n) for n in batch))


class Expander:
    def __init__(self, handle: TreeHandle, policy=None, settle_delay: float = EXPAND_DELAY):
        self.handle = handle
        self.policy = policy or BatchedPolicy()
        self.settle_delay = settle_delay
        self.requested = 0
        self.failed = 0

    async def expand_node(self, node: TreeNode) -> None:
        if node.needs_expansion():
            transition(node, "request")
            self.requested += 1
            try:
                await self.handle.set_expanded(node)
            except TreeUnavailable:
                raise
            except Exception as e:
                # keep going: the children may still be reachable
                transition(node, "failed")
                self.failed += 1
                print(f"[expand] could not expand {node.title!r}: {e}")
            else:
                transition(node, "settled")
            await asyncio.sleep(self.settle_delay)

        if node.children:
            await self.policy.run(list(node.children), self.expand_node)


async def expand_selected(
    handle: Optional[TreeHandle],
    selection: Iterable[str],
    policy=None,
    settle_delay: float = EXPAND_DELAY,
) -> int:
    """
    Expand every descendant of every node whose title is in `selection`.

    Returns the number of matched roots. Zero is a valid answer (nothing
    matched); a missing handle raises TreeUnavailable instead.
    """
    if handle is None:
        raise TreeUnavailable("Fancytree not found on this page.")

    selection = list(selection)
    roots = match_roots(handle.roots(), selection)
    expander = Expander(handle, policy=policy, settle_delay=settle_delay)

    print(f"[expand] {len(roots)} root folder(s) matched {', '.join(selection)} "
          f"({expander.policy.name})")
    for node in roots:
        await expander.expand_node(node)

    if expander.failed:
        print(f"[expand] {expander.failed} of {expander.requested} expand request(s) failed")
    return len(roots)
