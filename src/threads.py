"""Reply threading: nest a flat batch of replies under one root.

Replies only reference each other by identity. ``build_tree`` links them in
two passes over an identity-keyed map, so no per-node lookups walk the
list, and every input record lands in the returned forest exactly once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from margin.items import ReplyNode, ReplyRecord

logger = logging.getLogger(__name__)


def _as_node(record: ReplyRecord) -> ReplyNode:
    return ReplyNode(**record.model_dump(exclude={"children"}))


def build_tree(replies: Iterable[ReplyRecord], root_identity: str) -> list[ReplyNode]:
    """Nest a flat list of replies into an ordered forest.

    Replies whose parent is ``root_identity`` are top level. Replies whose
    parent is another reply in the batch become that reply's children.
    Replies whose parent cannot be found are placed at the top level rather
    than dropped. Sibling order follows input order.

    Args:
        replies: Flat reply batch, in display (chronological) order.
        root_identity: Identity of the annotation the thread hangs off.

    Returns:
        Top-level reply nodes. Never raises on malformed references.
    """
    nodes = [_as_node(record) for record in replies]

    # First record wins when identities repeat; empty identities never parent.
    by_identity: dict[str, ReplyNode] = {}
    for node in nodes:
        if node.identity and node.identity not in by_identity:
            by_identity[node.identity] = node

    forest: list[ReplyNode] = []
    parent_of: dict[int, ReplyNode] = {}
    for node in nodes:
        parent_identity = node.parent_identity
        if parent_identity == root_identity:
            forest.append(node)
        elif parent_identity in by_identity:
            parent = by_identity[parent_identity]
            parent.children.append(node)
            parent_of[id(node)] = parent
        else:
            logger.debug(
                "Reply %s has unresolved parent %s, placing at top level",
                node.identity,
                parent_identity,
            )
            forest.append(node)

    _break_cycles(nodes, forest, parent_of)
    return forest


def _break_cycles(
    nodes: list[ReplyNode],
    forest: list[ReplyNode],
    parent_of: dict[int, ReplyNode],
) -> None:
    """Promote replies caught in parent cycles to the top level.

    A node not reachable from the forest can only be part of (or hang below)
    a reference cycle. The first such node in input order is detached from
    its parent, which opens the cycle and makes the rest reachable again.
    """
    reachable: set[int] = set()
    _mark_reachable(forest, reachable)
    if len(reachable) == len(nodes):
        return

    for node in nodes:
        if id(node) in reachable:
            continue
        parent = parent_of[id(node)]
        parent.children[:] = [child for child in parent.children if child is not node]
        logger.debug("Reply %s is part of a parent cycle, placing at top level", node.identity)
        forest.append(node)
        _mark_reachable([node], reachable)


def _mark_reachable(start: list[ReplyNode], reachable: set[int]) -> None:
    stack = list(start)
    while stack:
        node = stack.pop()
        if id(node) in reachable:
            continue
        reachable.add(id(node))
        stack.extend(node.children)


def walk(forest: list[ReplyNode]) -> Iterator[tuple[ReplyNode, int]]:
    """Yield ``(node, depth)`` depth-first in display order, top level at 0."""
    stack: list[tuple[ReplyNode, int]] = [(node, 0) for node in reversed(forest)]
    while stack:
        node, depth = stack.pop()
        yield node, depth
        stack.extend((child, depth + 1) for child in reversed(node.children))


def iter_nodes(forest: list[ReplyNode]) -> Iterator[ReplyNode]:
    for node, _ in walk(forest):
        yield node


def count_nodes(forest: list[ReplyNode]) -> int:
    """Total replies across every level of the forest."""
    return sum(1 for _ in walk(forest))


def thread_depth(forest: list[ReplyNode]) -> int:
    """Number of nesting levels; 0 for an empty thread."""
    return max((depth + 1 for _, depth in walk(forest)), default=0)


def find_node(forest: list[ReplyNode], identity: str) -> ReplyNode | None:
    """Find the first reply with the given identity."""
    for node in iter_nodes(forest):
        if node.identity == identity:
            return node
    return None


def forest_to_dicts(forest: list[ReplyNode]) -> list[dict[str, object]]:
    """JSON-ready nested dicts for the forest, one node dumped at a time."""
    top: list[dict[str, object]] = []
    stack: list[tuple[ReplyNode, list[dict[str, object]]]] = [(node, top) for node in reversed(forest)]
    while stack:
        node, siblings = stack.pop()
        data = node.model_dump(mode="json", exclude={"children"})
        children: list[dict[str, object]] = []
        data["children"] = children
        siblings.append(data)
        stack.extend((child, children) for child in reversed(node.children))
    return top
