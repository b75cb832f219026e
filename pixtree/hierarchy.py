"""
Reconstructs derivation trees from flat node records.

Nodes only record their parent. ``build_forest`` indexes children by
parent ID and expands from the roots, so every node reachable from a root
appears exactly once. Siblings are ordered by creation time, ties broken
by ID.

A node whose parent is not among the input nodes is an orphan. Orphans
(and anything below them) are left out of the forest rather than promoted
to roots; ``find_orphans`` lists them and the integrity validator reports
them.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from .errors import CircularReferenceError, InvalidParentError
from .types import ImageNode, TreeMetadata, TreePosition, parse_utc_timestamp


@dataclass
class TreeNode:
    """One node in an assembled forest."""
    node: ImageNode
    depth: int
    children: list["TreeNode"] = field(default_factory=list)

    @property
    def node_id(self) -> str:
        return self.node.id


def sibling_key(node: ImageNode):
    """Display order among siblings: creation time, then ID."""
    return (parse_utc_timestamp(node.created_at), node.id)


def index_children(nodes: Iterable[ImageNode]) -> dict[str, list[ImageNode]]:
    """Map parent ID → children, each list in sibling order."""
    children: dict[str, list[ImageNode]] = defaultdict(list)
    for node in nodes:
        if node.parent_id is not None:
            children[node.parent_id].append(node)
    for group in children.values():
        group.sort(key=sibling_key)
    return children


def build_forest(nodes: Iterable[ImageNode]) -> list[TreeNode]:
    """
    Assemble the forest of derivation trees.

    Args:
        nodes: Flat node records (typically the members of one tree)

    Returns:
        Root TreeNodes in sibling order, children filled in recursively
    """
    nodes = list(nodes)
    children = index_children(nodes)
    roots = sorted((n for n in nodes if n.parent_id is None), key=sibling_key)

    forest = [TreeNode(node=root, depth=0) for root in roots]
    stack = list(forest)
    while stack:
        current = stack.pop()
        for child in children.get(current.node.id, ()):
            child_tree = TreeNode(node=child, depth=current.depth + 1)
            current.children.append(child_tree)
            stack.append(child_tree)
    return forest


def walk(forest: list[TreeNode]) -> Iterator[TreeNode]:
    """Depth-first pre-order traversal of a forest."""
    stack = list(reversed(forest))
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def find_orphans(nodes: Iterable[ImageNode]) -> list[ImageNode]:
    """Nodes whose declared parent is not among the given nodes."""
    nodes = list(nodes)
    ids = {n.id for n in nodes}
    return [n for n in nodes if n.parent_id is not None and n.parent_id not in ids]


def max_depth(forest: list[TreeNode]) -> int:
    return max((t.depth for t in walk(forest)), default=0)


def compute_positions(nodes: Iterable[ImageNode]) -> dict[str, TreePosition]:
    """
    Structural position of every node reachable from a root.

    Nodes outside the forest (orphans, cycles) get no entry; their stored
    positions are left as they are.
    """
    nodes = list(nodes)
    forest = build_forest(nodes)
    positions: dict[str, TreePosition] = {}
    for index, root in enumerate(forest):
        positions[root.node_id] = _position(root, index)
    for tree_node in walk(forest):
        for index, child in enumerate(tree_node.children):
            positions[child.node_id] = _position(child, index)
    return positions


def _position(tree_node: TreeNode, index: int) -> TreePosition:
    has_children = bool(tree_node.children)
    return TreePosition(
        depth=tree_node.depth,
        child_index=index,
        has_children=has_children,
        is_leaf=not has_children,
    )


def ancestors(node: ImageNode, by_id: dict[str, ImageNode]) -> list[ImageNode]:
    """
    Parent chain of a node, nearest parent first.

    Raises:
        InvalidParentError: If a parent is missing or lives in another tree
        CircularReferenceError: If the chain loops back on itself
    """
    chain: list[ImageNode] = []
    seen = {node.id}
    current = node
    while current.parent_id is not None:
        parent = by_id.get(current.parent_id)
        if parent is None or parent.tree_id != current.tree_id:
            raise InvalidParentError(f"Node {current.id} has invalid parent {current.parent_id}")
        if parent.id in seen:
            raise CircularReferenceError(f"Node {node.id} has circular reference through {parent.id}")
        seen.add(parent.id)
        chain.append(parent)
        current = parent
    return chain


def compute_tree_metadata(nodes: Iterable[ImageNode]) -> TreeMetadata:
    """
    Recompute a tree's cached aggregates from its member nodes.

    ``depth`` counts levels (a lone root is depth 1), ``branch_count``
    counts nodes with two or more children.
    """
    nodes = list(nodes)
    forest = build_forest(nodes)
    child_counts: dict[str, int] = defaultdict(int)
    for node in nodes:
        if node.parent_id is not None:
            child_counts[node.parent_id] += 1
    return TreeMetadata(
        total_nodes=len(nodes),
        depth=max_depth(forest) + 1 if forest else 0,
        total_size=sum(n.file.size for n in nodes),
        branch_count=sum(1 for n in nodes if child_counts[n.id] > 1),
        leaf_count=sum(1 for n in nodes if child_counts[n.id] == 0),
    )
