"""
Integrity checks over a tree's nodes.

Validation is advisory: it collects every problem it finds and repairs
nothing. Repair is a separate, explicit operation (``Pixtree.repair_tree``).
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .types import ImageNode, Project, Tree


@dataclass
class ValidationResult:
    valid: bool
    issues: list[str] = field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: list[str]) -> "ValidationResult":
        return cls(valid=not issues, issues=issues)


def find_invalid_parents(tree_id: str, tree_nodes: list[ImageNode], all_nodes: list[ImageNode]) -> list[str]:
    """One issue per node whose parent does not resolve inside its tree."""
    member_ids = {n.id for n in tree_nodes}
    tree_of = {n.id: n.tree_id for n in all_nodes}
    issues = []
    for node in tree_nodes:
        if node.parent_id is None or node.parent_id in member_ids:
            continue
        other_tree = tree_of.get(node.parent_id)
        if other_tree is not None:
            issues.append(
                f"Node {node.id} has invalid parent {node.parent_id} "
                f"(parent belongs to tree {other_tree}, not {tree_id})"
            )
        else:
            issues.append(f"Node {node.id} has invalid parent {node.parent_id}")
    return issues


def find_cycles(nodes: Iterable[ImageNode]) -> list[list[str]]:
    """
    Find parent-chain cycles.

    Walks each parent chain once, sharing one visited set across the whole
    pass, so the check is linear in the number of nodes. Each cycle is
    returned once, starting at the node where the walk re-entered it.
    """
    parent_of = {n.id: n.parent_id for n in nodes}
    done: set[str] = set()
    cycles: list[list[str]] = []

    for start in parent_of:
        if start in done:
            continue
        path: list[str] = []
        on_path: set[str] = set()
        current: Optional[str] = start
        while current is not None and current in parent_of and current not in done:
            if current in on_path:
                cycles.append(path[path.index(current):])
                break
            path.append(current)
            on_path.add(current)
            current = parent_of[current]
        done.update(path)
    return cycles


def validate_tree(tree: Tree, all_nodes: Iterable[ImageNode]) -> ValidationResult:
    """
    Check a tree's structure and cached metadata.

    Args:
        tree: The tree entity
        all_nodes: Every node in the project (needed to tell a dangling
            parent from one that lives in another tree)
    """
    all_nodes = list(all_nodes)
    tree_nodes = [n for n in all_nodes if n.tree_id == tree.id]
    issues = find_invalid_parents(tree.id, tree_nodes, all_nodes)

    for cycle in find_cycles(tree_nodes):
        chain = " -> ".join(cycle + [cycle[0]])
        issues.append(f"Node {cycle[0]} has circular reference ({chain})")

    if tree.metadata.total_nodes != len(tree_nodes):
        issues.append(
            f"Tree {tree.id} metadata reports {tree.metadata.total_nodes} nodes "
            f"but has {len(tree_nodes)}"
        )

    return ValidationResult.from_issues(issues)


def validate_project(project: Project, trees: list[Tree]) -> ValidationResult:
    issues = []
    if not project.id:
        issues.append("Project missing ID")
    if not project.name:
        issues.append("Project missing name")
    if not trees:
        issues.append("Project has no trees - consider creating an initial tree")
    default_tree = project.settings.default_tree_on_import
    if default_tree and default_tree not in {t.id for t in trees}:
        issues.append(f"Default import tree {default_tree} does not exist")
    return ValidationResult.from_issues(issues)

