"""Tests for forest assembly, positions, lineage, and tree metadata."""

import pytest

from pixtree.errors import CircularReferenceError, InvalidParentError
from pixtree.hierarchy import (
    ancestors,
    build_forest,
    compute_positions,
    compute_tree_metadata,
    find_orphans,
    max_depth,
    walk,
)
from pixtree.types import FileMetadata, ImageNode


def node(id, parent_id=None, tree_id="tree-1", created="2026-01-01T00:00:00.000Z", size=10):
    return ImageNode(
        id=id, project_id="project-1", tree_id=tree_id, parent_id=parent_id,
        image_path=f"{id}.png", image_hash=id, source="generated",
        created_at=created, last_accessed=created, file=FileMetadata(size=size),
    )


def ts(second: int) -> str:
    return f"2026-01-01T00:00:{second:02d}.000Z"


class TestBuildForest:

    def test_two_node_chain(self):
        forest = build_forest([node("b", parent_id="a", created=ts(2)), node("a", created=ts(1))])
        assert [t.node_id for t in forest] == ["a"]
        assert [c.node_id for c in forest[0].children] == ["b"]
        assert forest[0].children[0].depth == 1

    def test_every_reachable_node_once(self):
        nodes = [
            node("r1", created=ts(1)),
            node("r2", created=ts(2)),
            node("c1", "r1", created=ts(3)),
            node("c2", "r1", created=ts(4)),
            node("g1", "c1", created=ts(5)),
        ]
        forest = build_forest(nodes)
        ids = [t.node_id for t in walk(forest)]
        assert sorted(ids) == sorted(n.id for n in nodes)
        assert len(ids) == len(set(ids))

    def test_depth_equals_hops_to_root(self):
        nodes = [node("a"), node("b", "a"), node("c", "b"), node("d", "c")]
        depths = {t.node_id: t.depth for t in walk(build_forest(nodes))}
        assert depths == {"a": 0, "b": 1, "c": 2, "d": 3}
        assert max_depth(build_forest(nodes)) == 3

    def test_siblings_ordered_by_creation_then_id(self):
        nodes = [
            node("root", created=ts(0)),
            node("late", "root", created=ts(9)),
            node("zeta", "root", created=ts(5)),
            node("alpha", "root", created=ts(5)),
        ]
        children = build_forest(nodes)[0].children
        assert [c.node_id for c in children] == ["alpha", "zeta", "late"]

    def test_walk_is_preorder(self):
        nodes = [
            node("a", created=ts(0)),
            node("b", "a", created=ts(1)),
            node("c", "a", created=ts(2)),
            node("d", "b", created=ts(3)),
        ]
        assert [t.node_id for t in walk(build_forest(nodes))] == ["a", "b", "d", "c"]

    def test_orphans_excluded(self):
        nodes = [node("a"), node("lost", parent_id="ghost"), node("below", parent_id="lost")]
        ids = [t.node_id for t in walk(build_forest(nodes))]
        assert ids == ["a"]
        assert [n.id for n in find_orphans(nodes)] == ["lost"]

    def test_empty(self):
        assert build_forest([]) == []
        assert max_depth([]) == 0


class TestPositions:

    def test_positions(self):
        nodes = [
            node("a", created=ts(0)),
            node("b", "a", created=ts(1)),
            node("c", "a", created=ts(2)),
        ]
        positions = compute_positions(nodes)
        assert positions["a"].depth == 0
        assert positions["a"].has_children and not positions["a"].is_leaf
        assert positions["c"].child_index == 1
        assert positions["c"].is_leaf and not positions["c"].has_children

    def test_orphans_have_no_position(self):
        positions = compute_positions([node("a"), node("lost", "ghost")])
        assert set(positions) == {"a"}


class TestAncestors:

    def test_nearest_first(self):
        nodes = {n.id: n for n in [node("a"), node("b", "a"), node("c", "b")]}
        assert [n.id for n in ancestors(nodes["c"], nodes)] == ["b", "a"]
        assert ancestors(nodes["a"], nodes) == []

    def test_missing_parent(self):
        nodes = {n.id: n for n in [node("b", "ghost")]}
        with pytest.raises(InvalidParentError, match="ghost"):
            ancestors(nodes["b"], nodes)

    def test_parent_in_other_tree(self):
        nodes = {n.id: n for n in [node("a", tree_id="tree-2"), node("b", "a")]}
        with pytest.raises(InvalidParentError):
            ancestors(nodes["b"], nodes)

    def test_cycle_terminates(self):
        nodes = {n.id: n for n in [node("a", "c"), node("b", "a"), node("c", "b")]}
        with pytest.raises(CircularReferenceError):
            ancestors(nodes["a"], nodes)


class TestTreeMetadata:

    def test_counts(self):
        nodes = [
            node("a", created=ts(0), size=100),
            node("b", "a", created=ts(1), size=10),
            node("c", "a", created=ts(2), size=10),
            node("d", "b", created=ts(3), size=1),
        ]
        meta = compute_tree_metadata(nodes)
        assert meta.total_nodes == 4
        assert meta.depth == 3
        assert meta.total_size == 121
        assert meta.branch_count == 1
        assert meta.leaf_count == 2

    def test_single_root(self):
        meta = compute_tree_metadata([node("a")])
        assert meta.depth == 1
        assert meta.leaf_count == 1
        assert meta.branch_count == 0

    def test_empty(self):
        meta = compute_tree_metadata([])
        assert meta.total_nodes == 0
        assert meta.depth == 0
