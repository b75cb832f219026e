"""Tests for identifier generation."""

import pytest

from pixtree.ids import KINDS, id_kind, new_id


class TestNewId:

    @pytest.mark.parametrize("kind", KINDS)
    def test_prefix_names_kind(self, kind):
        assert new_id(kind).startswith(f"{kind}-")
        assert id_kind(new_id(kind)) == kind

    def test_ids_are_unique(self):
        ids = {new_id("node") for _ in range(1000)}
        assert len(ids) == 1000

    def test_ids_are_path_safe(self):
        id = new_id("tree")
        assert "/" not in id and "\\" not in id
        assert not id.startswith(".")

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="Unknown entity kind"):
            new_id("image")


def test_id_kind_unknown_prefix():
    assert id_kind("image-123") is None
    assert id_kind("") is None
