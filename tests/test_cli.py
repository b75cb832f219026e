"""
Tests for the command-line interface.

Commands run in-process through typer's CliRunner against a temporary
project whose default model is the mock backend.
"""

import json

import pytest
from typer.testing import CliRunner

from pixtree.cli import _format_node_line, _parse_params, _split_tags, app
from pixtree.providers.base import get_registry
from tests.conftest import MockGenerator


runner = CliRunner()


@pytest.fixture
def cli(project_dir, monkeypatch):
    """Invoke pixtree against project_dir; returns the click Result."""
    get_registry().list_generators()
    monkeypatch.setitem(get_registry()._generators, "mock", MockGenerator)

    def invoke(*args):
        return runner.invoke(app, ["--project", str(project_dir), *args])
    return invoke


@pytest.fixture
def initialized(cli):
    result = cli("init", "--name", "Posters", "--model", "mock")
    assert result.exit_code == 0, result.output
    return cli


class TestHelpers:

    def test_split_tags(self):
        assert _split_tags(["a,b", " c ", "d,,"]) == ["a", "b", "c", "d"]
        assert _split_tags(None) == []

    def test_parse_params(self):
        assert _parse_params(["seed=42", "style=loose", 'size="1K"', "x=a=b"]) == {
            "seed": 42, "style": "loose", "size": "1K", "x": "a=b",
        }

    def test_format_node_line(self, pixtree):
        node = pixtree.generate("a lighthouse at dusk " * 5)
        pixtree.update_node(node.id, rating=4, favorite=True)
        line = _format_node_line(pixtree.get_node(node.id))
        assert line.startswith(node.id)
        assert "*" in line
        assert "[4/5]" in line
        assert line.endswith("...")


class TestInit:

    def test_init(self, cli, project_dir):
        result = cli("init", "--name", "Posters", "--model", "mock")
        assert result.exit_code == 0
        assert "Initialized project 'Posters'" in result.output
        assert (project_dir / ".pixtree" / "pixtree.toml").exists()

    def test_init_twice(self, initialized):
        result = initialized("init")
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "already initialized" in result.output

    def test_not_initialized(self, cli):
        result = cli("status")
        assert result.exit_code == 1
        assert "pixtree init" in result.output


class TestGenerate:

    def test_generate(self, initialized):
        result = initialized("generate", "a lighthouse at dusk", "-t", "sea,night")
        assert result.exit_code == 0, result.output
        assert "a lighthouse at dusk" in result.output

    def test_generate_json(self, initialized):
        first = json.loads(initialized("--json", "generate", "a lighthouse").stdout)
        second = json.loads(initialized("--json", "generate", "in snow", "-P", "seed=3").stdout)
        assert second["parent_id"] == first["id"]
        assert second["generation"]["model_config"]["params"] == {"seed": 3}

    def test_root_flag(self, initialized):
        initialized("generate", "a lighthouse")
        node = json.loads(initialized("--json", "generate", "a tower", "--root").stdout)
        assert node["parent_id"] is None

    def test_bad_param(self, initialized):
        result = initialized("generate", "x", "-P", "seed")
        assert result.exit_code == 1
        assert "Invalid parameter" in result.output

    def test_empty_prompt(self, initialized):
        result = initialized("generate", "  ")
        assert result.exit_code == 1
        assert "Error:" in result.output


class TestImportAndShow:

    def test_import_and_show(self, initialized, image_file):
        node = json.loads(initialized("--json", "import", str(image_file), "--no-analyze").stdout)
        assert node["source"] == "imported"

        result = initialized("show", node["id"])
        assert result.exit_code == 0
        assert "imported from:" in result.output

    def test_import_missing_file(self, initialized, tmp_path):
        result = initialized("import", str(tmp_path / "nope.png"))
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_show_lineage(self, initialized):
        initialized("generate", "one")
        initialized("generate", "two")
        result = initialized("show", "--lineage")
        assert result.exit_code == 0
        assert "lineage:" in result.output
        assert "one" in result.output


class TestTrees:

    def test_create_list_switch(self, initialized):
        created = json.loads(initialized("--json", "tree", "create", "Sketches", "-t", "rough").stdout)

        listing = initialized("tree", "list")
        assert listing.exit_code == 0
        current_line = next(line for line in listing.output.splitlines() if line.startswith("*"))
        assert created["id"] in current_line

        trees = json.loads(initialized("--json", "tree", "list").stdout)
        main = next(t for t in trees if t["name"] == "Main")
        result = initialized("tree", "switch", main["id"])
        assert result.exit_code == 0
        assert "Switched to tree Main" in result.output

    def test_list_by_tag(self, initialized):
        initialized("tree", "create", "Sketches", "-t", "rough")
        trees = json.loads(initialized("--json", "tree", "list", "-t", "rough").stdout)
        assert [t["name"] for t in trees] == ["Sketches"]

    def test_switch_recommendations(self, initialized):
        result = initialized("tree", "switch")
        assert result.exit_code == 0
        assert "Main" in result.output

    def test_view(self, initialized):
        initialized("generate", "one")
        initialized("generate", "two")
        result = initialized("tree", "view")
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert "2 nodes" in lines[0]
        assert any(line.startswith("*") and "two" in line for line in lines)

    def test_delete_non_empty(self, initialized):
        node = json.loads(initialized("--json", "generate", "one").stdout)
        result = initialized("tree", "delete", node["tree_id"])
        assert result.exit_code == 1
        assert "Error:" in result.output

        result = initialized("tree", "delete", node["tree_id"], "--cascade", "--yes")
        assert result.exit_code == 0
        assert "(1 nodes)" in result.output


class TestNodes:

    def test_update_and_search(self, initialized):
        node = json.loads(initialized("--json", "generate", "a lighthouse").stdout)
        initialized("generate", "a tower", "--root")

        result = initialized("node", "update", node["id"], "--rating", "5", "-t", "best")
        assert result.exit_code == 0
        assert "[5/5]" in result.output

        found = json.loads(initialized("--json", "search", "--min-rating", "4").stdout)
        assert [n["id"] for n in found] == [node["id"]]
        found = json.loads(initialized("--json", "search", "-t", "best").stdout)
        assert [n["id"] for n in found] == [node["id"]]

    def test_bad_rating(self, initialized):
        node = json.loads(initialized("--json", "generate", "a lighthouse").stdout)
        result = initialized("node", "update", node["id"], "--rating", "9")
        assert result.exit_code == 1
        assert "Rating" in result.output

    def test_no_matches(self, initialized):
        result = initialized("search", "nothing-like-this")
        assert result.exit_code == 0
        assert "No matching nodes." in result.output

    def test_export(self, initialized, tmp_path):
        node = json.loads(initialized("--json", "generate", "a lighthouse").stdout)
        out = tmp_path / "out"
        out.mkdir()
        result = initialized("export", node["id"], str(out), "--name", "final")
        assert result.exit_code == 0, result.output
        assert (out / "final.png").exists()

    def test_export_into_new_directory(self, initialized, tmp_path):
        node = json.loads(initialized("--json", "generate", "a lighthouse").stdout)
        result = initialized("export", node["id"], str(tmp_path / "newdir") + "/")
        assert result.exit_code == 0, result.output
        assert (tmp_path / "newdir" / f"{node['id']}.png").is_file()


class TestReports:

    def test_status(self, initialized):
        initialized("generate", "a lighthouse")
        result = initialized("status")
        assert result.exit_code == 0
        assert "Project: Posters" in result.output
        assert "Current tree: Main" in result.output

    def test_validate(self, initialized):
        initialized("generate", "a lighthouse")
        result = initialized("validate")
        assert result.exit_code == 0
        assert "All trees valid." in result.output

    def test_stats_json(self, initialized):
        initialized("generate", "a lighthouse")
        data = json.loads(initialized("--json", "stats").stdout)
        assert data["nodes"] == 1
        assert data["generated"] == 1

    def test_diff(self, initialized):
        a = json.loads(initialized("--json", "generate", "a red lighthouse").stdout)
        b = json.loads(initialized("--json", "generate", "a blue lighthouse").stdout)
        result = initialized("diff", a["id"], b["id"])
        assert result.exit_code == 0
        assert "Same tree: yes" in result.output

    def test_blend_preview(self, initialized):
        a = json.loads(initialized("--json", "generate", "a red lighthouse").stdout)
        b = json.loads(initialized("--json", "generate", "a tower", "--root").stdout)
        result = initialized("blend", a["id"], b["id"], "--preview")
        assert result.exit_code == 0, result.output
        assert "Prompt:" in result.output
