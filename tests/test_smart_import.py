"""Tests for import placement heuristics."""

import random
from datetime import date

import pytest

from pixtree.smart_import import (
    ADJECTIVES,
    TREE_NAMES,
    PathClues,
    analyze_import_path,
    determine_tree_purpose,
    import_tree_name,
    infer_purpose_note,
    random_tree_name,
    smart_tags,
)
from pixtree.types import AnalysisResult


class TestAnalyzeImportPath:

    def test_reference_directory(self):
        clues = analyze_import_path("/work/references/cat.png")
        assert clues.is_reference
        assert "reference" in clues.suggested_tags
        assert clues.confidence > 0.5

    def test_screenshot(self):
        clues = analyze_import_path("/home/me/Desktop/Screenshot 2026-01-01.png")
        assert clues.is_reference
        assert "screenshot" in clues.suggested_tags

    def test_source_file(self):
        clues = analyze_import_path("/work/poster.psd")
        assert clues.category == "source"
        assert "source-file" in clues.suggested_tags
        assert not clues.is_reference

    def test_draft(self):
        clues = analyze_import_path("/work/poster_wip.png")
        assert clues.category == "draft"
        assert "wip" in clues.suggested_tags

    def test_plain_path(self):
        clues = analyze_import_path("/work/cat.png")
        assert clues == PathClues()

    def test_confidence_capped(self):
        clues = analyze_import_path("/reference/inspiration/mood/style/concept/sketch.png")
        assert clues.confidence == 1.0

    def test_tags_unique(self):
        clues = analyze_import_path("/reference/reference.png")
        assert len(clues.suggested_tags) == len(set(clues.suggested_tags))


class TestTreePurpose:

    def test_explicit_wins(self):
        clues = analyze_import_path("/references/a.png")
        assert determine_tree_purpose(clues, purpose="variation") == "variation"

    def test_editing_base_is_creative(self):
        clues = analyze_import_path("/references/a.png")
        assert determine_tree_purpose(clues, import_method="editing-base") == "creative"

    def test_reference(self):
        assert determine_tree_purpose(analyze_import_path("/references/a.png")) == "reference"

    def test_draft_is_experiment(self):
        assert determine_tree_purpose(analyze_import_path("/x/a_wip.png")) == "experiment"

    def test_default_creative(self):
        assert determine_tree_purpose(PathClues()) == "creative"

    def test_names(self):
        assert import_tree_name(PathClues(category="source"), "creative") == "Source Files"
        assert import_tree_name(PathClues(suggested_tags=["screenshot"]), "reference") == "Screenshots & References"
        assert import_tree_name(PathClues(), "reference") == "References"
        assert import_tree_name(PathClues(), "experiment") == "Experiments"


class TestSmartTags:

    def test_from_analysis(self):
        analysis = AnalysisResult(
            description="x",
            detected_objects=["cat", "hat", "mat", "bat", "rat", "vat", "fat"],
            style="Oil Painting",
            mood="moody blue",
        )
        tags = smart_tags(analysis, "/in/photo.JPG", today=date(2026, 2, 3))
        assert tags == [
            "cat", "hat", "mat", "bat", "rat",
            "oil-painting", "moody-blue", "jpg-file", "imported-2026-02-03",
        ]

    def test_without_analysis(self):
        assert smart_tags(None, "/in/scan", today=date(2026, 2, 3)) == ["imported-2026-02-03"]

    def test_invalid_model_output_skipped(self):
        analysis = AnalysisResult(description="x", detected_objects=["cat, dog", "", "ok"])
        tags = smart_tags(analysis, "/in/a.png", today=date(2026, 2, 3))
        assert tags == ["ok", "png-file", "imported-2026-02-03"]


@pytest.mark.parametrize("path,expected", [
    ("/refs/inspiration/a.png", "Reference material for creative work"),
    ("/x/mockup-v2.png", "Design mockup or wireframe"),
    ("/out/final.png", "Final output or completed work"),
    ("/x/screenshot1.png", "Screenshot for reference"),
    ("/x/sketch.png", "Concept or sketch work"),
    ("/x/cat.png", None),
])
def test_infer_purpose_note(path, expected):
    assert infer_purpose_note(path) == expected


class TestRandomTreeName:

    def test_shape(self):
        name = random_tree_name(rng=random.Random(1))
        adjective, tree = name.split(" ")
        assert adjective in ADJECTIVES
        assert tree in TREE_NAMES

    def test_avoids_existing(self):
        rng = random.Random(5)
        taken = {random_tree_name(rng=random.Random(5))}
        assert random_tree_name(existing=taken, rng=rng) not in taken

    def test_counter_after_collisions(self):
        taken = {f"{a} {t}" for a in ADJECTIVES for t in TREE_NAMES}
        name = random_tree_name(existing=taken, rng=random.Random(0), max_attempts=3)
        assert name not in taken
        assert name.endswith(" 1")
