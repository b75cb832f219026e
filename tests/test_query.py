"""Tests for node search predicates."""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from pixtree.query import SearchQuery, parse_date_param, search
from pixtree.types import AnalysisResult, GenerationParams, GenericModelConfig, ImageNode, ImportInfo


def node(id, *, parent_id=None, tree_id="tree-1", prompt=None, tags=(), rating=None,
         favorite=False, model=None, created="2026-03-10T12:00:00.000Z", source="generated",
         description=None):
    n = ImageNode(
        id=id, project_id="project-1", tree_id=tree_id, parent_id=parent_id,
        image_path=f"{id}.png", image_hash=id, source=source,
        created_at=created, last_accessed=created, tags=list(tags), model=model,
    )
    if prompt is not None:
        n.generation = GenerationParams(prompt=prompt, model_config=GenericModelConfig(kind=model or "mock", prompt=prompt))
    if source == "imported":
        n.import_info = ImportInfo(original_path=f"/in/{id}.png", original_filename=f"{id}.png")
    n.user.rating = rating
    n.user.favorite = favorite
    n.user.description = description
    return n


@pytest.fixture
def nodes():
    return [
        node("n1", prompt="A Red Fox in snow", tags=["fox", "winter"], rating=5, favorite=True,
             model="nano-banana", created="2026-03-01T08:00:00.000Z"),
        node("n2", parent_id="n1", prompt="red fox, summer", tags=["fox"], rating=3,
             model="nano-banana", created="2026-03-05T08:00:00.000Z"),
        node("n3", parent_id="n2", prompt="owl at night", tags=["owl"], model="seedream-4.0",
             created="2026-03-09T23:59:00.000Z"),
        node("n4", tree_id="tree-2", source="imported", tags=["reference", "winter"],
             description="snowy mountain reference", created="2026-03-10T00:00:01.000Z"),
    ]


def ids(result):
    return [n.id for n in result]


class TestPredicates:

    def test_empty_query_matches_all(self, nodes):
        assert SearchQuery().is_empty()
        assert ids(search(nodes, SearchQuery())) == ["n1", "n2", "n3", "n4"]

    def test_tags_require_all(self, nodes):
        assert ids(search(nodes, SearchQuery(tags=["fox", "winter"]))) == ["n1"]
        assert ids(search(nodes, SearchQuery(tags=["winter"]))) == ["n1", "n4"]

    def test_text_case_insensitive(self, nodes):
        assert ids(search(nodes, SearchQuery(text="RED FOX"))) == ["n1", "n2"]

    def test_text_matches_description_and_tags(self, nodes):
        assert ids(search(nodes, SearchQuery(text="mountain"))) == ["n4"]
        assert ids(search(nodes, SearchQuery(text="owl"))) == ["n3"]

    def test_min_rating_excludes_unrated(self, nodes):
        assert ids(search(nodes, SearchQuery(min_rating=3))) == ["n1", "n2"]
        assert ids(search(nodes, SearchQuery(rating=3))) == ["n2"]

    def test_model_tree_favorite_source(self, nodes):
        assert ids(search(nodes, SearchQuery(model="seedream-4.0"))) == ["n3"]
        assert ids(search(nodes, SearchQuery(tree_id="tree-2"))) == ["n4"]
        assert ids(search(nodes, SearchQuery(favorite=True))) == ["n1"]
        assert ids(search(nodes, SearchQuery(favorite=False))) == ["n2", "n3", "n4"]
        assert ids(search(nodes, SearchQuery(source="imported"))) == ["n4"]

    def test_date_range_inclusive(self, nodes):
        query = SearchQuery(
            since=parse_date_param("2026-03-05"),
            until=parse_date_param("2026-03-09", end_of_day=True),
        )
        assert ids(search(nodes, query)) == ["n2", "n3"]

    def test_structure_uses_full_node_set(self, nodes):
        # n1 has a child even when the child itself is filtered out
        assert ids(search(nodes, SearchQuery(has_children=True, tags=["winter"]))) == ["n1"]
        assert ids(search(nodes, SearchQuery(is_leaf=True))) == ["n3", "n4"]
        assert ids(search(nodes, SearchQuery(is_leaf=False))) == ["n1", "n2"]

    def test_conjunction_matches_brute_force(self, nodes):
        predicates = {
            "tags": (None, ["fox"]),
            "min_rating": (None, 4),
            "favorite": (None, False),
            "is_leaf": (None, True),
        }
        for combo in itertools.product(*predicates.values()):
            query = SearchQuery(**dict(zip(predicates, combo)))
            singles = [
                set(ids(search(nodes, SearchQuery(**{k: v}))))
                for k, v in zip(predicates, combo) if v is not None
            ]
            expected = [n.id for n in nodes if all(n.id in s for s in singles)]
            assert ids(search(nodes, query)) == expected

    def test_imported_nodes_have_empty_prompt(self, nodes):
        assert nodes[3].prompt == ""
        assert ids(search(nodes, SearchQuery(text="snowy"))) == ["n4"]

    def test_analysis_description_searchable(self, nodes):
        nodes[3].ai_analysis = AnalysisResult(description="granite peak at dawn")
        assert ids(search(nodes, SearchQuery(text="granite"))) == ["n4"]


class TestParseDateParam:

    def test_duration(self):
        result = parse_date_param("P3D")
        expected = datetime.now(timezone.utc) - timedelta(days=3)
        assert abs((result - expected).total_seconds()) < 5

    def test_time_duration(self):
        result = parse_date_param("PT2H")
        expected = datetime.now(timezone.utc) - timedelta(hours=2)
        assert abs((result - expected).total_seconds()) < 5

    def test_date(self):
        assert parse_date_param("2026-01-15") == datetime(2026, 1, 15, tzinfo=timezone.utc)
        assert parse_date_param("2026/01/15") == datetime(2026, 1, 15, tzinfo=timezone.utc)

    def test_end_of_day(self):
        result = parse_date_param("2026-01-15", end_of_day=True)
        assert result.date().isoformat() == "2026-01-15"
        assert result.hour == 23 and result.minute == 59

    def test_timestamp(self):
        assert parse_date_param("2026-01-15T10:30:00Z") == datetime(2026, 1, 15, 10, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("bad", ["yesterday", "P", "2026-13-45"])
    def test_invalid(self, bad):
        with pytest.raises(ValueError):
            parse_date_param(bad)
