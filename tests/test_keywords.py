import pytest

from causemap.discovery.keywords import (
    aggregate_metadata,
    classify_maturity,
    label_from_metadata,
    normalize_term,
    project_similarity,
    term_frequencies,
)
from causemap.schemas.base import LabelSource, Maturity

from conftest import make_project


def test_solar_cluster_named_from_topics():
    projects = [make_project(str(i), topics=["solar", "energy", "grid"]) for i in range(12)]

    label = label_from_metadata(projects, level=0, confidence=0.6)

    assert label.name == "Solar"
    assert label.description == "Solar initiatives and projects"
    assert label.keywords == ["solar", "energy", "grid"]
    assert label.confidence == 0.6
    assert label.source == LabelSource.METADATA


def test_subcause_names_combine_terms():
    projects = [make_project(str(i), topics=["solar", "energy"]) for i in range(3)]
    assert label_from_metadata(projects, level=1).name == "Solar Energy"

    single = [make_project("s", topics=["solar"])]
    assert label_from_metadata(single, level=1).name == "Solar Technology"


def test_generic_and_short_terms_are_ignored():
    projects = [
        make_project("a", topics=["python", "api", "health", "ml"]),
        make_project("b", topics=["javascript", "health", "open-source"]),
    ]
    assert [t for t, _ in term_frequencies(projects)] == ["health"]
    assert label_from_metadata(projects).name == "Health"


def test_term_counted_once_per_project():
    projects = [
        make_project("a", topics=["water", "Water"], tags=["water_quality"]),
        make_project("b", topics=["sanitation"], tags=["water-quality"]),
    ]
    assert term_frequencies(projects) == [("water quality", 2), ("water", 1), ("sanitation", 1)]


def test_no_usable_terms():
    assert label_from_metadata([make_project("a"), make_project("b", topics=["api"])]) is None


def test_normalize_term():
    assert normalize_term("  Machine-Learning ") == "machine learning"
    assert normalize_term("civic_tech") == "civic tech"


@pytest.mark.parametrize("stars,expected", [
    (0, Maturity.EMERGING),
    (99.9, Maturity.EMERGING),
    (100, Maturity.GROWING),
    (999, Maturity.GROWING),
    (1000, Maturity.MATURE),
])
def test_classify_maturity(stars, expected):
    assert classify_maturity(stars) == expected


def test_aggregate_metadata():
    projects = [
        make_project("a", topics=["health"], stars=100, languages=["Python"]),
        make_project("b", topics=["health", "data"], stars=300, languages=["Python", "R"]),
    ]
    meta = aggregate_metadata(projects)
    assert meta.project_count == 2
    assert meta.avg_stars == 200
    assert meta.top_languages == ["Python", "R"]
    assert meta.top_topics == ["health", "data"]
    assert meta.maturity == Maturity.GROWING
    assert aggregate_metadata([]).project_count == 0


def test_project_similarity():
    a = make_project("a", topics=["health", "data"], languages=["Python"])
    b = make_project("b", topics=["health"], languages=["python"])
    assert project_similarity(a, b) == pytest.approx(0.7 * 0.5 + 0.3 * 1.0)
    assert project_similarity(make_project("c"), make_project("d")) == 0.0
