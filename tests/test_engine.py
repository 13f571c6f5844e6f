from unittest.mock import AsyncMock

import pytest

from causemap.discovery.engine import CauseDiscoveryEngine, embedded_projects
from causemap.discovery.labeling import CauseLabeler
from causemap.errors import ServiceError
from causemap.schemas.base import LabelSource
from causemap.shared.palette import CAUSE_PALETTE

from conftest import blob, make_project


def _group(prefix, center, n, topics, seed=0, spread=0.1):
    return [
        make_project(f"{prefix}{i}", topics=topics, stars=100 + i, embedding=vec)
        for i, vec in enumerate(blob(center, n, spread=spread, seed=seed))
    ]


class ListStore:
    """Project store over an in-memory list, recording each page request."""

    def __init__(self, projects):
        self.projects = projects
        self.calls = []

    def fetch_projects(self, offset, limit, only_embedded):
        self.calls.append((offset, limit, only_embedded))
        pool = [p for p in self.projects if p.has_embedding or not only_embedded]
        return pool[offset:offset + limit]

    def count_projects(self, only_embedded=False):
        return len([p for p in self.projects if p.has_embedding or not only_embedded])


@pytest.mark.asyncio
async def test_empty_population(settings):
    result = await CauseDiscoveryEngine(settings=settings).discover(projects=[])
    assert result.causes == []
    assert result.metrics["status"] == "empty"


@pytest.mark.asyncio
async def test_two_groups_become_two_causes(settings):
    projects = (
        _group("h", [0] * 8, 6, ["health", "clinic"])
        + _group("c", [5] * 8, 6, ["climate", "carbon"], seed=1)
    )
    engine = CauseDiscoveryEngine(settings=settings)

    result = await engine.discover(min_projects_per_cause=3, projects=projects)

    assert len(result.top_level) == 2
    assert result.sub_causes == []
    assert {c.name for c in result.causes} == {"Health", "Climate"}
    assert [c.color for c in result.causes] == list(CAUSE_PALETTE[:2])
    members = [pid for c in result.causes for pid in c.project_ids]
    assert sorted(members) == sorted(p.id for p in projects)
    assert all(len(c.centroid) == 8 for c in result.causes)
    assert result.silhouette["top"] > 0.5
    assert result.metrics["label_sources"] == {"metadata": 2}


@pytest.mark.asyncio
async def test_centroids_stay_in_embedding_space(settings):
    settings = settings.model_copy(update={"clustering_max_dims": 2})
    projects = _group("a", [0] * 6, 5, ["water"]) + _group("b", [3] * 6, 5, ["food"], seed=4)

    result = await CauseDiscoveryEngine(settings=settings).discover(min_projects_per_cause=3, projects=projects)

    assert result.causes
    assert all(len(c.centroid) == 6 for c in result.causes)


@pytest.mark.asyncio
async def test_large_causes_get_subcauses(settings):
    left = (
        _group("la", [0, 0, 0], 20, ["health", "maternal"], seed=1)
        + _group("lb", [0, 8, 0], 20, ["health", "vaccines"], seed=2)
    )
    right = (
        _group("ra", [100, 0, 0], 20, ["climate", "solar"], seed=3)
        + _group("rb", [100, 8, 0], 20, ["climate", "forests"], seed=4)
    )
    engine = CauseDiscoveryEngine(settings=settings)

    result = await engine.discover(
        max_top_level_causes=2, max_sub_causes=2, min_projects_per_cause=5, projects=left + right,
    )

    assert len(result.top_level) == 2
    assert len(result.sub_causes) == 4
    for parent in result.top_level:
        children = [c for c in result.sub_causes if c.parent_id == parent.id]
        assert len(children) == 2
        assert all(c.id.startswith(parent.id + "-") and c.level == 1 for c in children)
        assert all(c.color != parent.color for c in children)
        owned = {pid for c in children for pid in c.project_ids}
        assert not owned & set(parent.project_ids)
        assert parent.metadata.project_count == 40
        assert parent.id in result.silhouette
    # top-level first, then subcauses
    assert [c.level for c in result.causes] == [0, 0, 1, 1, 1, 1]
    level_one = [pid for c in result.sub_causes for pid in c.project_ids]
    assert len(level_one) == len(set(level_one)) == 80


@pytest.mark.asyncio
async def test_metadata_fallback_without_embeddings(settings):
    def group(prefix, topic, stars):
        return [
            make_project(f"{prefix}{i}", topics=[topic], stars=stars, description=f"{topic} work")
            for i in range(5)
        ]

    projects = group("h", "health", 10) + group("c", "climate", 1000) + group("e", "education", 100000)

    result = await CauseDiscoveryEngine(settings=settings).discover(min_projects_per_cause=3, projects=projects)

    assert result.used_metadata_fallback
    assert result.sub_causes == []
    assert sorted(c.name for c in result.causes) == ["Climate", "Education", "Health"]
    assert all(c.size == 5 for c in result.causes)


@pytest.mark.asyncio
async def test_projects_load_in_batches(settings):
    settings = settings.model_copy(update={"load_batch_size": 4})
    projects = _group("p", [0, 0], 10, ["health"])
    store = ListStore(projects)

    loaded = await CauseDiscoveryEngine(store=store, settings=settings).load_projects(use_cache=True)

    assert [p.id for p in loaded] == [p.id for p in projects]
    assert store.calls == [(0, 4, True), (4, 4, True), (8, 4, True)]


@pytest.mark.asyncio
async def test_uses_all_projects_when_none_are_embedded(settings):
    projects = [make_project(f"p{i}", topics=["health"]) for i in range(6)]
    store = ListStore(projects)

    result = await CauseDiscoveryEngine(store=store, settings=settings).discover(min_projects_per_cause=3)

    assert result.used_metadata_fallback
    assert [c[2] for c in store.calls] == [True, False]


@pytest.mark.asyncio
async def test_labeling_failure_is_isolated(settings):
    llm = AsyncMock()
    llm.generate_json.side_effect = ServiceError("LLM down")
    projects = _group("h", [0] * 4, 6, ["health"]) + _group("c", [5] * 4, 6, [], seed=1)
    engine = CauseDiscoveryEngine(labeler=CauseLabeler(llm=llm, settings=settings), settings=settings)

    result = await engine.discover(min_projects_per_cause=3, projects=projects)

    sources = sorted(c.label_source for c in result.causes)
    assert sources == [LabelSource.FALLBACK, LabelSource.METADATA]
    assert any(c.name.startswith("Cause Area") for c in result.causes)


@pytest.mark.asyncio
async def test_too_small_population_has_no_causes(settings):
    projects = _group("p", [0, 0], 4, ["health"])
    result = await CauseDiscoveryEngine(settings=settings).discover(projects=projects)
    assert result.causes == []
    assert sorted(result.unclustered_ids) == sorted(p.id for p in projects)


def test_embedded_projects_keeps_dominant_dimension():
    projects = [
        make_project("a", embedding=[1.0, 0.0]),
        make_project("b", embedding=[0.0, 1.0]),
        make_project("c", embedding=[1.0, 1.0, 1.0]),
        make_project("d"),
    ]
    assert [p.id for p in embedded_projects(projects)] == ["a", "b"]


@pytest.mark.asyncio
async def test_explicit_zero_causes_is_honored(settings):
    projects = _group("h", [0] * 4, 6, ["health"]) + _group("c", [5] * 4, 6, ["climate"], seed=1)

    result = await CauseDiscoveryEngine(settings=settings).discover(
        max_top_level_causes=0, min_projects_per_cause=3, projects=projects,
    )

    assert result.causes == []
    assert len(result.unclustered_ids) == 12


@pytest.mark.asyncio
async def test_missing_embeddings_counted_from_store(settings):
    projects = _group("h", [0] * 4, 6, ["health"]) + [make_project(f"new{i}", topics=["health"]) for i in range(4)]
    store = ListStore(projects)

    result = await CauseDiscoveryEngine(store=store, settings=settings).discover(min_projects_per_cause=3)

    assert result.metrics["embedded"] == 6
    assert result.metrics["missing_embeddings"] == 4
