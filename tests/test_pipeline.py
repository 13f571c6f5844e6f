import pytest

from causemap.errors import ConfigurationError
from causemap.main import cli_main, configure_logging
from causemap.pipeline import CausePipeline

from conftest import FakeEmbeddingClient, make_project


def _population():
    """Three topical groups of eight with well-separated fake embeddings."""
    groups = {
        "health": [10.0, 0.0, 0.0, 0.0],
        "climate": [0.0, 10.0, 0.0, 0.0],
        "education": [0.0, 0.0, 10.0, 0.0],
    }
    projects, vectors = [], {}
    for topic, center in groups.items():
        for i in range(8):
            name = f"{topic}-{i}"
            projects.append(make_project(name, topics=[topic, "community"], stars=10 * i, name=name))
            vectors[name] = [c + 0.01 * i for c in center[:3]] + [0.01 * (i % 3)]
    return projects, vectors


@pytest.fixture
def pipeline(settings, db):
    projects, vectors = _population()
    db.upsert_projects(projects)
    client = FakeEmbeddingClient(vectors=vectors, fail=["education-7"])
    settings = settings.model_copy(update={"min_projects_per_cause": 3, "max_top_level_causes": 3})
    return CausePipeline(settings=settings, database=db, embedding_client=client, use_llm=False)


@pytest.mark.asyncio
async def test_embed_only_new_or_changed(pipeline):
    stats = await pipeline.embed_projects()
    assert stats == {"total": 24, "requested": 24, "embedded": 23, "failed": 1, "unchanged": 0}

    again = await pipeline.embed_projects()
    assert again["requested"] == 1  # only the failed item is retried
    assert again["unchanged"] == 23


@pytest.mark.asyncio
async def test_discover_persists_causes(pipeline, db):
    await pipeline.embed_projects()

    result = await pipeline.discover()

    assert sorted(c.name for c in result.top_level) == ["Climate", "Education", "Health"]
    assert "education-7" not in {pid for c in result.causes for pid in c.project_ids}
    stored = db.get_causes()
    assert {c.id for c in stored} == {c.id for c in result.causes}
    assigned = [p for p in db.fetch_projects() if p.cause_id]
    assert len(assigned) == 23


@pytest.mark.asyncio
async def test_dry_run_does_not_persist(pipeline, db):
    await pipeline.embed_projects()
    await pipeline.discover(persist=False)
    assert db.get_causes() == []


@pytest.mark.asyncio
async def test_projections_and_layout(pipeline, db):
    await pipeline.embed_projects()
    result = await pipeline.discover()

    projections = await pipeline.compute_projections()

    assert [p.scope_id for p in projections] == [None] + [c.id for c in db.get_causes(level=0)]
    assert len(projections[0].coordinates) == 23
    assert not any(p.skipped for p in projections)
    assert db.get_projection(None, model="fake-embed") is not None

    layout = await pipeline.build_layout()
    assert len(layout.nodes) == 24
    assert len(layout.causes) == len(result.causes)

    scope = result.top_level[0].id
    scoped = await pipeline.build_layout(scope)
    assert scoped.scope_id == scope
    assert {n.cause_id for n in scoped.nodes} <= {c.id for c in result.causes}


@pytest.mark.asyncio
async def test_reembedding_refreshes_the_global_layout(pipeline):
    await pipeline.embed_projects()
    await pipeline.discover()
    await pipeline.compute_projections()

    pipeline.embedding_client.fail.clear()
    stats = await pipeline.embed_projects()
    layout = await pipeline.build_layout()

    assert stats["embedded"] == 1
    node = next(n for n in layout.nodes if n.id == "education-7")
    assert (node.x, node.y, node.z) != (0.0, 0.0, 0.0)


@pytest.mark.asyncio
async def test_rediscovery_drops_cause_projections(pipeline, db):
    await pipeline.embed_projects()
    await pipeline.discover()
    await pipeline.compute_projections()

    result = await pipeline.discover(max_top_level_causes=2)

    assert db.list_projection_scopes() == {"": 23}
    scope = result.top_level[0].id
    assert db.get_projection(scope, model="fake-embed") is None
    scoped = await pipeline.build_layout(scope)
    members = {pid for c in result.causes if scope in (c.id, c.parent_id) for pid in c.project_ids}
    assert {n.id for n in scoped.nodes} == members


@pytest.mark.asyncio
async def test_context_manager_closes_clients(pipeline):
    async with pipeline:
        pass
    assert pipeline.embedding_client.closed


def test_missing_credentials_fail_at_construction(settings, db):
    live = settings.model_copy(update={"mock_mode": False, "openai_api_key": "", "embedding_provider": "openai"})
    with pytest.raises(ConfigurationError):
        CausePipeline(settings=live, database=db)


# ── CLI ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cli_runs_all_stages_in_mock_mode(settings, db, monkeypatch, capsys):
    db.upsert_projects(_population()[0])
    monkeypatch.setattr("causemap.main.get_settings", lambda: settings)

    code = await cli_main(["--mock", "all"])

    assert code == 0
    out = capsys.readouterr().out
    assert "DISCOVERED CAUSES" in out
    assert "Projection global" in out


def test_debug_log_file(tmp_path):
    import logging

    path = tmp_path / "debug.log"
    configure_logging(str(path))
    logging.getLogger("causemap.test").debug("trace line")

    assert "trace line" in path.read_text()
    for handler in list(logging.getLogger("causemap").handlers):
        logging.getLogger("causemap").removeHandler(handler)
        handler.close()
    logging.getLogger("causemap").setLevel(logging.NOTSET)
