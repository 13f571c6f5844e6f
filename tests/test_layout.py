import pytest

from causemap.discovery.layout import build_layout, cause_node_size, layout_from_embeddings, node_size
from causemap.schemas.causes import DiscoveredCause, ScopeProjection
from causemap.shared.palette import UNCLUSTERED_COLOR

from conftest import blob, make_project


def test_node_sizes():
    assert node_size(0) == 5
    assert node_size(99) == pytest.approx(11.0)
    assert node_size(10 ** 9) == 20
    assert cause_node_size(3) == 26
    assert cause_node_size(500) == 40


def _scene():
    projects = [make_project(f"p{i}", stars=10) for i in range(11)]
    coords = {f"p{i}": [1.0 + 0.1 * i, 0.0, 0.0] + [0.0] * 13 for i in range(10)}
    coords["p10"] = [100.0, 0.0, 0.0] + [0.0] * 13
    projection = ScopeProjection(
        model="m", coordinates=coords, explained_variance=[0.5, 0.3, 0.1] + [0.0] * 13, components=3,
    )
    parent = DiscoveredCause(id="cause-0-0", name="Health", color="#ef4444", project_ids=[f"p{i}" for i in range(5)])
    child = DiscoveredCause(
        id="cause-0-0-0", name="Maternal Health", color="#f37c7c", level=1, parent_id="cause-0-0",
        project_ids=["p0", "p1"],
    )
    return projects, [parent, child], projection


def test_layout_scales_and_dampens(settings):
    projects, causes, projection = _scene()

    layout = build_layout(projects, causes, projection, settings)

    nodes = {n.id: n for n in layout.nodes}
    # inliers span 0.9 units on x → 200 / 0.9
    assert layout.spread_factor == pytest.approx(200 / 0.9)
    assert layout.outlier_count == 1
    assert nodes["p10"].is_outlier
    assert nodes["p10"].x == pytest.approx(100.0 * layout.spread_factor * 0.3)
    assert nodes["p9"].x - nodes["p0"].x == pytest.approx(200.0)
    assert layout.explained_variance == [0.5, 0.3, 0.1]


def test_layout_colors_follow_most_specific_cause(settings):
    projects, causes, projection = _scene()

    nodes = {n.id: n for n in build_layout(projects, causes, projection, settings).nodes}

    assert nodes["p0"].cause_id == "cause-0-0-0"
    assert nodes["p0"].color == "#f37c7c"
    assert nodes["p3"].cause_id == "cause-0-0"
    assert nodes["p3"].color == "#ef4444"
    assert nodes["p7"].cause_id is None
    assert nodes["p7"].color == UNCLUSTERED_COLOR


def test_cause_nodes(settings):
    projects, causes, projection = _scene()
    hubs = build_layout(projects, causes, projection, settings).causes
    assert [h.id for h in hubs] == ["cause-0-0", "cause-0-0-0"]
    assert hubs[0].project_count == 5
    assert hubs[0].size == 30


def test_skipped_projection_places_nodes_at_origin(settings):
    projects = [make_project("solo", stars=3)]
    projection = ScopeProjection(scope_id="cause-0-2", skipped_reason="scope has 1 embedded project")

    layout = build_layout(projects, [], projection, settings)

    node = layout.nodes[0]
    assert (node.x, node.y, node.z) == (0.0, 0.0, 0.0)
    assert layout.spread_factor == settings.default_spread_factor
    assert layout.outlier_count == 0


def test_layout_from_embeddings(settings):
    vectors = blob([0, 0, 0, 0], 6) + blob([4, 4, 4, 4], 6, seed=5)
    projects = [make_project(f"p{i}", embedding=v, embedding_model="m") for i, v in enumerate(vectors)]
    projects.append(make_project("unembedded"))

    layout = layout_from_embeddings(projects, [], settings=settings)

    assert len(layout.nodes) == 13
    unembedded = next(n for n in layout.nodes if n.id == "unembedded")
    assert (unembedded.x, unembedded.y, unembedded.z) == (0.0, 0.0, 0.0)
    assert len(layout.explained_variance) == 3
