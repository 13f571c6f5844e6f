import numpy as np
import pytest

from causemap.discovery.reduction import (
    DimensionReducer,
    extract_metadata_features,
    pad,
    project_scope,
    reduce_for_clustering,
    spread_factor,
)
from causemap.errors import DegenerateInputError
from causemap.schemas.base import ReductionMethod

from conftest import make_project


def _random(n, d, seed=0):
    return np.random.default_rng(seed).normal(size=(n, d)).tolist()


def test_reduce_projects_onto_requested_components():
    result = DimensionReducer(n_components=3).reduce(_random(20, 8))

    assert result.coords.shape == (20, 3)
    assert result.method == ReductionMethod.PCA_SCALED
    ev = result.explained_variance
    assert all(0.0 <= v <= 1.0 for v in ev)
    assert all(a >= b for a, b in zip(ev, ev[1:]))
    assert sum(ev) <= 1.0 + 1e-9


def test_components_capped_by_population():
    result = DimensionReducer(n_components=16).reduce(_random(5, 8))
    assert result.components == 5


def test_single_vector_is_degenerate():
    with pytest.raises(DegenerateInputError):
        DimensionReducer().reduce([[1.0, 2.0, 3.0]])


def test_zero_variance_feature_falls_back_to_centering():
    X = np.array(_random(10, 4))
    X = np.hstack([X, np.full((10, 1), 7.0)])
    result = DimensionReducer(n_components=2).reduce(X.tolist())
    assert result.method == ReductionMethod.PCA_CENTERED
    assert result.coords.shape == (10, 2)


def test_identical_vectors_get_seeded_random_placement():
    vectors = [[0.5, 0.5, 0.5]] * 6
    first = DimensionReducer(n_components=2, random_state=7).reduce(vectors)
    second = DimensionReducer(n_components=2, random_state=7).reduce(vectors)

    assert first.method == ReductionMethod.RANDOM
    assert np.array_equal(first.coords, second.coords)
    assert np.all(np.abs(first.coords) <= 1.0)
    assert first.explained_variance == [0.0, 0.0]


def test_non_finite_input_falls_back_to_random():
    vectors = _random(6, 3)
    vectors[2][1] = float("nan")
    result = DimensionReducer(n_components=2).reduce(vectors)
    assert result.method == ReductionMethod.RANDOM


def test_reduce_for_clustering_caps_dimensions():
    X = reduce_for_clustering(_random(60, 100), max_dims=50)
    assert X.shape == (60, 50)

    small = reduce_for_clustering(_random(10, 8), max_dims=50)
    assert small.shape == (10, 8)


def test_project_scope_pads_to_storage_width():
    vectors = {f"p{i}": row for i, row in enumerate(_random(6, 8))}
    projection = project_scope(vectors, scope_id="cause-0-0", model="m", storage_width=16)

    assert not projection.skipped
    assert projection.components == 6
    assert set(projection.coordinates) == set(vectors)
    assert all(len(c) == 16 for c in projection.coordinates.values())
    assert len(projection.explained_variance) == 16
    assert projection.explained_variance[6:] == [0.0] * 10


def test_project_scope_skips_tiny_scopes():
    projection = project_scope({"only": [1.0, 2.0]}, scope_id="cause-0-3")
    assert projection.skipped
    assert "at least 2" in projection.skipped_reason
    assert projection.coordinates == {}


def test_project_scope_rejects_mixed_lengths():
    with pytest.raises(ValueError):
        project_scope({"a": [1.0, 2.0], "b": [1.0, 2.0, 3.0]})


def test_pad():
    assert pad([1, 2], 4) == [1.0, 2.0, 0.0, 0.0]
    assert pad([1, 2, 3], 2) == [1.0, 2.0]


def test_metadata_features():
    project = make_project(
        "m", topics=["climate", "artificial intelligence"], stars=9999, description="Tracking carbon said the team",
    )
    features = extract_metadata_features(project)
    assert len(features) == 10
    assert features[0] == pytest.approx(np.log10(10000) / 5)
    assert features[3] == pytest.approx(0.2)
    health, climate, education, ai, finance, government = features[4:]
    assert climate == 1.0
    assert ai == 1.0
    assert health == education == finance == government == 0.0


def test_spread_factor_ignores_outliers():
    coords = np.array([[0.0, 0.0], [1.0, 0.5], [2.0, 1.0], [50.0, 50.0]])
    assert spread_factor(coords, [False, False, False, True], target_range=200) == pytest.approx(100.0)
    assert spread_factor(np.zeros((3, 2)), None, default_spread=50) == 50
