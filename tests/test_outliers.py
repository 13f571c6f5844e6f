import numpy as np
import pytest

from causemap.discovery.outliers import OutlierDetector


def _ring_with_one_far_point():
    points = [[1.0 + 0.1 * i, 0.0, 0.0] for i in range(10)]
    points.append([100.0, 0.0, 0.0])
    return points


def test_far_point_is_flagged_and_dampened():
    detector = OutlierDetector(iqr_multiplier=2.5, dampening=0.3)
    coords = _ring_with_one_far_point()

    report = detector.detect(coords)

    assert report.flags == [False] * 10 + [True]
    assert report.indices == [10]
    assert report.q1 == pytest.approx(1.2)
    assert report.q3 == pytest.approx(1.8)
    assert report.upper_bound == pytest.approx(1.8 + 2.5 * 0.6)

    dampened = detector.dampen(coords, report)
    assert dampened[10][0] == pytest.approx(30.0)
    assert np.allclose(dampened[:10], np.asarray(coords)[:10])
    # input untouched
    assert coords[10][0] == 100.0


def test_detection_is_idempotent():
    rng = np.random.default_rng(7)
    coords = np.vstack([rng.uniform(-1, 1, size=(40, 3)), [[60.0, -60.0, 60.0]]])
    detector = OutlierDetector()

    first = detector.detect(coords)
    detector.dampen(coords, first)
    second = detector.detect(coords)

    assert first.count == 1 and first.flags[-1]
    assert second.flags == first.flags
    assert (second.q1, second.q3) == (first.q1, first.q3)
    assert (second.lower_bound, second.upper_bound) == (first.lower_bound, first.upper_bound)


def test_constant_distances_flag_nothing():
    coords = [[1.0, 0.0], [0.0, 1.0], [-1.0, 0.0], [0.0, -1.0]]
    report = OutlierDetector().detect(coords)
    assert report.iqr == 0.0
    assert report.count == 0


def test_empty_input():
    report = OutlierDetector().detect([])
    assert report.flags == []
    assert report.count == 0


def test_invalid_parameters():
    with pytest.raises(ValueError):
        OutlierDetector(dampening=0)
    with pytest.raises(ValueError):
        OutlierDetector(iqr_multiplier=-1)
