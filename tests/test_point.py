import numpy as np
import pytest

from meshkmeans.exceptions import EmptyAccumulatorError
from meshkmeans.geometry.point import CentroidPoint, Point


def test_point_arithmetic_returns_new_points():
    a = Point((1.0, 2.0, 3.0))
    b = Point((4.0, 5.0, 6.0))

    assert a + b == Point((5.0, 7.0, 9.0))
    assert b - a == Point((3.0, 3.0, 3.0))
    assert a * 2 == Point((2.0, 4.0, 6.0))
    assert 2 * a == a * 2
    assert b / 2 == Point((2.0, 2.5, 3.0))
    assert a == Point((1.0, 2.0, 3.0))


def test_point_products_and_distance():
    x = Point((1.0, 0.0, 0.0))
    y = Point((0.0, 1.0, 0.0))

    assert x.dot(y) == 0.0
    assert x.cross(y) == Point((0.0, 0.0, 1.0))
    assert Point((3.0, 4.0)).norm() == pytest.approx(5.0)
    assert Point((0.0, 0.0)).distance_to(Point((3.0, 4.0))) == pytest.approx(5.0)


def test_cross_requires_3d():
    with pytest.raises(ValueError):
        Point((1.0, 0.0)).cross(Point((0.0, 1.0)))


def test_dimension_mismatch_raises():
    with pytest.raises(ValueError):
        Point((1.0, 2.0)) + Point((1.0, 2.0, 3.0))


def test_point_is_immutable():
    p = Point((1.0, 2.0))
    with pytest.raises(AttributeError):
        p.coords = (0.0, 0.0)


def test_equality_ignores_id():
    assert Point((1.0, 1.0), id=3) == Point((1.0, 1.0), id=7)


def test_centroid_accumulates_weighted_mean():
    centroid = CentroidPoint(Point((0.0, 0.0)), index=0)
    centroid.accumulate(Point((2.0, 0.0)))
    centroid.accumulate(np.array([0.0, 4.0]), weight=3.0)

    assert centroid.count == 4.0
    assert centroid.finalize() == Point((0.5, 3.0))
    assert centroid.position == Point((0.5, 3.0))


def test_accumulate_many_matches_single_accumulation():
    points = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 0.0]])
    single = CentroidPoint(np.zeros(2))
    batch = CentroidPoint(np.zeros(2))
    for p in points:
        single.accumulate(p)
    batch.accumulate_many(points)

    np.testing.assert_allclose(single.get_centroid().to_array(), batch.get_centroid().to_array())


def test_accumulate_does_not_modify_input():
    point = np.array([1.0, 1.0])
    centroid = CentroidPoint(np.zeros(2))
    centroid.accumulate(point, weight=2.0)
    np.testing.assert_array_equal(point, [1.0, 1.0])


def test_empty_centroid_raises_and_reset_clears():
    centroid = CentroidPoint(Point((1.0, 1.0)))
    with pytest.raises(EmptyAccumulatorError):
        centroid.get_centroid()

    centroid.accumulate(Point((3.0, 3.0)))
    centroid.reset()
    assert centroid.count == 0.0
    with pytest.raises(EmptyAccumulatorError):
        centroid.finalize()
    assert centroid.position == Point((1.0, 1.0))


def test_negative_weight_rejected():
    with pytest.raises(ValueError):
        CentroidPoint(np.zeros(2)).accumulate(Point((1.0, 1.0)), weight=-1.0)
