import numpy as np
import pytest

from meshkmeans.exceptions import EmptyIndexError
from meshkmeans.geometry.kdtree import KdTree


@pytest.fixture
def random_points() -> np.ndarray:
    return np.random.default_rng(3).uniform(-5.0, 5.0, size=(500, 3))


def test_nearest_matches_brute_force(random_points):
    tree = KdTree(random_points, leaf_size=4)
    queries = np.random.default_rng(4).uniform(-6.0, 6.0, size=(50, 3))

    for query in queries:
        index, distance = tree.nearest(query)
        distances = np.linalg.norm(random_points - query, axis=1)
        assert index == int(np.argmin(distances))
        assert distance == pytest.approx(distances.min())


def test_query_radius_matches_brute_force(random_points):
    tree = KdTree(random_points)
    query = np.array([0.5, -0.5, 1.0])

    found = tree.query_radius(query, 2.0)
    expected = np.flatnonzero(np.linalg.norm(random_points - query, axis=1) <= 2.0)
    np.testing.assert_array_equal(found, expected)


def test_root_aggregate_and_cell(random_points):
    tree = KdTree(random_points)

    assert tree.root.count == len(random_points)
    np.testing.assert_allclose(tree.root.wgt_cent, random_points.sum(axis=0))
    np.testing.assert_array_equal(tree.root.cell_min, random_points.min(axis=0))
    np.testing.assert_array_equal(tree.root.cell_max, random_points.max(axis=0))


def test_children_partition_parent(random_points):
    tree = KdTree(random_points, leaf_size=16)

    def check(node):
        if node.is_leaf:
            assert node.end - node.start <= 16
            return
        assert node.left.start == node.start
        assert node.left.end == node.right.start
        assert node.right.end == node.end
        assert node.left.count + node.right.count == node.count
        check(node.left)
        check(node.right)

    check(tree.root)
    np.testing.assert_array_equal(np.sort(tree.indices), np.arange(len(random_points)))


def test_identical_points_stay_in_one_leaf():
    tree = KdTree(np.ones((20, 2)), leaf_size=2)
    assert tree.root.is_leaf
    assert tree.nearest([1.0, 1.0]) == (0, 0.0)


def test_empty_tree_is_noop_but_queries_fail():
    tree = KdTree(np.empty((0, 3)))

    assert tree.is_empty
    assert len(tree) == 0
    with pytest.raises(EmptyIndexError):
        tree.nearest([0.0, 0.0, 0.0])
    with pytest.raises(EmptyIndexError):
        tree.query_radius([0.0, 0.0, 0.0], 1.0)
