import numpy as np
import pytest

from meshkmeans.clustering.centroid_init import (
    MostDistantCentroidInit,
    RandomCentroidInit,
    check_cluster_count,
    farthest_points,
)
from meshkmeans.clustering.kde import KDE3DCentroidInit, KDECentroidInit, rule_of_thumb_bandwidth
from meshkmeans.exceptions import InvalidRangeError
from meshkmeans.geometry.point import Point

BLOB_CENTERS = np.array([[0.0, 0.0], [8.0, 0.0], [4.0, 7.0]])


def assert_one_centroid_per_center(centroids, centers, tolerance):
    distances = np.linalg.norm(centroids[:, None, :] - centers[None, :, :], axis=2)
    nearest = distances.argmin(axis=1)
    assert sorted(nearest.tolist()) == list(range(len(centers)))
    assert distances.min(axis=1).max() < tolerance


@pytest.fixture
def blobs_3d() -> np.ndarray:
    rng = np.random.default_rng(21)
    return np.vstack([rng.normal(c, 0.5, size=(100, 3)) for c in ([0.0, 0.0, 0.0], [6.0, 6.0, 6.0])])


def test_check_cluster_count():
    check_cluster_count(5, 5)
    for n, k in [(0, 1), (5, 0), (5, 6)]:
        with pytest.raises(InvalidRangeError):
            check_cluster_count(n, k)


def test_random_init_picks_distinct_points_reproducibly(blobs):
    init = RandomCentroidInit(seed=3)

    first = init.find_centroids(blobs, 5)
    second = init.find_centroids(blobs, 5)

    np.testing.assert_array_equal(first, second)
    assert len({tuple(row) for row in first}) == 5
    for row in first:
        assert np.any(np.all(blobs == row, axis=1))


def test_random_init_accepts_points():
    points = [Point((float(i), 0.0)) for i in range(4)]
    centroids = RandomCentroidInit(seed=0).find_centroids(points, 4)
    assert sorted(centroids[:, 0].tolist()) == [0.0, 1.0, 2.0, 3.0]


def test_most_distant_from_fixed_start(two_clusters):
    centroids = MostDistantCentroidInit(first_index=0).find_centroids(two_clusters, 2)
    # (11, 10) and (10, 11) tie; the lower index wins
    np.testing.assert_array_equal(centroids, [[0.0, 0.0], [11.0, 10.0]])


def test_most_distant_covers_every_blob(blobs):
    centroids = MostDistantCentroidInit(seed=5).find_centroids(blobs, 3)
    assert_one_centroid_per_center(centroids, BLOB_CENTERS, tolerance=3.0)


def test_farthest_points_never_repeats():
    data = np.array([[0.0], [1.0], [2.0], [3.0]])
    picks = farthest_points(data, data[[0]], 3, exclude=[0])

    np.testing.assert_array_equal(picks, [3, 1, 2])
    with pytest.raises(InvalidRangeError):
        farthest_points(data, data[[0]], 4, exclude=[0])


def test_init_rejects_too_many_centroids(two_clusters):
    with pytest.raises(InvalidRangeError):
        RandomCentroidInit().find_centroids(two_clusters, 7)
    with pytest.raises(InvalidRangeError):
        MostDistantCentroidInit().find_centroids(np.empty((0, 2)), 1)


def test_rule_of_thumb_bandwidth_handles_flat_axes():
    data = np.column_stack([np.linspace(0.0, 1.0, 10), np.zeros(10)])
    bandwidth = rule_of_thumb_bandwidth(data)

    assert np.all(bandwidth > 0.0)
    assert bandwidth[0] == pytest.approx(bandwidth[1])


def test_kde_modes_sit_on_blobs(blobs):
    modes = KDECentroidInit().find_centroids(blobs, 3)
    assert_one_centroid_per_center(modes, BLOB_CENTERS, tolerance=1.5)


def test_kde_data_candidates_are_data_points(blobs):
    modes = KDECentroidInit(candidates="data").find_centroids(blobs, 3)

    assert_one_centroid_per_center(modes, BLOB_CENTERS, tolerance=0.75)
    for mode in modes:
        assert np.any(np.all(blobs == mode, axis=1))


def test_kde_modes_are_sorted_by_density(blobs):
    init = KDECentroidInit()
    modes, values = init.local_maxima(blobs, init.bandwidth_for(blobs))

    assert len(modes) >= 3
    assert np.all(np.diff(values) <= 0.0)


def test_kde_fills_missing_centroids_with_farthest_points():
    data = np.random.default_rng(2).normal(0.0, 0.3, size=(40, 2))
    init = KDECentroidInit(bandwidth=5.0, max_refinements=0)

    centroids = init.find_centroids(data, 4)

    assert centroids.shape == (4, 2)
    assert len({tuple(np.round(row, 12)) for row in centroids}) == 4
    for row in centroids[1:]:
        assert np.any(np.all(data == row, axis=1))


def test_kde_rejects_bad_options():
    with pytest.raises(ValueError):
        KDECentroidInit(candidates="random")
    with pytest.raises(ValueError):
        KDECentroidInit(grid_divisions=1)


def test_kde3d_modes_sit_on_blobs(blobs_3d):
    modes = KDE3DCentroidInit().find_centroids(blobs_3d, 2)
    assert_one_centroid_per_center(modes, np.array([[0.0, 0.0, 0.0], [6.0, 6.0, 6.0]]), tolerance=1.5)


def test_kde3d_matches_generic_search_on_strongest_mode(blobs_3d):
    generic = KDECentroidInit().find_centroids(blobs_3d, 1)
    grid = KDE3DCentroidInit().find_centroids(blobs_3d, 1)
    np.testing.assert_allclose(generic, grid)


def test_kde3d_requires_3d(blobs):
    with pytest.raises(ValueError):
        KDE3DCentroidInit().find_centroids(blobs, 2)
