import logging

import numpy as np
import pytest

from meshkmeans.exceptions import DisconnectedGeometryError
from meshkmeans.geometry.mesh import Mesh
from meshkmeans.metrics.geodesic import GeodesicMetric
from meshkmeans.metrics.metric import UNASSIGNED


def test_distance_field_basic_properties(grid_mesh):
    metric = GeodesicMetric(grid_mesh)
    field = metric.compute_distances(0)

    assert field.shape == (grid_mesh.n_faces,)
    assert field[0] == 0.0
    assert np.all(np.isfinite(field))
    assert np.all(field[1:] > 0.0)


def test_geodesic_is_symmetric_and_bounded_by_euclidean(grid_mesh):
    metric = GeodesicMetric(grid_mesh)
    centers = grid_mesh.face_centers

    for a, b in [(0, 57), (13, 199), (100, 101)]:
        assert metric.distance(a, b) == pytest.approx(metric.distance(b, a))
        assert metric.distance(a, b) >= np.linalg.norm(centers[a] - centers[b]) - 1e-12


def test_unreachable_faces_are_infinite(two_component_mesh):
    metric = GeodesicMetric(two_component_mesh)
    components = two_component_mesh.face_components
    field = metric.compute_distances(0)

    assert np.all(np.isfinite(field[components == components[0]]))
    assert np.all(np.isinf(field[components != components[0]]))

    other = int(np.flatnonzero(components != components[0])[0])
    with pytest.raises(DisconnectedGeometryError):
        metric.distance(0, other)


def test_fit_cpu_assigns_every_reachable_face(two_component_mesh):
    metric = GeodesicMetric(two_component_mesh)
    components = two_component_mesh.face_components
    first = int(np.flatnonzero(components == components[0])[0])
    second = int(np.flatnonzero(components != components[0])[0])
    centroids = two_component_mesh.face_centers[[first, second]]

    step = metric.fit_cpu(centroids)

    assert np.all(step.assignment != UNASSIGNED)
    np.testing.assert_array_equal(step.assignment, (components != components[0]).astype(np.int64))


def test_faces_unreachable_from_every_centroid_are_skipped(two_component_mesh, caplog):
    metric = GeodesicMetric(two_component_mesh)
    components = two_component_mesh.face_components
    same = np.flatnonzero(components == components[0])[:2]
    centroids = two_component_mesh.face_centers[same]

    with caplog.at_level(logging.WARNING, logger="meshkmeans"):
        step = metric.fit_cpu(centroids)

    other = components != components[0]
    assert np.all(step.assignment[other] == UNASSIGNED)
    assert step.counts.sum() == np.sum(~other)
    assert "unreachable" in caplog.text


def test_medoid_update_moves_to_cluster_middle(grid_mesh):
    metric = GeodesicMetric(grid_mesh)
    assignment = np.zeros(grid_mesh.n_faces, dtype=np.int64)

    step = metric.update(assignment, grid_mesh.face_centers[[0]])

    assert step.counts[0] == grid_mesh.n_faces
    assert np.linalg.norm(step.centroids[0] - np.array([0.5, 0.5, 0.0])) < 0.15
    assert metric.centroid_faces[0] == metric.closest_faces(step.centroids)[0]


def test_exact_medoid_on_small_cluster(grid_mesh):
    metric = GeodesicMetric(grid_mesh, medoid_candidates=None)
    members = np.array([0, 1, 2])
    assignment = np.full(grid_mesh.n_faces, 1, dtype=np.int64)
    assignment[members] = 0
    centroids = grid_mesh.face_centers[[0, 100]]

    step = metric.update(assignment, centroids)

    costs = [sum(metric.distance(c, m) for m in members) for c in members]
    np.testing.assert_allclose(step.centroids[0], grid_mesh.face_centers[members[int(np.argmin(costs))]])


def test_dihedral_weight_penalizes_folds(grid_mesh_factory):
    flat = grid_mesh_factory(8, 8)
    vertices = flat.vertices.copy()
    folded = vertices[:, 0] > 0.5
    vertices[folded, 2] = vertices[folded, 0] - 0.5
    mesh = Mesh(vertices, flat.face_vertices)

    plain = GeodesicMetric(mesh).compute_distances(0)
    creased = GeodesicMetric(mesh, dihedral_weight=1.0).compute_distances(0)

    assert np.all(creased >= plain - 1e-12)
    assert np.any(creased > plain + 1e-6)


def test_distance_fields_are_cached_per_face(grid_mesh):
    metric = GeodesicMetric(grid_mesh)
    first = metric.field(5)
    assert metric.field(5) is first

    metric.fit_cpu(grid_mesh.face_centers[[10, 150]])
    assert set(metric._fields) >= {int(f) for f in metric.centroid_faces}


def test_parallel_fields_match_sequential(grid_mesh):
    sequential = GeodesicMetric(grid_mesh).distances_to(grid_mesh.face_centers[[0, 50, 120]])
    parallel = GeodesicMetric(grid_mesh, n_jobs=3).distances_to(grid_mesh.face_centers[[0, 50, 120]])
    np.testing.assert_array_equal(sequential, parallel)
