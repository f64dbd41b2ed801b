import logging

import meshio
import numpy as np
import pytest

from meshkmeans.geometry.mesh import Mesh
from meshkmeans.geometry.point import Point


@pytest.fixture
def square() -> Mesh:
    """Unit square split along its diagonal."""
    vertices = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])
    return Mesh(vertices, np.array([[0, 1, 2], [0, 2, 3]]))


def test_face_geometry(square):
    face = square.face(0)

    assert face.vertices == (0, 1, 2)
    assert face.center == Point((2.0 / 3.0, 1.0 / 3.0, 0.0))
    assert face.center.id == 0
    assert face.normal == Point((0.0, 0.0, 1.0))
    assert face.area == pytest.approx(0.5)
    assert square.total_area == pytest.approx(1.0)
    assert len(square.faces) == 2


def test_face_out_of_range(square):
    with pytest.raises(IndexError):
        square.face(2)


def test_degenerate_face_has_zero_normal():
    mesh = Mesh(np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]]), np.array([[0, 1, 2]]))
    np.testing.assert_array_equal(mesh.face_normals, [[0.0, 0.0, 0.0]])
    assert mesh.face_areas[0] == 0.0


def test_invalid_meshes():
    with pytest.raises(ValueError):
        Mesh(np.zeros((3, 2)), np.array([[0, 1, 2]]))
    with pytest.raises(ValueError):
        Mesh(np.zeros((4, 3)), np.array([[0, 1, 2, 3]]))
    with pytest.raises(ValueError):
        Mesh(np.zeros((3, 3)), np.array([[0, 1, 3]]))


def test_edges_and_boundary(square, grid_mesh):
    np.testing.assert_array_equal(square.edges, [[0, 1], [0, 2], [0, 3], [1, 2], [2, 3]])
    np.testing.assert_array_equal(square.boundary_vertices, [0, 1, 2, 3])
    assert square.mean_edge_length == pytest.approx((4.0 + np.sqrt(2.0)) / 5.0)

    # 11 x 11 vertices, the 9 x 9 inner ones are interior
    assert len(grid_mesh.boundary_vertices) == 121 - 81


def test_adjacency_through_shared_vertices(grid_mesh):
    adjacency = grid_mesh.face_adjacency

    assert adjacency.shape == (grid_mesh.n_faces, grid_mesh.n_faces)
    assert adjacency.diagonal().sum() == 0
    assert (adjacency != adjacency.T).nnz == 0
    # Interior faces of a regular grid touch 12 others through their three corners
    interior = 2 * (5 * 10 + 5)
    assert len(grid_mesh.neighbours(interior)) == 12
    assert 1 in grid_mesh.neighbours(0)


def test_connected_components(two_component_mesh, grid_mesh):
    n_components, labels = two_component_mesh.vertex_components
    assert n_components == 2
    assert len(np.unique(two_component_mesh.face_components)) == 2
    assert grid_mesh.vertex_components[0] == 1
    assert len(labels) == two_component_mesh.n_vertices


def test_from_file_keeps_triangles(tmp_path, caplog):
    points = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0], [2.0, 0.0], [2.0, 1.0]])
    path = tmp_path / "mixed.vtk"
    meshio.Mesh(points, [("triangle", np.array([[0, 1, 2], [0, 2, 3]])), ("quad", np.array([[1, 4, 5, 2]]))]).write(path)

    with caplog.at_level(logging.WARNING, logger="meshkmeans"):
        mesh = Mesh.from_file(str(path))

    assert mesh.n_faces == 2
    assert mesh.vertices.shape == (6, 3)
    assert "quad" in caplog.text


def test_from_file_without_triangles(tmp_path):
    path = tmp_path / "quads.vtk"
    meshio.Mesh(np.eye(4, 3), [("quad", np.array([[0, 1, 2, 3]]))]).write(path)

    with pytest.raises(ValueError, match="no triangle cells"):
        Mesh.from_file(str(path))
