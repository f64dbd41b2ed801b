import matplotlib
import numpy as np
import pytest

from meshkmeans.geometry.mesh import Mesh

matplotlib.use("Agg")


def make_grid_mesh(nx: int, ny: int, size: float = 1.0, offset: tuple[float, float, float] = (0.0, 0.0, 0.0)) -> Mesh:
    """Flat square of nx * ny quads split into two triangles each, in the z = offset[2] plane."""
    xs = np.linspace(0.0, size, nx + 1) + offset[0]
    ys = np.linspace(0.0, size, ny + 1) + offset[1]
    vertices = np.array([(x, y, offset[2]) for y in ys for x in xs])

    def vid(i: int, j: int) -> int:
        return j * (nx + 1) + i

    faces = []
    for j in range(ny):
        for i in range(nx):
            faces.append((vid(i, j), vid(i + 1, j), vid(i + 1, j + 1)))
            faces.append((vid(i, j), vid(i + 1, j + 1), vid(i, j + 1)))
    return Mesh(vertices, np.array(faces))


def merge_meshes(first: Mesh, second: Mesh) -> Mesh:
    vertices = np.vstack([first.vertices, second.vertices])
    faces = np.vstack([first.face_vertices, second.face_vertices + first.n_vertices])
    return Mesh(vertices, faces)


@pytest.fixture
def two_clusters() -> np.ndarray:
    """Two well separated groups of three 2D points."""
    return np.array([
        [0.0, 0.0], [1.0, 0.0], [0.0, 1.0],
        [10.0, 10.0], [11.0, 10.0], [10.0, 11.0],
    ])


@pytest.fixture
def blobs() -> np.ndarray:
    """Three Gaussian blobs of 60 points each in 2D."""
    rng = np.random.default_rng(7)
    centers = np.array([[0.0, 0.0], [8.0, 0.0], [4.0, 7.0]])
    return np.vstack([rng.normal(center, 0.5, size=(60, 2)) for center in centers])


@pytest.fixture
def grid_mesh() -> Mesh:
    return make_grid_mesh(10, 10)


@pytest.fixture
def two_component_mesh() -> Mesh:
    """Two flat 4x4 squares far apart, sharing no vertex."""
    return merge_meshes(make_grid_mesh(4, 4), make_grid_mesh(4, 4, offset=(5.0, 0.0, 0.0)))


@pytest.fixture
def grid_mesh_factory():
    return make_grid_mesh


@pytest.fixture
def three_component_mesh() -> Mesh:
    """Three flat unit squares at the corners of a large triangle."""
    mesh = merge_meshes(make_grid_mesh(4, 4), make_grid_mesh(4, 4, offset=(6.0, 0.0, 0.0)))
    return merge_meshes(mesh, make_grid_mesh(4, 4, offset=(3.0, 6.0, 0.0)))
