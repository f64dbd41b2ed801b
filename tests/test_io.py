import numpy as np
import pytest

from meshkmeans.exceptions import InvalidRangeError
from meshkmeans.io import load_mesh, read_points_csv, read_seg, save_mesh, write_points_csv, write_seg
from meshkmeans.segmentation import Segmentation


def test_seg_file_round_trip(tmp_path, grid_mesh):
    original = Segmentation(grid_mesh, np.arange(grid_mesh.n_faces) % 5)
    path = tmp_path / "grid.seg"

    write_seg(path, original)
    restored = read_seg(path, grid_mesh)

    assert restored == original
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[:6] == ["0", "1", "2", "3", "4", "0"]


def test_seg_extension_is_required(tmp_path, grid_mesh):
    segmentation = Segmentation(grid_mesh, np.zeros(grid_mesh.n_faces, dtype=int))
    with pytest.raises(ValueError, match=".seg"):
        write_seg(tmp_path / "grid.txt", segmentation)
    with pytest.raises(ValueError, match=".seg"):
        read_seg(tmp_path / "grid.csv", grid_mesh)


def test_seg_rejects_bad_content(tmp_path, grid_mesh):
    path = tmp_path / "bad.seg"
    path.write_text("0\n1\nx\n", encoding="utf-8")
    with pytest.raises(ValueError, match="bad.seg:3"):
        read_seg(path, grid_mesh)

    path.write_text("0\n1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="2 segment ids"):
        read_seg(path, grid_mesh)


def test_mesh_round_trip_through_obj(tmp_path, grid_mesh):
    path = tmp_path / "grid.obj"

    save_mesh(path, grid_mesh)
    loaded = load_mesh(path)

    assert loaded.n_faces == grid_mesh.n_faces
    np.testing.assert_allclose(loaded.vertices, grid_mesh.vertices)
    np.testing.assert_array_equal(loaded.face_vertices, grid_mesh.face_vertices)
    assert loaded.filename == str(path)


def test_points_csv_round_trip(tmp_path, blobs):
    path = tmp_path / "points.csv"

    write_points_csv(path, blobs)

    np.testing.assert_array_equal(read_points_csv(path), blobs)


def test_points_csv_skips_header(tmp_path):
    path = tmp_path / "points.csv"
    path.write_text("x,y,z\n0,1,2\n3,4,5\n", encoding="utf-8")

    np.testing.assert_array_equal(read_points_csv(path), [[0.0, 1.0, 2.0], [3.0, 4.0, 5.0]])


def test_points_csv_without_rows(tmp_path):
    path = tmp_path / "points.csv"
    path.write_text("x,y\n", encoding="utf-8")

    with pytest.raises(InvalidRangeError):
        read_points_csv(path)
