import numpy as np
import pytest

from geomopt.pre.geometry import (
    as_points3,
    barycentric_gradients,
    cotangent_stiffness,
    gradient_operator,
    tet_signed_volumes,
    tet_volumes,
    triangle_areas,
    triangle_normals,
)
from geomopt.pre.topology import (
    boundary_faces,
    boundary_vertices,
    interior_face_pairs,
    tet_faces,
    triangle_boundary_vertices,
)


def test_tet_faces(cube_mesh):
    tets, _ = cube_mesh
    faces, owner = tet_faces(tets)
    assert faces.shape == (24, 3)
    np.testing.assert_array_equal(owner[:4], [0, 0, 0, 0])
    # Face i is opposite vertex i
    for i in range(4):
        assert tets[0, i] not in faces[i]


def test_interior_pairs(cube_mesh):
    tets, _ = cube_mesh
    pairs = interior_face_pairs(tets)
    assert pairs.shape == (6, 2)
    assert np.all(pairs[:, 0] < pairs[:, 1])
    # The six tetrahedra form a ring around the diagonal
    np.testing.assert_array_equal(np.bincount(pairs.ravel(), minlength=6), [2] * 6)


def test_boundary_faces_point_outward(cube_mesh):
    tets, nodes = cube_mesh
    faces, incident = boundary_faces(tets, nodes)
    assert faces.shape == (12, 3)

    normals = triangle_normals(faces, nodes)
    centers = nodes[faces].mean(axis=1) - 0.5
    assert np.all(np.einsum("ij,ij->i", normals, centers) > 0.0)
    for face, t in zip(faces, incident):
        assert set(face) <= set(tets[t])


def test_boundary_vertices(cube_mesh, grid_mesh):
    tets, nodes = cube_mesh
    np.testing.assert_array_equal(boundary_vertices(tets, nodes), np.arange(8))

    tris, _, nx, ny = grid_mesh
    interior = {j * nx + i for j in range(1, ny - 1) for i in range(1, nx - 1)}
    expected = sorted(set(range(nx * ny)) - interior)
    np.testing.assert_array_equal(triangle_boundary_vertices(tris), expected)


def test_non_manifold_mesh_is_rejected():
    tets = np.array([[0, 1, 2, 3], [0, 1, 2, 4], [0, 1, 2, 5]])
    with pytest.raises(ValueError):
        interior_face_pairs(tets)


def test_single_tet_has_no_pairs():
    assert interior_face_pairs([[0, 1, 2, 3]]).shape == (0, 2)


def test_volumes(cube_mesh):
    tets, nodes = cube_mesh
    np.testing.assert_allclose(tet_volumes(tets, nodes), 1.0 / 6.0)
    assert np.abs(tet_signed_volumes(tets, nodes)).sum() == pytest.approx(1.0)


def test_planar_points_are_padded():
    x = as_points3([[1.0, 2.0], [3.0, 4.0]])
    np.testing.assert_allclose(x, [[1.0, 2.0, 0.0], [3.0, 4.0, 0.0]])
    with pytest.raises(ValueError):
        as_points3([1.0, 2.0, 3.0])


def test_barycentric_gradients_sum_to_zero(grid_mesh):
    tris, nodes, _, _ = grid_mesh
    grads = barycentric_gradients(tris, nodes)
    np.testing.assert_allclose(grads.sum(axis=1), 0.0, atol=1e-12)


def test_gradient_operator_is_exact_for_linear_functions(grid_mesh):
    tris, nodes, _, _ = grid_mesh
    G = gradient_operator(tris, nodes)
    u = 3.0 * nodes[:, 0] - 2.0 * nodes[:, 1] + 1.0
    np.testing.assert_allclose((G @ u).reshape(-1, 3), np.broadcast_to([3.0, -2.0, 0.0], (tris.shape[0], 3)))


def test_cotangent_stiffness(grid_mesh):
    tris, nodes, _, _ = grid_mesh
    K = cotangent_stiffness(tris, nodes)
    G = gradient_operator(tris, nodes)
    A = np.repeat(triangle_areas(tris, nodes), 3)

    np.testing.assert_allclose(K.toarray(), K.T.toarray(), atol=1e-14)
    np.testing.assert_allclose(K @ np.ones(nodes.shape[0]), 0.0, atol=1e-12)
    np.testing.assert_allclose(K.toarray(), (G.T @ (A[:, None] * G.toarray())), atol=1e-12)
